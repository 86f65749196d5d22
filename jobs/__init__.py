"""Jobs system for scheduled work.

Holds the job registry, the base class for built-in jobs and the
built-in jobs themselves. Import from the submodules directly.
"""
