"""
Optional dependency management.
"""
from functools import lru_cache
from importlib import import_module
from typing import Callable


# Classes --------------------------------------------------------------------------------------------------------------
class Resources:
    """
    Tracks which optional packages (e.g. ``numba``) are importable in this environment.
    """
    @staticmethod
    @lru_cache(maxsize=None)
    def has_module(module_name: str) -> bool:
        """Checks if a python package is installed."""
        try:
            import_module(module_name)
            return True
        except ImportError: return False


# Decorators -----------------------------------------------------------------------------------------------------------
def jit(signature_or_function=None, **options) -> Callable:
    """
    Conditional Numba JIT decorator.

    If 'numba' is installed (checked via RESOURCES), this applies `numba.jit`
    with the provided arguments. Otherwise, it returns the original function unmodified,
    ignoring any compilation options.

    Examples:
        >>> @jit  # Bare usage
        ... def func(): ...

        >>> @jit(nopython=True, cache=True)  # Configured usage
        ... def func(): ...
    """
    if not RESOURCES.has_module('numba'):
        if callable(signature_or_function): return signature_or_function
        def passthrough(func: Callable) -> Callable: return func
        return passthrough
    from numba import jit as real_jit
    if callable(signature_or_function): return real_jit(signature_or_function)
    return real_jit(signature_or_function, **options)


# Constants ------------------------------------------------------------------------------------------------------------
RESOURCES = Resources()
