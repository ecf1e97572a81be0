"""
Top-level module for SECRAM: position-indexed, order-preserving-encrypted storage of aligned reads.
"""
from importlib.metadata import version, PackageNotFoundError

try: __version__ = version(__name__)
except PackageNotFoundError: __version__ = '0.0.0'


# Exceptions and Warnings ----------------------------------------------------------------------------------------------
class SecramError(Exception):
    """Base class for all errors raised by this package."""


class SecramWarning(Warning):
    """Base class for all warnings issued by this package."""
