"""Diagnostic HTTP service with a uniform JSON envelope."""
from .api import create_app
from .config import package_version

__all__ = ["create_app", "__version__"]

__version__ = package_version()
