"""Deploy CI build artifacts to static hosting through an authenticated API."""

__version__ = "0.3.0"
