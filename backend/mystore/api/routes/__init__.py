"""Route modules for the MyStore API."""
from . import auth, system, users

__all__ = ["auth", "users", "system"]
