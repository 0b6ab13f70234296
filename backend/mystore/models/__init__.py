"""SQLAlchemy models exposed for table creation and imports."""
from .customer import Customer
from .recovery_token import RecoveryToken
from .user import User, UserRole

__all__ = ["User", "UserRole", "Customer", "RecoveryToken"]
