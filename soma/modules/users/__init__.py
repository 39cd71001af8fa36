from .service import UserProfile, UserService

__all__ = ["UserProfile", "UserService"]
