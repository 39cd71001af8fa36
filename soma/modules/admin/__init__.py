from .policy import AdminPolicy

__all__ = ["AdminPolicy"]
