from .service import GlobalRegenRate, RoleService

__all__ = ["GlobalRegenRate", "RoleService"]
