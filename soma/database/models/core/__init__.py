from .balance import Balance
from .bot_cost import BotCost
from .global_config import GLOBAL_CONFIG_ID, GlobalConfig
from .role_config import RoleConfig
from .server import Server
from .user import User
from .user_server_roles import UserServerRoles

__all__ = [
    "Balance",
    "BotCost",
    "GLOBAL_CONFIG_ID",
    "GlobalConfig",
    "RoleConfig",
    "Server",
    "User",
    "UserServerRoles",
]
