from .cache import GlobalConfigCache
from .service import ConfigService, GlobalEconomyConfig, ServerConfig

__all__ = ["ConfigService", "GlobalConfigCache", "GlobalEconomyConfig", "ServerConfig"]
