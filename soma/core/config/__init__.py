"""
Static configuration for Soma.

Environment-derived bootstrap values live on ``Config``. Runtime economy
policy (global overrides, per-server documents) is database-backed and owned
by ``soma.modules.config.ConfigService``.
"""

from soma.core.config.config import Config, Environment

__all__ = ["Config", "Environment"]
