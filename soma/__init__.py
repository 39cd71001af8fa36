"""
Soma - ichor economy engine.

Regenerating per-user balances spent on metered bot activations, with
transfers, tips, rewards, admin grants and refunds, layered role/server/global
configuration and daily anti-abuse limits.

Entry point for callers is ``soma.engine.EconomyEngine``.
"""

__version__ = "1.0.0"
