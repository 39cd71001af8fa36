from .service import BotCostEntry, BotCostQuote, CheaperAlternative, CostService

__all__ = ["BotCostEntry", "BotCostQuote", "CheaperAlternative", "CostService"]
