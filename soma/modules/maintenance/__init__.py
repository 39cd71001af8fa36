from .service import MaintenanceReport, MaintenanceService, MaintenanceSettings

__all__ = ["MaintenanceReport", "MaintenanceService", "MaintenanceSettings"]
