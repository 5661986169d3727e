"""Control plane services."""

from packages.control.services.identity_service import IdentityService
from packages.control.services.catalog_service import CatalogService
from packages.control.services.schedule_service import ScheduleService
from packages.control.services.usage_service import UsageService
from packages.control.services.clock_service import ClockService

__all__ = [
    "IdentityService",
    "CatalogService",
    "ScheduleService",
    "UsageService",
    "ClockService",
]
