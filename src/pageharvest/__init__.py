"""
PageHarvest - resumable, rate-adaptive harvesting of paginated search results.
"""

__version__ = "0.1.0"

from pageharvest.budget import Budget
from pageharvest.config import Config
from pageharvest.container import DependencyContainer
from pageharvest.pagination import HarvestSettings, PaginationManager
from pageharvest.protocols import HarvestJob, JobResult, JobStatus

__all__ = [
    "Budget",
    "Config",
    "DependencyContainer",
    "HarvestJob",
    "HarvestSettings",
    "JobResult",
    "JobStatus",
    "PaginationManager",
    "__version__",
]
