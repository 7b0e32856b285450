"""Scraping orchestration for marketplace listings.

This package provides:
- Job and result data structures shared by every component
- The orchestrator that runs one job end to end
- Adaptive strategy selection with retry, and a priority job queue
- Validation of extracted records
- Factory wiring every shared component from settings
"""

from .base import (
    JobPriority,
    JobStatus,
    Platform,
    ScrapeJob,
    ScrapeOptions,
    ScrapingResult,
)
from .factory import build_orchestrator, get_orchestrator
from .job_queue import JobQueue
from .orchestrator import ScrapeOrchestrator
from .strategies import Strategy, StrategySelector
from .validator import DataValidator, ValidationResult

__all__ = [
    # Data structures
    "JobPriority",
    "JobStatus",
    "Platform",
    "ScrapeJob",
    "ScrapeOptions",
    "ScrapingResult",
    # Components
    "DataValidator",
    "JobQueue",
    "ScrapeOrchestrator",
    "Strategy",
    "StrategySelector",
    "ValidationResult",
    # Factory
    "build_orchestrator",
    "get_orchestrator",
]
