"""Core data structures shared by every scraping component.

Jobs flow from the queue (or a direct caller) into the orchestrator, which
returns a ScrapingResult. Records extracted from a page are plain dicts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from harvester.core.exceptions import FailureKind


RawRecord = Dict[str, Any]


class Platform(str, Enum):
    """Supported marketplaces."""

    ALIBABA = "alibaba"
    ALIEXPRESS = "aliexpress"
    AMAZON = "amazon"


class JobPriority(str, Enum):
    """Backlog priority tiers, highest first."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: lower rank is dequeued first."""
        return _PRIORITY_RANK[self]

    def downgrade(self) -> "JobPriority":
        """Return the next lower tier (low stays low)."""
        if self is JobPriority.HIGH:
            return JobPriority.MEDIUM
        return JobPriority.LOW


_PRIORITY_RANK = {JobPriority.HIGH: 0, JobPriority.MEDIUM: 1, JobPriority.LOW: 2}


class JobStatus(str, Enum):
    """Lifecycle of a scraping job; completed and failed are terminal."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScrapeOptions:
    """Per-job knobs supplied at submission time."""

    strategy: Optional[str] = None  # 'stealth', 'mobile', 'api_interception', ...
    use_proxy: bool = False
    simulate_human: bool = True
    max_retries: Optional[int] = None  # None falls back to settings
    country: Optional[str] = None  # restrict proxies to one country

    def __post_init__(self):
        if self.max_retries is not None and self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


@dataclass
class ScrapeJob:
    """A single scraping job: one listing URL or one search query."""

    platform: Platform
    url: Optional[str] = None
    query: Optional[str] = None
    priority: JobPriority = JobPriority.MEDIUM
    options: ScrapeOptions = field(default_factory=ScrapeOptions)
    id: str = field(default_factory=lambda: uuid4().hex)
    retry_count: int = 0
    max_retries: int = 3
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_error: Optional[str] = None
    last_result: Optional["ScrapingResult"] = None
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        """Validate and coerce data after initialization."""
        self.platform = Platform(self.platform)
        self.priority = JobPriority(self.priority)
        if not self.url and not self.query:
            raise ValueError("either url or query is required")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @property
    def target_url(self) -> str:
        """URL to navigate to; queries resolve through the platform search page."""
        if self.url:
            return self.url
        from harvester.scrapers.extractors import search_url

        return search_url(self.platform, self.query or "")

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class ScrapingResult:
    """Outcome of one orchestrator call."""

    success: bool
    strategy: str
    session_id: str
    confidence: int = 0
    execution_time: int = 0  # milliseconds
    data: Optional[RawRecord] = None
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None
    warnings: List[str] = field(default_factory=list)
    quality: Optional[str] = None
    proxy_used: Optional[str] = None  # "host:port"

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError("confidence must be within [0, 100]")
