"""Pydantic schemas for the job submission and result contract.

Callers submit a ScrapeRequest and receive a ScrapeResponse, serialized with
camelCase keys (``executionTime``, ``sessionId``, ``proxyUsed``).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from harvester.scrapers.base import JobPriority, Platform, ScrapeJob, ScrapeOptions, ScrapingResult


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ScrapeOptionsModel(BaseModel):
    """Per-job options."""

    strategy: Optional[str] = Field(
        None,
        min_length=1,
        description="Force one strategy instead of the adaptive ranking",
        examples=["mobile"],
    )
    use_proxy: bool = Field(False, description="Route the job through the proxy pool")
    simulate_human: bool = Field(True, description="Play human-like pointer and scroll activity")
    max_retries: Optional[int] = Field(
        None,
        ge=1,
        le=10,
        description="Attempts allowed across strategies. None uses the configured default.",
        examples=[3],
    )
    country: Optional[str] = Field(
        None,
        min_length=2,
        max_length=2,
        description="Restrict proxies to one country tag",
        examples=["US"],
    )

    def to_options(self) -> ScrapeOptions:
        return ScrapeOptions(**self.model_dump())


class ScrapeRequest(BaseModel):
    """A scrape job: exactly one of ``url`` or ``query`` on one platform."""

    url: Optional[str] = Field(
        None,
        min_length=1,
        description="Listing URL to extract",
        examples=["https://www.amazon.com/dp/B0EXAMPLE"],
    )
    query: Optional[str] = Field(
        None,
        min_length=1,
        max_length=200,
        description="Search query; the first result is extracted",
        examples=["wireless earbuds"],
    )
    platform: Platform = Field(..., description="Target marketplace", examples=["amazon"])
    priority: JobPriority = Field(JobPriority.MEDIUM, description="Backlog priority when queued")
    options: ScrapeOptionsModel = Field(default_factory=ScrapeOptionsModel)

    @model_validator(mode="after")
    def exactly_one_target(self) -> "ScrapeRequest":
        """Require a URL or a query, never both."""
        if bool(self.url) == bool(self.query):
            raise ValueError("exactly one of url or query is required")
        return self

    def to_job(self) -> ScrapeJob:
        """Build the ScrapeJob this request describes."""
        options = self.options.to_options()
        return ScrapeJob(
            platform=self.platform,
            url=self.url,
            query=self.query,
            priority=self.priority,
            options=options,
            max_retries=options.max_retries or 3,
        )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ScrapeResponse(BaseModel):
    """Result of one scrape call."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = Field(None, alias="errorKind")
    confidence: int = Field(0, ge=0, le=100)
    execution_time: int = Field(0, alias="executionTime", description="Milliseconds")
    strategy: str
    session_id: str = Field(..., alias="sessionId")
    proxy_used: Optional[str] = Field(None, alias="proxyUsed", description="host:port")
    warnings: List[str] = Field(default_factory=list)
    quality: Optional[str] = None

    @classmethod
    def from_result(cls, result: ScrapingResult) -> "ScrapeResponse":
        return cls(
            success=result.success,
            data=result.data,
            error=result.error,
            error_kind=result.error_kind.value if result.error_kind else None,
            confidence=result.confidence,
            execution_time=result.execution_time,
            strategy=result.strategy,
            session_id=result.session_id,
            proxy_used=result.proxy_used,
            warnings=list(result.warnings),
            quality=result.quality,
        )

    def to_json(self) -> str:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump_json(by_alias=True, exclude_none=True)
