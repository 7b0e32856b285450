"""Pydantic schemas for job submission and scrape results."""

from harvester.schemas.scrape import ScrapeOptionsModel, ScrapeRequest, ScrapeResponse

__all__ = [
    "ScrapeOptionsModel",
    "ScrapeRequest",
    "ScrapeResponse",
]
