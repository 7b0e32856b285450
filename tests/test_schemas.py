"""Tests for the request and response schemas."""

import json

import pytest
from pydantic import ValidationError

from harvester.core.exceptions import FailureKind
from harvester.scrapers.base import JobPriority, Platform, ScrapingResult
from harvester.schemas.scrape import ScrapeOptionsModel, ScrapeRequest, ScrapeResponse


class TestScrapeRequest:
    """Request validation and conversion to jobs."""

    def test_url_request(self):
        request = ScrapeRequest(platform="amazon", url="https://www.amazon.com/dp/B0EXAMPLE")

        assert request.platform is Platform.AMAZON
        assert request.priority is JobPriority.MEDIUM
        assert request.options.simulate_human is True

    @pytest.mark.parametrize(
        "target",
        [
            {},
            {"url": "https://www.amazon.com/dp/B0EXAMPLE", "query": "earbuds"},
        ],
    )
    def test_requires_exactly_one_target(self, target):
        with pytest.raises(ValidationError, match="exactly one of url or query"):
            ScrapeRequest(platform="amazon", **target)

    def test_rejects_unknown_platform(self):
        with pytest.raises(ValidationError):
            ScrapeRequest(platform="ebay", query="earbuds")

    @pytest.mark.parametrize("options", [{"max_retries": 0}, {"max_retries": 11}, {"country": "USA"}])
    def test_rejects_bad_options(self, options):
        with pytest.raises(ValidationError):
            ScrapeOptionsModel(**options)

    def test_to_job(self):
        request = ScrapeRequest(
            platform="alibaba",
            query="bluetooth speaker",
            priority="high",
            options={"strategy": "mobile", "use_proxy": True, "max_retries": 5, "country": "US"},
        )

        job = request.to_job()

        assert job.platform is Platform.ALIBABA
        assert job.query == "bluetooth speaker"
        assert job.url is None
        assert job.priority is JobPriority.HIGH
        assert job.max_retries == 5
        assert job.options.strategy == "mobile"
        assert job.options.use_proxy is True
        assert job.options.country == "US"

    def test_to_job_default_retries(self):
        job = ScrapeRequest(platform="alibaba", query="speaker").to_job()

        assert job.max_retries == 3
        assert job.options.max_retries is None


class TestScrapeResponse:
    """Response serialization."""

    def test_camel_case_json(self):
        result = ScrapingResult(
            success=True,
            strategy="stealth",
            session_id="session_1_abcdef0123",
            confidence=92,
            execution_time=1840,
            data={"title": "Headphones"},
            quality="excellent",
            proxy_used="10.0.0.1:8080",
        )

        body = json.loads(ScrapeResponse.from_result(result).to_json())

        assert body["sessionId"] == "session_1_abcdef0123"
        assert body["executionTime"] == 1840
        assert body["proxyUsed"] == "10.0.0.1:8080"
        assert body["confidence"] == 92
        assert "error" not in body
        assert "errorKind" not in body

    def test_failure_carries_kind(self):
        result = ScrapingResult(
            success=False,
            strategy="mobile",
            session_id="session_1_abcdef0123",
            error="Request blocked",
            error_kind=FailureKind.BLOCKED,
        )

        response = ScrapeResponse.from_result(result)

        assert response.error_kind == "blocked"
        assert response.model_dump(by_alias=True)["errorKind"] == "blocked"
        assert response.data is None

    def test_populate_by_field_name(self):
        response = ScrapeResponse(success=False, strategy="none", session_id="unknown", execution_time=5)

        assert response.execution_time == 5
