"""Client for the external catalog import endpoint.

Validated records are posted as JSON with the API key in the body:

    {
      "api_key": "<key>",
      "product": {"title": ..., "slug": ..., "price": 12.5, ...},
      "source": {"platform": "alibaba", "originalUrl": ..., "scrapedAt": ...},
      "categoryId": "<optional>"
    }
"""

import re
from typing import Any, Dict, Optional

import httpx
import structlog

from harvester.config import settings
from harvester.core.exceptions import CatalogImportError
from harvester.scrapers.base import Platform, RawRecord
from harvester.scrapers.utils.retry import http_retry
from harvester.scrapers.validator import ValidationResult, parse_price

logger = structlog.get_logger(__name__)

SLUG_MAX_LENGTH = 96


def make_slug(title: str) -> str:
    """Build a URL slug from a listing title.

    Args:
        title: Listing title

    Returns:
        Lower-case ASCII slug, at most 96 characters
    """
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    return slug[:SLUG_MAX_LENGTH].rstrip("-")


class CatalogImportClient:
    """Posts validated listing records to the catalog import endpoint."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        """Initialize the client.

        Args:
            endpoint: Import URL, CATALOG_IMPORT_URL by default
            api_key: Shared secret, CATALOG_IMPORT_API_KEY by default
            http_client: Shared client; one is created (and owned) otherwise
            timeout: Request timeout in seconds for an owned client
        """
        self.endpoint = endpoint if endpoint is not None else settings.CATALOG_IMPORT_URL
        self.api_key = api_key if api_key is not None else settings.CATALOG_IMPORT_API_KEY
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self.logger = logger.bind(service="catalog_import")

    async def __aenter__(self) -> "CatalogImportClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_payload(
        self,
        record: RawRecord,
        platform: Platform,
        category_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Shape a record into the import request body.

        Raises:
            CatalogImportError: If the record has no usable title or price
        """
        title = str(record.get("title") or "").strip()
        price = parse_price(record.get("price"))
        if not title:
            raise CatalogImportError("record has no title")
        if price is None or price <= 0:
            raise CatalogImportError(f"record has no usable price: {record.get('price')!r}")

        images = list(record.get("images") or [])
        payload: Dict[str, Any] = {
            "api_key": self.api_key,
            "product": {
                "title": title,
                "slug": make_slug(title),
                "description": str(record.get("description") or "").strip(),
                "price": float(price),
                "images": images,
                "image": images[0] if images else "",
                "supplierName": str(record.get("supplierName") or "").strip(),
                "supplierUrl": record.get("url"),
            },
            "source": {
                "platform": Platform(platform).value,
                "originalUrl": record.get("url"),
                "scrapedAt": record.get("scrapedAt"),
            },
        }
        if category_id:
            payload["categoryId"] = category_id
        return payload

    async def import_record(
        self,
        record: RawRecord,
        validation: ValidationResult,
        platform: Platform,
        category_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send one validated record to the catalog.

        Args:
            record: Extracted listing record
            validation: The record's validation result; invalid results are refused
            platform: Marketplace the record came from
            category_id: Optional target category

        Returns:
            Parsed JSON body of the import response

        Raises:
            CatalogImportError: If the record is invalid, no endpoint is
                configured, or the endpoint rejects the request
        """
        if not validation.is_valid:
            raise CatalogImportError(f"record failed validation: {', '.join(validation.errors)}")
        if not self.endpoint:
            raise CatalogImportError("CATALOG_IMPORT_URL is not configured")

        payload = self.build_payload(record, platform, category_id)
        try:
            response = await self._post(payload)
        except httpx.HTTPStatusError as e:
            body = e.response.text[:300]
            self.logger.error("catalog_import_rejected", status=e.response.status_code, body=body)
            raise CatalogImportError(f"HTTP {e.response.status_code}: {body}") from e
        except httpx.HTTPError as e:
            self.logger.error("catalog_import_failed", error=str(e))
            raise CatalogImportError(str(e)) from e

        self.logger.info(
            "catalog_import_completed",
            slug=payload["product"]["slug"],
            platform=payload["source"]["platform"],
            confidence=validation.confidence,
        )
        return response.json() if response.content else {}

    @http_retry
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        response = await self._client.post(self.endpoint, json=payload)
        response.raise_for_status()
        return response
