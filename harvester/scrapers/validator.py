"""Structural and heuristic validation of extracted listing records.

Every detected defect costs a fixed number of confidence points taken from a
``PenaltyTable``; the field limits live in ``ValidationRules``. Both are plain
data and can be swapped at runtime.
"""

import copy
import math
import re
from collections import Counter
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Optional, Tuple
from urllib.parse import urlsplit

import structlog

from harvester.scrapers.base import RawRecord

logger = structlog.get_logger(__name__)


@dataclass
class FieldRule:
    """Length limits for one text field."""

    required: bool = True
    min_length: int = 0
    max_length: int = 10_000


@dataclass
class ValidationRules:
    """Field limits and reference sets used by the validator."""

    title: FieldRule = field(default_factory=lambda: FieldRule(True, 3, 200))
    description: FieldRule = field(default_factory=lambda: FieldRule(True, 10, 2000))
    supplier_name: FieldRule = field(default_factory=lambda: FieldRule(False, 2, 100))
    price_required: bool = True
    price_min: Decimal = Decimal("0.01")
    price_max: Decimal = Decimal("100000")
    images_required: bool = True
    images_min: int = 1
    images_max: int = 20
    allowed_domains: Tuple[str, ...] = ("alibaba.com", "aliexpress.com", "amazon.com", "amazon.co.uk")
    image_extensions: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")
    max_timestamp_age: timedelta = timedelta(hours=24)
    important_fields: Tuple[str, ...] = ("title", "price", "description", "images")
    short_title_length: int = 5
    short_description_length: int = 20


@dataclass
class PenaltyTable:
    """Confidence points deducted per defect."""

    missing_title: int = 30
    missing_price: int = 25
    missing_description: int = 20
    missing_images: int = 20
    too_short: int = 15
    too_long: int = 5
    suspicious_pattern: int = 10
    repetitive: int = 8
    unparsable_price: int = 20
    price_below_min: int = 15
    price_above_max: int = 5
    price_zero_or_one: int = 10
    small_whole_price: int = 5
    too_few_images: int = 15
    too_many_images: int = 5
    bad_image_url: int = 3
    duplicate_images: int = 5
    foreign_domain: int = 5
    script_url: int = 20
    malformed_url: int = 15
    bad_timestamp: int = 10
    stale_timestamp: int = 5
    future_timestamp: int = 15
    missing_important_field: int = 5
    placeholder: int = 8
    extremely_short_title: int = 10
    very_short_description: int = 8

    def __post_init__(self):
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"penalty {f.name} must not be negative")


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    confidence: int = 100
    quality: str = "excellent"  # excellent | good | fair | poor


def quality_tier(confidence: int) -> str:
    """Map a confidence score to its quality tier."""
    if confidence >= 90:
        return "excellent"
    if confidence >= 75:
        return "good"
    if confidence >= 50:
        return "fair"
    return "poor"


_PRICE_NUMBER = re.compile(r"\d[\d,]*(?:\.\d+)?")


def parse_price(raw: Any) -> Optional[Decimal]:
    """Extract the first numeric amount from a price value.

    Handles "$12.99", "US $1,234.50", "12.50 - 15.00" (first amount wins)
    and plain numbers.

    Returns:
        Decimal price, or None if no number is present
    """
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float, Decimal)):
        return Decimal(str(raw))
    match = _PRICE_NUMBER.search(str(raw))
    if not match:
        return None
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return None


SUSPICIOUS_PATTERNS = [
    re.compile(r"\[.*?\]"),
    re.compile(r"\{.*?\}"),
    re.compile(r"<.*?>"),
    re.compile(r"javascript:", re.I),
    re.compile(r"on\w+\s*=", re.I),
    re.compile(r"data:", re.I),
    re.compile(r"blob:", re.I),
    re.compile(r"about:blank", re.I),
]

PLACEHOLDER_PATTERNS = [
    re.compile(r"^[A-Z\s]+$"),  # ALL CAPS
    re.compile(r"^[a-z\s]+$"),  # all lowercase
    re.compile(r"^\d+$"),
    re.compile(r"^[^\w\s]+$"),  # only symbols
    re.compile(r"^(product|item|goods|merchandise)$", re.I),
    re.compile(r"^(title|name|description|price)$", re.I),
]


def contains_suspicious_pattern(text: str) -> bool:
    return any(p.search(text) for p in SUSPICIOUS_PATTERNS)


def is_placeholder(text: str) -> bool:
    return any(p.search(text) for p in PLACEHOLDER_PATTERNS)


def is_repetitive(text: str) -> bool:
    """True if one word (longer than two letters) makes up over 30% of the text."""
    if len(text) < 20:
        return False
    words = text.lower().split()
    counts = Counter(w for w in words if len(w) > 2)
    limit = math.ceil(len(words) * 0.3)
    return any(count > limit for count in counts.values())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Pass:
    """Accumulator for one validation run; the penalty only ever grows."""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.penalty = 0

    def error(self, message: str, points: int) -> None:
        self.errors.append(message)
        self.penalty += points

    def warn(self, message: str, points: int) -> None:
        self.warnings.append(message)
        self.penalty += points


class DataValidator:
    """Scores a raw listing record and decides whether it is usable."""

    def __init__(
        self,
        rules: Optional[ValidationRules] = None,
        penalties: Optional[PenaltyTable] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._rules = rules or ValidationRules()
        self.penalties = penalties or PenaltyTable()
        self._clock = clock

    def rules(self) -> ValidationRules:
        """Get a copy of the active rules."""
        return copy.deepcopy(self._rules)

    def update_rules(self, **entries) -> None:
        """Replace rule entries wholesale, e.g. ``update_rules(title=FieldRule(True, 10, 120))``."""
        self._rules = replace(self._rules, **entries)
        logger.info("validation_rules_updated", fields=sorted(entries))

    def update_penalties(self, **entries) -> None:
        self.penalties = replace(self.penalties, **entries)
        logger.info("validation_penalties_updated", fields=sorted(entries))

    def validate(self, record: RawRecord) -> ValidationResult:
        """Validate an extracted record.

        Args:
            record: Raw record with title, price, description, images,
                supplierName, url and scrapedAt keys

        Returns:
            ValidationResult; any internal failure yields an invalid result
            with confidence 0
        """
        try:
            run = _Pass()
            self._check_text(run, record.get("title"), "title", self._rules.title, self.penalties.missing_title)
            self._check_price(run, record.get("price"))
            self._check_text(
                run,
                record.get("description"),
                "description",
                self._rules.description,
                self.penalties.missing_description,
            )
            self._check_images(run, record.get("images"))

            supplier = record.get("supplierName")
            if isinstance(supplier, str) and supplier:
                self._check_text(run, supplier, "supplierName", self._rules.supplier_name, 0)

            if record.get("url"):
                self._check_url(run, str(record["url"]))
            if record.get("scrapedAt"):
                self._check_timestamp(run, record["scrapedAt"])

            self._check_quality(run, record)
        except Exception as e:
            logger.error("validation_crashed", error=str(e))
            return ValidationResult(
                is_valid=False,
                errors=[f"Validation error: {e}"],
                confidence=0,
                quality="poor",
            )

        confidence = max(0, min(100, 100 - run.penalty))
        return ValidationResult(
            is_valid=not run.errors,
            errors=run.errors,
            warnings=run.warnings,
            confidence=confidence,
            quality=quality_tier(confidence),
        )

    # ------------------------------------------------------------------
    # Field rules
    # ------------------------------------------------------------------

    def _check_text(self, run: _Pass, value: Any, name: str, rule: FieldRule, missing_penalty: int) -> None:
        if not isinstance(value, str) or not value:
            if rule.required:
                run.error(f"{name} is required and must be a string", missing_penalty)
            return

        p = self.penalties
        if len(value) < rule.min_length:
            run.error(f"{name} is too short ({len(value)} chars, minimum {rule.min_length})", p.too_short)
        if len(value) > rule.max_length:
            run.warn(f"{name} is very long ({len(value)} chars, maximum {rule.max_length})", p.too_long)
        if contains_suspicious_pattern(value):
            run.warn(f"{name} contains suspicious patterns", p.suspicious_pattern)
        if is_repetitive(value):
            run.warn(f"{name} appears to contain repetitive content", p.repetitive)

    def _check_price(self, run: _Pass, value: Any) -> None:
        p, r = self.penalties, self._rules
        if value is None or value == "" or isinstance(value, bool):
            if r.price_required:
                run.error("price is required", p.missing_price)
            return

        price = parse_price(value)
        if price is None:
            run.error("price could not be parsed as a number", p.unparsable_price)
            return

        if price < r.price_min:
            run.error(f"price is too low: {price} (minimum {r.price_min})", p.price_below_min)
        if price > r.price_max:
            run.warn(f"price is very high: {price} (maximum {r.price_max})", p.price_above_max)
        if price in (0, 1):
            run.warn("price seems suspiciously low", p.price_zero_or_one)
        if price == price.to_integral_value() and price < 10:
            run.warn("price is a suspicious whole number", p.small_whole_price)

    def _check_images(self, run: _Pass, images: Any) -> None:
        p, r = self.penalties, self._rules
        if not isinstance(images, (list, tuple)):
            if r.images_required:
                run.error("images are required and must be a list", p.missing_images)
            return

        if len(images) < r.images_min:
            run.error(f"too few images: {len(images)} (minimum {r.images_min})", p.too_few_images)
        if len(images) > r.images_max:
            run.warn(f"many images: {len(images)} (maximum {r.images_max})", p.too_many_images)

        for i, image_url in enumerate(images, start=1):
            if not self.is_image_url(image_url):
                run.warn(f"image {i} has invalid URL: {image_url}", p.bad_image_url)

        if len(set(map(str, images))) < len(images):
            run.warn("duplicate images detected", p.duplicate_images)

    def _check_url(self, run: _Pass, url: str) -> None:
        p = self.penalties
        parts = urlsplit(url)
        if not parts.scheme or not (parts.netloc or parts.scheme in ("javascript", "data")):
            run.error("invalid URL format", p.malformed_url)
            return

        host = (parts.hostname or "").lower()
        if not any(domain in host for domain in self._rules.allowed_domains):
            run.warn(f"URL domain ({host}) is not an expected marketplace", p.foreign_domain)
        if "javascript:" in url or "data:" in url:
            run.error("URL contains suspicious patterns", p.script_url)

    def _check_timestamp(self, run: _Pass, value: Any) -> None:
        p = self.penalties
        scraped_at = self._parse_timestamp(value)
        if scraped_at is None:
            run.error("invalid timestamp format", p.bad_timestamp)
            return

        now = self._clock()
        if abs(now - scraped_at) > self._rules.max_timestamp_age:
            run.warn("timestamp is older than the allowed age", p.stale_timestamp)
        if scraped_at > now:
            run.error("timestamp is in the future", p.future_timestamp)

    def _check_quality(self, run: _Pass, record: RawRecord) -> None:
        p, r = self.penalties, self._rules
        missing = [name for name in r.important_fields if not record.get(name)]
        if missing:
            run.warn(f"missing important fields: {', '.join(missing)}", p.missing_important_field * len(missing))

        for name, value in record.items():
            if isinstance(value, str) and is_placeholder(value):
                run.warn(f"field '{name}' contains placeholder-like content: {value!r}", p.placeholder)

        title = record.get("title")
        if isinstance(title, str) and title and len(title) < r.short_title_length:
            run.warn("title is extremely short", p.extremely_short_title)
        description = record.get("description")
        if isinstance(description, str) and description and len(description) < r.short_description_length:
            run.warn("description is very short", p.very_short_description)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def is_image_url(self, value: Any) -> bool:
        if not isinstance(value, str):
            return False
        parts = urlsplit(value)
        if not parts.scheme or not parts.netloc:
            return False
        path = parts.path.lower()
        host = (parts.hostname or "").lower()
        return any(ext in path for ext in self._rules.image_extensions) or "image" in host or "img" in host

    @staticmethod
    def _parse_timestamp(value: Any) -> Optional[datetime]:
        if isinstance(value, datetime):
            parsed = value
        else:
            try:
                parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            except ValueError:
                return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
