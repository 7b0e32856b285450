"""Command-line runner: scrape one listing or query and print the JSON result.

Examples:
  harvester scrape --platform amazon --url https://www.amazon.com/dp/B0EXAMPLE
  harvester scrape --platform alibaba --query "bluetooth speaker" --proxy
  harvester scrape --platform aliexpress --url ... --strategy mobile --no-human
  harvester scrape --platform alibaba --url ... --import --category-id audio
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import structlog
from pydantic import ValidationError

from harvester.config import settings
from harvester.core.exceptions import CatalogImportError
from harvester.core.logging import configure_logging
from harvester.importer import CatalogImportClient
from harvester.scrapers.base import Platform
from harvester.scrapers.factory import build_orchestrator
from harvester.schemas.scrape import ScrapeOptionsModel, ScrapeRequest, ScrapeResponse

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed Namespace object.
    """
    parser = argparse.ArgumentParser(
        prog="harvester",
        description="Adaptive marketplace listing scraper.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n", 1)[1],
    )
    commands = parser.add_subparsers(dest="command", required=True)

    scrape = commands.add_parser("scrape", help="Scrape one listing URL or the first result of a query")
    scrape.add_argument(
        "--platform",
        required=True,
        choices=[p.value for p in Platform],
        help="Target marketplace",
    )
    target = scrape.add_mutually_exclusive_group(required=True)
    target.add_argument("--url", help="Listing URL")
    target.add_argument("--query", help="Search query")
    scrape.add_argument("--strategy", help="Force one strategy (stealth, mobile, api_interception, ...)")
    scrape.add_argument("--proxy", action="store_true", help="Route through the proxy pool (PROXY_LIST)")
    scrape.add_argument("--country", help="Restrict proxies to one country tag")
    scrape.add_argument("--no-human", action="store_true", help="Skip human-like pointer and scroll activity")
    scrape.add_argument("--max-retries", type=int, help="Attempts allowed across strategies")
    scrape.add_argument(
        "--import",
        dest="do_import",
        action="store_true",
        help="Send a successful result to CATALOG_IMPORT_URL",
    )
    scrape.add_argument("--category-id", help="Catalog category for --import")
    scrape.add_argument("--debug", action="store_true", help="Emit debug logs")

    return parser.parse_args(argv)


def build_request(args: argparse.Namespace) -> ScrapeRequest:
    """Turn parsed arguments into a validated ScrapeRequest."""
    return ScrapeRequest(
        platform=args.platform,
        url=args.url,
        query=args.query,
        options=ScrapeOptionsModel(
            strategy=args.strategy,
            use_proxy=args.proxy,
            simulate_human=not args.no_human,
            max_retries=args.max_retries,
            country=args.country,
        ),
    )


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


async def run_scrape(request: ScrapeRequest, do_import: bool = False, category_id: Optional[str] = None) -> dict:
    """Scrape once and optionally import the record.

    Returns:
        The camelCase response dict, with an ``import`` entry when importing
    """
    orchestrator = build_orchestrator()
    try:
        result = await orchestrator.scrape(request.to_job())
    finally:
        await orchestrator.close()

    output = ScrapeResponse.from_result(result).model_dump(by_alias=True, exclude_none=True)
    if not (do_import and result.success and result.data):
        return output

    validation = orchestrator.validator.validate(result.data)
    try:
        async with CatalogImportClient() as client:
            output["import"] = await client.import_record(
                result.data, validation, request.platform, category_id
            )
    except CatalogImportError as e:
        logger.error("import_failed", error=e.message)
        output["import"] = {"error": e.message}
    return output


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(debug=args.debug or settings.DEBUG)

    try:
        request = build_request(args)
    except ValidationError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return 2

    try:
        output = asyncio.run(run_scrape(request, args.do_import, args.category_id))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130

    print(json.dumps(output, indent=2, ensure_ascii=False, default=str))
    return 0 if output.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
