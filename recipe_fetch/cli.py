"""Command-line interface for the recipe fetcher"""

import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger
from tqdm.asyncio import tqdm

from . import __version__
from .config import DEFAULT_LOG_FILE
from .exceptions import ScrapeFailedError
from .logging_config import setup_logging
from .orchestrator import RecipeScraper, ScrapeService
from .site_config import SiteConfigRegistry
from .storage import AsyncStreamingStorage


def load_urls(urls: List[str], urls_file: Optional[Path] = None) -> List[str]:
    """Combine positional URLs with a file of URLs (one per line, # comments), keeping order"""
    collected = list(urls or [])
    if urls_file:
        for line in Path(urls_file).read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                collected.append(line)

    seen = set()
    unique = []
    for url in collected:
        if url not in seen:
            seen.add(url)
            unique.append(url)
    return unique


async def scrape_urls(
    urls: List[str],
    scraper: RecipeScraper,
    storage: Optional[AsyncStreamingStorage] = None,
    max_concurrent: int = 5,
    force_refresh: bool = False,
) -> Dict[str, Any]:
    """
    Scrape many URLs concurrently and stream each result to disk.

    Args:
        urls: Recipe URLs
        scraper: Configured scraper (its service owns all pipeline state)
        storage: Where to save records and failures (optional)
        max_concurrent: Max URLs in flight at once
        force_refresh: Bypass the result cache

    Returns:
        Summary statistics dict
    """
    semaphore = asyncio.Semaphore(max_concurrent)
    stats: Dict[str, Any] = {
        "total": len(urls),
        "successful": 0,
        "failed": 0,
        "by_method": {},
        "failures": [],
        "start_time": time.time(),
    }

    async def scrape_one(url: str) -> bool:
        async with semaphore:
            try:
                record = await scraper.scrape(url, force_refresh=force_refresh)
            except ScrapeFailedError as e:
                stats["failed"] += 1
                stats["failures"].append(e.to_dict())
                logger.error(f"❌ Failed: {url} [{e.category.value}, {e.status}] {e.message}")
                if storage:
                    await storage.save_failure(e)
                return False

        stats["successful"] += 1
        stats["by_method"][record.extraction_method] = stats["by_method"].get(record.extraction_method, 0) + 1
        logger.success(f"✅ {record.title} ({record.domain}, {record.extraction_method}, score {record.validation_score})")
        if storage:
            await storage.save_recipe(record)
        return True

    tasks = [scrape_one(url) for url in urls]
    for coro in tqdm.as_completed(tasks, total=len(tasks), desc="Recipes", unit="url", colour="green"):
        await coro

    stats["duration"] = time.time() - stats["start_time"]
    return stats


def _log_summary(stats: Dict[str, Any]) -> None:
    logger.info("")
    logger.info("=" * 60)
    logger.success("✅ SCRAPING COMPLETE")
    logger.info("=" * 60)
    logger.info(f"   Total URLs:     {stats['total']}")
    logger.info(f"   ✅ Successful:  {stats['successful']}")
    logger.info(f"   ❌ Failed:      {stats['failed']}")
    for method, count in stats["by_method"].items():
        logger.info(f"   via {method:<11} {count}")
    logger.info(f"   Duration:       {stats['duration']:.1f}s")
    logger.info("=" * 60)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resilient recipe fetcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("urls", nargs="*", help="Recipe URLs to fetch")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    input_group = parser.add_argument_group("Input")
    input_group.add_argument("--urls-file", type=str, help="File with one URL per line")
    input_group.add_argument(
        "--force-refresh", action="store_true", help="Ignore cached results"
    )
    input_group.add_argument(
        "--max-concurrent", type=int, default=5, help="Max URLs fetched at once"
    )

    config_group = parser.add_argument_group("Configuration")
    config_group.add_argument(
        "--output", type=str, default="./output", help="Output directory"
    )
    config_group.add_argument(
        "--site-config", type=str, help="JSON file with per-site overrides"
    )
    config_group.add_argument(
        "--report", action="store_true", help="Save a monitoring report after the run"
    )
    config_group.add_argument("--verbose", action="store_true", help="Debug logging")
    config_group.add_argument("--log-file", type=str, help="Log file path")
    return parser


def main() -> None:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args()

    log_file = Path(args.log_file) if args.log_file else Path(DEFAULT_LOG_FILE)
    setup_logging(verbose=args.verbose, log_file=log_file)

    try:
        urls = load_urls(args.urls, Path(args.urls_file) if args.urls_file else None)
    except OSError as e:
        parser.error(f"cannot read --urls-file: {e}")
    if not urls:
        parser.error("no URLs given (pass URLs or --urls-file)")
    if args.max_concurrent < 1:
        parser.error("--max-concurrent must be at least 1")

    try:
        sites = (
            SiteConfigRegistry.from_file(Path(args.site_config))
            if args.site_config
            else SiteConfigRegistry()
        )
    except (OSError, ValueError) as e:
        parser.error(f"invalid --site-config: {e}")

    logger.info("=" * 60)
    logger.info(f"Recipe Fetcher (v{__version__})")
    logger.info("=" * 60)
    logger.info(f"URLs:           {len(urls)}")
    logger.info(f"Max concurrent: {args.max_concurrent}")

    async def run() -> Dict[str, Any]:
        async with ScrapeService(sites) as service:
            scraper = RecipeScraper(service)
            storage = AsyncStreamingStorage(Path(args.output))
            stats = await scrape_urls(
                urls,
                scraper,
                storage=storage,
                max_concurrent=args.max_concurrent,
                force_refresh=args.force_refresh,
            )
            if args.report:
                logger.info("\n" + service.monitor.generate_report())
                await storage.save_report(
                    {
                        "summary": {k: v for k, v in stats.items() if k != "failures"},
                        "failures": stats["failures"],
                        "monitor": service.monitor.overall_metrics(),
                        "service": service.stats(),
                    }
                )
            return stats

    try:
        stats = asyncio.run(run())
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(1)

    _log_summary(stats)
    if stats["successful"] == 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
