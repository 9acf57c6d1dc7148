"""Run the EV subsidy scrape from the command line.

Usage:
    python -m scripts.run_scrape --kind quota
    python -m scripts.run_scrape --kind price --sample --no-publish
    python -m scripts.run_scrape --kind all --concurrency 3 --retries 5 --verbose

Run from the backend/ directory:
    cd backend && python -m scripts.run_scrape --kind all
"""
import argparse
import json
import logging
import sys
import time

from evsubsidy.config import get_settings
from evsubsidy.errors import ScrapeError
from evsubsidy.jobs.scrape_pipeline import KINDS, execute_scrape_pipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrape ev.or.kr subsidy quota and price tables"
    )
    parser.add_argument("--kind", choices=sorted(KINDS), default="all")
    parser.add_argument(
        "--sample", action="store_true",
        help="Only scrape the first SAMPLE_SIZE regions"
    )
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--retries", type=int, default=None)
    parser.add_argument(
        "--no-publish", action="store_true",
        help="Write the JSON snapshot only, skip Google Sheets"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable DEBUG logging"
    )
    return parser


def settings_from_args(args):
    overrides = {}
    if args.sample:
        overrides["RUN_MODE"] = "sample"
    if args.concurrency is not None:
        overrides["CONCURRENCY"] = args.concurrency
    if args.retries is not None:
        overrides["MAX_RETRIES"] = args.retries
    return get_settings().model_copy(update=overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = settings_from_args(args)
    print(f"\n{'='*60}")
    print(f"  EV subsidy scrape: {args.kind}")
    print(f"  Mode: {settings.RUN_MODE}  Concurrency: {settings.CONCURRENCY}  Retries: {settings.MAX_RETRIES}")
    print(f"{'='*60}\n")

    start = time.time()
    try:
        summary = execute_scrape_pipeline(args.kind, settings, publish=not args.no_publish)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        return 1
    except ScrapeError as e:
        print(f"\n  ERROR: {e}")
        return 1

    elapsed = time.time() - start
    print(f"\n{'='*60}")
    print(json.dumps(summary.model_dump(mode="json"), indent=2, ensure_ascii=False))
    print(f"  DONE in {elapsed:.1f}s")
    print(f"{'='*60}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
