"""Operator command to rebuild grid cells from packet history.

Usage:
    gridcell-reprocess                      # every gateway
    gridcell-reprocess --offset 1200        # resume after the first 1200 gateways
    gridcell-reprocess eui-58a0cbfffe8023e7 # named gateways, in every network
"""

import argparse
import asyncio
import logging

from gridcell.config import get_settings
from gridcell.database import async_session_maker, close_db
from gridcell.errors import AggregationError
from gridcell.services.ingest import build_engine
from gridcell.services.reprocess import RebuildResult

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gridcell-reprocess",
        description="Delete and rebuild grid cells from historical packets",
    )
    parser.add_argument(
        "gateway_ids",
        nargs="*",
        metavar="GATEWAY_ID",
        help="Gateways to rebuild (default: all known gateways)",
    )
    parser.add_argument(
        "--offset",
        type=int,
        default=0,
        help="Skip this many gateways, to resume an interrupted run",
    )
    parser.add_argument("--debug", "-d", action="store_true", help="Enable DEBUG logging")
    return parser


async def reprocess(gateway_ids: list[str], offset: int = 0) -> list[RebuildResult]:
    """Run the rebuild and release database connections afterwards."""
    engine = build_engine(async_session_maker, get_settings())
    try:
        if gateway_ids:
            logger.info(f"Reprocessing gateways {', '.join(gateway_ids)}")
            return await engine.reprocess.reprocess_gateways(gateway_ids, offset=offset)
        logger.info("Reprocessing all gateways")
        return await engine.reprocess.reprocess_all(offset=offset)
    finally:
        await close_db()


def main(argv: list[str] | None = None) -> int:
    """Entry point for gridcell-reprocess."""
    args = build_parser().parse_args(argv)
    if args.offset < 0:
        build_parser().error("--offset must not be negative")

    logging.basicConfig(
        level=logging.DEBUG if args.debug else get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(reprocess(args.gateway_ids, offset=args.offset))
    except AggregationError as e:
        logger.critical(f"Reprocessing aborted: {e}")
        return 2

    failed = [result for result in results if not result.ok]
    cells = sum(result.cells for result in results)
    print(f"Rebuilt {len(results) - len(failed)} antennas into {cells} grid cells")
    if failed:
        print(f"Failed antennas: {', '.join(str(result.antenna_id) for result in failed)}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
