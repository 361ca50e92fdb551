import argparse
import asyncio

from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from ingestion.engine import build_ingestion_engine


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest Polymarket on-chain events from Bitquery")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run the initial sync (if storage is not fully populated) and exit instead of polling.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --once, refresh every stream through the retrying job queue even if storage is populated.",
    )
    parser.add_argument(
        "--batch-limit",
        type=int,
        default=None,
        help="Override the maximum number of events fetched per stream",
    )
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> None:
    settings = get_settings()
    if args.batch_limit:
        settings = settings.model_copy(update={"ingestion_batch_limit": args.batch_limit})
    init_db()
    engine = build_ingestion_engine(settings)
    try:
        if args.once:
            if args.force:
                await engine.refresh_all()
            else:
                results = await engine.run_initial_sync()
                if results is None:
                    logger.info("Storage already populated; nothing to do (use --force to refresh)")
            return

        engine.start_polling()
        await asyncio.Event().wait()
    finally:
        await engine.shutdown()


def main() -> None:
    args = parse_args()
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
