"""Command line entry point: starts the web server or runs the migrations."""

from __future__ import annotations

import argparse
import threading
from typing import Optional, Sequence

from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError

from .cache import CaseCache
from .config import Config, ConfigError, load
from .database import DatabaseError, initialize, migrate
from .logger import Logger, new_logger
from .pdf import PDFDownloader
from .server import Server

_PDF_JOB_INTERVAL = 30 * 60.0


def pdf_download_worker(
    db: Engine,
    logger: Logger,
    config: Config,
    stop_event: Optional[threading.Event] = None,
    interval: float = _PDF_JOB_INTERVAL,
) -> int:
    """Download pending order PDFs every ``interval`` seconds until ``stop_event`` is set.

    Returns the number of download jobs that were started.
    """
    stop_event = stop_event or threading.Event()
    downloader = PDFDownloader(db, logger, config.database_path)
    jobs = 0
    while not stop_event.wait(interval):
        jobs += 1
        logger.info("Starting PDF download job")
        try:
            downloader.download_order_pdfs()
        except Exception as exc:  # noqa: BLE001 - a failed job must not end the worker
            logger.error("PDF download job failed", error=str(exc))
    return jobs


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="courtfetch", description="Court Data Fetcher server")
    parser.add_argument("-migrate", "--migrate", action="store_true", help="Run database migrations")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server, or only the migrations when asked to."""
    args = _parse_args(argv)

    try:
        config = load()
    except ConfigError as exc:
        print(f"Failed to load configuration: {exc}")
        return 1

    try:
        logger = new_logger(config.log_level, config.log_format)
    except ValueError as exc:
        print(f"Failed to initialize logger: {exc}")
        return 1

    try:
        engine = initialize(config.database_path)
    except (DatabaseError, SQLAlchemyError, OSError) as exc:
        logger.fatal("Failed to initialize database", error=str(exc))
        return 1

    if args.migrate:
        try:
            migrate(engine)
        except (DatabaseError, SQLAlchemyError) as exc:
            logger.fatal("Failed to run migrations", error=str(exc))
            return 1
        logger.info("Database migrations completed successfully")
        return 0

    cache = CaseCache(config.cache_size, config.cache_ttl)
    server = Server(config, engine, cache, logger)

    stop = threading.Event()
    worker = threading.Thread(
        target=pdf_download_worker, args=(engine, logger, config, stop), daemon=True
    )
    worker.start()

    logger.info("Starting Court Data Fetcher", host=config.host, port=config.port, court=config.court_name)
    try:
        server.run()
    finally:
        stop.set()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())