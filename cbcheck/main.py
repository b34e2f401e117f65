#!/usr/bin/env python3
"""
Main orchestration module for the cbcheck poller.

This module runs one pass of the pipeline:
config → database → fetch → notify

Setup failures (config, database, fund search) abort the run with exit
code 1 before any later stage starts. Failures for individual funds are
logged and the remaining funds are still processed.
"""

import argparse
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

import requests

from cbcheck.config import DEFAULT_CONFIG_PATH, Config, ConfigError, load_config
from cbcheck.fetch import FetchError, create_session, fetch_funds
from cbcheck.notify import notify_new_funds
from cbcheck.storage import SendListStore, StorageError
from cbcheck.utils import env_flag, get_logger, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1


@dataclass
class RunContext:
    """Everything one run needs, passed explicitly to each stage."""
    config: Config
    store: SendListStore
    session: requests.Session
    dry_run: bool = False

    def close(self) -> None:
        self.session.close()
        self.store.close()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cbcheck",
        description="Post newly listed Crowd Bank funds to a Slack webhook."
    )
    parser.add_argument(
        "-conf",
        "--conf",
        dest="conf",
        default=DEFAULT_CONFIG_PATH,
        help="Path to config file"
    )
    return parser.parse_args(argv)


def open_context(conf_path: str, dry_run: bool = False) -> RunContext:
    """
    Load the config and open the dedup database.

    Raises:
        ConfigError: If the config file cannot be loaded.
        StorageError: If the database cannot be opened or migrated.
    """
    config = load_config(conf_path)
    store = SendListStore(config.database)
    session = create_session(config.user_agent)
    return RunContext(config=config, store=store, session=session, dry_run=dry_run)


def run_pipeline(conf_path: str = DEFAULT_CONFIG_PATH, dry_run: bool = False) -> int:
    """
    Execute one polling pass.

    Pipeline stages:
    1. Load config and open the dedup database
    2. Fetch not-yet-open funds
    3. Notify about funds that were not announced before

    Args:
        conf_path: Path to the YAML config file.
        dry_run: If True, log messages instead of posting or recording them.

    Returns:
        Exit code (0 for success, 1 for a fatal setup error).
    """
    logger = get_logger("main")

    logger.info("=" * 60)
    logger.info("cbcheck - Starting")
    logger.info("=" * 60)

    logger.info("[Stage 1/3] Loading config and opening database...")
    try:
        ctx = open_context(conf_path, dry_run=dry_run)
    except ConfigError as e:
        logger.error(f"Failed to load config: {e}")
        return EXIT_FAILURE
    except StorageError as e:
        logger.error(f"Failed to open database: {e}")
        return EXIT_FAILURE

    try:
        try:
            logger.info(f"{ctx.store.count()} fund(s) already notified")
        except StorageError as e:
            logger.error(f"Failed to read database: {e}")
            return EXIT_FAILURE

        logger.info("[Stage 2/3] Fetching funds...")
        try:
            response = fetch_funds(ctx.session)
        except FetchError as e:
            logger.error(f"Failed to fetch funds: {e}")
            return EXIT_FAILURE

        logger.info("[Stage 3/3] Notifying new funds...")
        summary = notify_new_funds(
            response.funds,
            ctx.store,
            ctx.session,
            ctx.config.slack_webhook_url,
            dry_run=ctx.dry_run
        )
    finally:
        ctx.close()

    logger.info("=" * 60)
    logger.info("cbcheck - Complete")
    logger.info(
        f"Summary: {summary.total} fetched, {summary.skipped} already sent, "
        f"{summary.sent} sent, {summary.failed} failed, "
        f"{summary.persist_failed} not saved"
    )
    if ctx.dry_run:
        logger.info(f"[DRY RUN] {summary.would_send} notification(s) skipped")
    logger.info("=" * 60)

    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the cbcheck poller.

    Sets up logging and runs the pipeline with proper error handling.

    Returns:
        Exit code for the process.
    """
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    setup_logging(log_level)
    logger = get_logger("main")

    args = parse_args(argv)

    dry_run = env_flag("DRY_RUN")
    if dry_run:
        logger.info("Running in DRY RUN mode - notifications will be skipped")

    try:
        return run_pipeline(args.conf, dry_run=dry_run)

    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
