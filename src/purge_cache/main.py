"""Command-line entry point: run the API server or expire old records once."""

from __future__ import annotations

import argparse
import asyncio
import logging

import uvicorn

from purge_cache.api.app import create_app
from purge_cache.config import PurgeCacheConfig
from purge_cache.reaper import ExpirationReaper
from purge_cache.store import PurgeRecordStore

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")


def cmd_serve(config: PurgeCacheConfig, args: argparse.Namespace) -> None:
    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


async def _expire(config: PurgeCacheConfig) -> int:
    store = PurgeRecordStore(config.database_url)
    await store.init()
    try:
        reaper = ExpirationReaper(store, delay=config.expiration_delay_delta)
        return await reaper.run_once()
    finally:
        await store.close()


def cmd_expire(config: PurgeCacheConfig, args: argparse.Namespace) -> None:
    asyncio.run(_expire(config))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="purge-cache", description="Purge-cache service")
    parser.add_argument("--config", help="YAML file with a 'defaults' section and per-profile overrides")
    parser.add_argument("--profile", help="Profile section of the config file to apply, e.g. production")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.set_defaults(func=cmd_serve)

    expire = sub.add_parser("expire", help="Delete expired purge records and exit")
    expire.set_defaults(func=cmd_expire)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = PurgeCacheConfig.load(args.config, args.profile)
    _setup_logging(config.log_level)
    logger.info(f"Running '{args.command}' in {config.env} mode")
    args.func(config, args)


if __name__ == "__main__":
    main()
