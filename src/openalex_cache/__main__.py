from __future__ import annotations

import argparse
import asyncio
import json
import logging

from openalex_cache.cache import CacheContext, ResponseCache
from openalex_cache.client import CachingClient
from openalex_cache.config import YamlConfigLoader
from openalex_cache.config.models import AppConfig, ConfigLoadRequest
from openalex_cache.fetcher import ApiFetcher, FetchError
from openalex_cache.logging import init_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="openalex-cache", description="OpenAlex development response cache")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: path
    path_parser = subparsers.add_parser("path", help="Show where a request URL is cached")
    path_parser.add_argument("url", help="Request URL, absolute or starting with /")

    # Command: get
    get_parser = subparsers.add_parser("get", help="Fetch a request URL through the cache")
    get_parser.add_argument("url", help="Request URL, absolute or starting with /")

    # Command: reindex
    subparsers.add_parser("reindex", help="Rebuild every directory index under the cache root")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _show_path(args: argparse.Namespace, context: CacheContext) -> int:
    cache = ResponseCache(context)
    path = cache.map_to_cache_path(args.url)
    if path is None:
        print("not cacheable (passes through)")
        return 1
    print(path)
    return 0


async def _get(args: argparse.Namespace, config: AppConfig, context: CacheContext) -> int:
    cache = ResponseCache(context)
    try:
        async with ApiFetcher(config.fetch) as fetcher:
            client = CachingClient(cache=cache, fetcher=fetcher)
            try:
                payload = await client.get(args.url)
            except FetchError as e:
                logger.error("Upstream request failed. url=%s status=%s", e.url, e.status)
                return 1
        print(json.dumps(payload, indent=2))
        await cache.flush()
        return 0
    finally:
        await cache.close()


async def _reindex(context: CacheContext) -> int:
    cache = ResponseCache(context)
    written = await cache.reindex()
    logger.info("Reindex finished. indexes_written=%s dry_run=%s", written, context.dry_run)
    return 0


async def _main_async() -> int:
    parser = _build_parser()
    args = parser.parse_args()

    config = await _load_config(args)
    init_logging(config.logging)
    context = CacheContext.from_config(config)
    logger.info("Cache ready. root=%s dry_run=%s verbose=%s", context.root_path, context.dry_run, context.verbose)

    if args.command == "path":
        return await _show_path(args, context)
    if args.command == "get":
        return await _get(args, config, context)
    if args.command == "reindex":
        return await _reindex(context)
    return 2


def main() -> None:
    try:
        raise SystemExit(asyncio.run(_main_async()))
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
