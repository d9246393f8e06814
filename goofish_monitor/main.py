"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys

import orjson

from goofish_monitor.auth.cache import CredentialCache
from goofish_monitor.auth.credentials import CredentialSet, CredentialSource
from goofish_monitor.auth.fetcher import HttpCookieFetcher
from goofish_monitor.auth.signer import build_search_payload, build_signed_request
from goofish_monitor.config import Config, config
from goofish_monitor.errors import RemoteApiError, StorageInitError
from goofish_monitor.fetch.client import SearchClient
from goofish_monitor.logging_conf import setup_logging
from goofish_monitor.parse.search_results import parse_search_response
from goofish_monitor.store.cookie_store import CookieStore

logger = logging.getLogger(__name__)

EXIT_STORAGE = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="goofish-monitor", description="Goofish listing monitor")
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Log level (default: {config.LOG_LEVEL})",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the control API and session supervisor")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    refresh = sub.add_parser("refresh", help="Fetch fresh credentials and store them")
    refresh.add_argument(
        "--domain",
        default=config.API_DOMAIN,
        help=f"Credential domain (default: {config.API_DOMAIN})",
    )
    refresh.add_argument(
        "--interactive",
        action="store_true",
        help="Ask the fetcher for an interactive acquisition",
    )

    sign = sub.add_parser("sign", help="Print the signed query fields for a search")
    sign.add_argument("query", help="Search keyword")
    sign.add_argument("--page", type=int, default=1, help="Result page (default: 1)")
    sign.add_argument("--rows", type=int, default=30, help="Rows per page (default: 30)")
    sign.add_argument(
        "--cookies",
        default=None,
        help="Cookie header to sign with (default: cached credentials)",
    )

    search = sub.add_parser("search", help="Run one signed search and print the listings")
    search.add_argument("query", help="Search keyword")
    search.add_argument("--page", type=int, default=1, help="Result page (default: 1)")
    search.add_argument("--rows", type=int, default=30, help="Rows per page (default: 30)")
    search.add_argument(
        "--max-age",
        type=int,
        default=None,
        help="Only listings younger than this many minutes",
    )

    return parser.parse_args(argv)


async def _open_cache() -> CredentialCache:
    store = CookieStore()
    await store.initialize()
    return CredentialCache(HttpCookieFetcher(), store)


async def run_refresh(domain: str, interactive: bool) -> int:
    cache = await _open_cache()
    ok = await cache.refresh(domain, force_interactive=interactive)
    if not ok:
        logger.error(f"Credential refresh for {domain} failed")
        return 1
    stats = cache.stats()["domains"].get(domain, {})
    logger.info(f"Stored {stats.get('cookie_count', 0)} cookies for {domain}")
    print(orjson.dumps(stats, option=orjson.OPT_INDENT_2).decode())
    return 0


async def run_sign(query: str, page: int, rows: int, cookies: str | None) -> int:
    if cookies:
        credentials = CredentialSet.from_header(config.API_DOMAIN, cookies, CredentialSource.STATIC)
    else:
        cache = await _open_cache()
        credentials = await cache.get(config.API_DOMAIN)
    signed = build_signed_request(credentials, build_search_payload(query, page, rows))
    print(orjson.dumps(signed.to_params(), option=orjson.OPT_INDENT_2).decode())
    return 0


async def run_search(query: str, page: int, rows: int, max_age: int | None) -> int:
    cache = await _open_cache()
    credentials = await cache.get(config.API_DOMAIN)
    signed = build_signed_request(credentials, build_search_payload(query, page, rows))
    async with SearchClient() as client:
        try:
            response = await client.search(signed, credentials.to_header())
            items = parse_search_response(response, query, max_age_minutes=max_age)
        except RemoteApiError as e:
            logger.error(f"Search rejected: {e} (status={e.status_code}, ret={e.ret_code})")
            return 1
    for item in items:
        print(f"{item.item_id}\t{item.price_display}\t{item.age_display}\t{item.title}\t{item.url}")
    logger.info(f"{len(items)} listings for '{query}'")
    return 0


def serve(host: str, port: int) -> int:
    import uvicorn

    uvicorn.run("goofish_monitor.api.main:app", host=host, port=port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        if args.command == "serve":
            code = serve(args.host, args.port)
        elif args.command == "refresh":
            code = asyncio.run(run_refresh(args.domain, args.interactive))
        elif args.command == "sign":
            code = asyncio.run(run_sign(args.query, args.page, args.rows, args.cookies))
        else:
            code = asyncio.run(run_search(args.query, args.page, args.rows, args.max_age))
    except StorageInitError as e:
        logger.error(f"Storage initialization failed: {e}")
        sys.exit(EXIT_STORAGE)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
