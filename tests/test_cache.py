"""Tests for the credential cache."""
import asyncio

from goofish_monitor.auth.cache import CredentialCache
from goofish_monitor.auth.credentials import CredentialSet, CredentialSource
from goofish_monitor.errors import CredentialFetchError
from goofish_monitor.store.cookie_store import CookieStore

DOMAIN = "h5api.m.goofish.com"
REQUIRED = ("_m_h5_tk", "cna", "t")


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeFetcher:
    """Returns queued results in order; the last one repeats."""

    def __init__(self, *results, delay: float = 0.0):
        self.results = list(results)
        self.delay = delay
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.interactive_calls = 0

    async def fetch(self, domain, interactive=False):
        self.calls += 1
        if interactive:
            self.interactive_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1


def creds(marker: str, **extra) -> CredentialSet:
    values = {"_m_h5_tk": f"{marker}tok_1", "cna": marker, "t": marker, "_tb_token_": marker}
    values.update(extra)
    return CredentialSet.from_mapping(DOMAIN, values, CredentialSource.LIVE)


async def make_cache(tmp_path, fetcher, clock=None, **kwargs) -> CredentialCache:
    store = CookieStore(tmp_path / "cookies.properties", tmp_path / "real_cookies.json")
    await store.initialize()
    options = dict(
        ttl_seconds=30 * 60,
        static_cookies={},
        required_keys=REQUIRED,
        min_required=2,
        optional_keys=("_tb_token_",),
        fallback_ttl_seconds=60,
        clock=clock or FakeClock(),
    )
    options.update(kwargs)
    return CredentialCache(fetcher, store, **options)


def test_ttl_scenario(tmp_path):
    """A at t=0, A again at 10 min without fetching, B after 31 min, B afterwards."""
    async def scenario():
        clock = FakeClock(0)
        fetcher = FakeFetcher(creds("A"), creds("B"))
        cache = await make_cache(tmp_path, fetcher, clock)

        first = await cache.get(DOMAIN)
        assert first.get("cna") == "A"

        clock.now = 10 * 60
        again = await cache.get(DOMAIN)
        assert again is first
        assert fetcher.calls == 1

        clock.now = 31 * 60
        later = await cache.get(DOMAIN)
        assert later.get("cna") == "B"
        assert fetcher.calls == 2

        clock.now = 32 * 60
        assert (await cache.get(DOMAIN)).get("cna") == "B"
        assert fetcher.calls == 2

    asyncio.run(scenario())


def test_concurrent_gets_fetch_once(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"), delay=0.05)
        cache = await make_cache(tmp_path, fetcher)
        results = await asyncio.gather(*(cache.get(DOMAIN) for _ in range(10)))
        assert fetcher.calls == 1
        assert cache.fetch_count == 1
        assert all(r is results[0] for r in results)

    asyncio.run(scenario())


def test_stale_readers_get_previous_set_during_refresh(tmp_path):
    async def scenario():
        clock = FakeClock(0)
        fetcher = FakeFetcher(creds("A"), creds("B"), delay=0.05)
        cache = await make_cache(tmp_path, fetcher, clock)
        await cache.get(DOMAIN)

        clock.now = 31 * 60
        results = await asyncio.gather(*(cache.get(DOMAIN) for _ in range(5)))
        assert fetcher.calls == 2
        assert results[0].get("cna") == "B"
        assert all(r.get("cna") == "A" for r in results[1:])
        assert cache.peek(DOMAIN).get("cna") == "B"

    asyncio.run(scenario())


def test_validate_two_of_three_keys(tmp_path):
    async def scenario():
        cache = await make_cache(
            tmp_path, FakeFetcher(creds("A")), required_keys=("a", "b", "c"), min_required=2
        )
        ok = CredentialSet.from_mapping(DOMAIN, {"a": "1", "c": "3"}, CredentialSource.LIVE)
        extra_only = CredentialSet.from_mapping(
            DOMAIN, {"a": "1", "x": "2", "y": "3"}, CredentialSource.LIVE
        )
        blank = CredentialSet.from_mapping(DOMAIN, {"a": "1", "b": ""}, CredentialSource.LIVE)
        assert cache.validate(ok) is True
        assert cache.validate(extra_only) is False
        assert cache.validate(blank) is False

    asyncio.run(scenario())


def test_static_cookies_win_and_are_persisted(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"))
        cache = await make_cache(
            tmp_path, fetcher, static_cookies={DOMAIN: "_m_h5_tk=s_1; cna=s; t=s; _tb_token_=s"}
        )
        result = await cache.get(DOMAIN)
        assert result.source is CredentialSource.STATIC
        assert result.get("cna") == "s"
        assert fetcher.calls == 0
        assert cache.store.get_header(DOMAIN)

    asyncio.run(scenario())


def test_invalid_static_cookies_fall_through_to_fetcher(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"))
        cache = await make_cache(tmp_path, fetcher, static_cookies={DOMAIN: "cna=only"})
        result = await cache.get(DOMAIN)
        assert result.source is CredentialSource.LIVE
        assert fetcher.calls == 1

    asyncio.run(scenario())


def test_fetch_failure_falls_back_to_store(tmp_path):
    async def scenario():
        store = CookieStore(tmp_path / "cookies.properties", tmp_path / "real_cookies.json")
        await store.initialize()
        await store.save(creds("S"))

        fetcher = FakeFetcher(CredentialFetchError(DOMAIN, "timeout"))
        cache = await make_cache(tmp_path, fetcher)
        result = await cache.get(DOMAIN)
        assert result.source is CredentialSource.FALLBACK
        assert result.get("cna") == "S"

    asyncio.run(scenario())


def test_everything_failing_yields_empty_set_with_short_ttl(tmp_path):
    async def scenario():
        clock = FakeClock(0)
        fetcher = FakeFetcher(CredentialFetchError(DOMAIN, "blocked"))
        cache = await make_cache(tmp_path, fetcher, clock)

        result = await cache.get(DOMAIN)
        assert result.source is CredentialSource.EMPTY
        assert len(result) == 0

        clock.now = 30
        await cache.get(DOMAIN)
        assert fetcher.calls == 1

        clock.now = 61
        await cache.get(DOMAIN)
        assert fetcher.calls == 2

    asyncio.run(scenario())


def test_unexpected_fetcher_exception_is_contained(tmp_path):
    async def scenario():
        cache = await make_cache(tmp_path, FakeFetcher(RuntimeError("browser crashed")))
        result = await cache.get(DOMAIN)
        assert result.source is CredentialSource.EMPTY

    asyncio.run(scenario())


def test_missing_optional_key_gets_placeholder(tmp_path):
    async def scenario():
        partial = CredentialSet.from_mapping(
            DOMAIN, {"_m_h5_tk": "x_1", "cna": "c"}, CredentialSource.LIVE
        )
        cache = await make_cache(tmp_path, FakeFetcher(partial))
        result = await cache.get(DOMAIN)
        assert len(result.get("_tb_token_")) == 13
        assert result.get("t") is None

    asyncio.run(scenario())


def test_refresh_replaces_fresh_entry(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"), creds("B"))
        cache = await make_cache(tmp_path, fetcher)
        await cache.get(DOMAIN)
        assert await cache.refresh(DOMAIN, force_interactive=True) is True
        assert cache.peek(DOMAIN).get("cna") == "B"
        assert fetcher.interactive_calls == 1

    asyncio.run(scenario())


def test_failed_refresh_leaves_cache_untouched(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(
            creds("A"),
            CredentialFetchError(DOMAIN, "timeout"),
            CredentialSet.from_mapping(DOMAIN, {"cna": "only"}, CredentialSource.LIVE),
        )
        cache = await make_cache(tmp_path, fetcher)
        original = await cache.get(DOMAIN)

        assert await cache.refresh(DOMAIN) is False
        assert cache.peek(DOMAIN) is original

        assert await cache.refresh(DOMAIN) is False
        assert cache.peek(DOMAIN) is original

    asyncio.run(scenario())


def test_refresh_waits_for_inflight_fetch(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"), creds("B"), delay=0.05)
        cache = await make_cache(tmp_path, fetcher)
        got, refreshed = await asyncio.gather(cache.get(DOMAIN), cache.refresh(DOMAIN))
        assert refreshed is True
        assert fetcher.calls == 2
        assert fetcher.max_active == 1
        assert got.get("cna") == "A"
        assert cache.peek(DOMAIN).get("cna") == "B"

    asyncio.run(scenario())


def test_get_during_refresh_on_empty_cache_returns_credentials(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"), delay=0.05)
        cache = await make_cache(tmp_path, fetcher)
        refreshed, got = await asyncio.gather(cache.refresh(DOMAIN), cache.get(DOMAIN))
        assert refreshed is True
        assert isinstance(got, CredentialSet)
        assert got.get("cna") == "A"
        assert fetcher.calls == 1

    asyncio.run(scenario())


def test_get_after_failed_background_refresh_walks_fallback_chain(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(CredentialFetchError(DOMAIN, "blocked"), delay=0.05)
        cache = await make_cache(tmp_path, fetcher)
        cache.refresh_in_background(DOMAIN)
        got = await cache.get(DOMAIN)
        assert isinstance(got, CredentialSet)
        assert got.source is CredentialSource.EMPTY
        assert fetcher.calls == 2

    asyncio.run(scenario())


def test_background_refresh_is_not_duplicated(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"), delay=0.05)
        cache = await make_cache(tmp_path, fetcher)
        task = cache.refresh_in_background(DOMAIN)
        assert task is not None
        assert cache.is_refreshing(DOMAIN)
        assert cache.refresh_in_background(DOMAIN) is None
        assert await task is True
        assert fetcher.calls == 1
        assert not cache.is_refreshing(DOMAIN)

    asyncio.run(scenario())


def test_invalidate_forces_resolution(tmp_path):
    async def scenario():
        fetcher = FakeFetcher(creds("A"), creds("B"))
        cache = await make_cache(tmp_path, fetcher)
        await cache.get(DOMAIN)
        cache.invalidate(DOMAIN)
        assert cache.peek(DOMAIN) is None
        assert (await cache.get(DOMAIN)).get("cna") == "B"

    asyncio.run(scenario())


def test_stats_masks_cookie_values(tmp_path):
    async def scenario():
        cache = await make_cache(tmp_path, FakeFetcher(creds("secretvalue")))
        await cache.get(DOMAIN)
        stats = cache.stats()
        assert stats["total_domains"] == 1
        assert stats["fetch_count"] == 1
        domain_stats = stats["domains"][DOMAIN]
        assert domain_stats["source"] == "live-fetch"
        assert domain_stats["cookie_count"] == 4
        assert "secretvalue" not in str(domain_stats["key_cookies"])

    asyncio.run(scenario())
