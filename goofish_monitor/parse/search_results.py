"""Extract listings from the search API's JSON envelope."""
import logging
import time
from typing import Any, Optional

from goofish_monitor.errors import RemoteApiError
from goofish_monitor.parse.models import UNKNOWN_AGE_MINUTES, SearchItem

logger = logging.getLogger(__name__)

# Keys that have carried the result array in different API versions
RESULT_LIST_KEYS = ("resultList", "items", "list", "result", "dataList", "resultData")


def check_api_status(payload: dict[str, Any]) -> None:
    """Raise RemoteApiError unless the envelope reports success.

    Non-credential failures are raised too; the worker counts them as
    errors without scheduling a refresh.
    """
    ret = payload.get("ret") or []
    if isinstance(ret, str):
        ret = [ret]
    if any("SUCCESS" in str(code) for code in ret):
        return
    if payload.get("status") == "SUCCESS":
        return
    ret_code = str(ret[0]) if ret else ""
    api_message = payload.get("msg") or None
    message = api_message or ret_code or "unknown API failure"
    raise RemoteApiError(
        f"Search API error: {message}", ret_code=ret_code or None, api_message=api_message
    )


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_price(value: Any) -> float:
    # clickParam prices are in fen
    try:
        return float(value) / 100.0
    except (TypeError, ValueError):
        return 0.0


def _first_image(main: dict[str, Any]) -> Optional[str]:
    ex_content = main.get("exContent") or {}
    pic = ex_content.get("picUrl")
    if pic:
        return f"https:{pic}" if pic.startswith("//") else pic
    return None


def parse_item(raw: dict[str, Any], query: str, now_ms: Optional[int] = None) -> Optional[SearchItem]:
    """Build a SearchItem from one result entry, or None when it has no id."""
    main = ((raw.get("data") or {}).get("item") or {}).get("main") or {}
    if not main:
        return None
    args = (main.get("clickParam") or {}).get("args") or {}
    ex_content = main.get("exContent") or {}

    item_id = str(args.get("id") or ex_content.get("itemId") or "")
    if not item_id or item_id == "None":
        return None

    title = (
        (args.get("detailParams") or {}).get("title")
        or (ex_content.get("detailParams") or {}).get("title")
        or ex_content.get("title")
        or args.get("title")
        or ""
    )

    publish_ms = _as_int(args.get("publishTime"))
    age = UNKNOWN_AGE_MINUTES
    if publish_ms > 0:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        age = max(0, (now_ms - publish_ms) // 60000)

    return SearchItem(
        item_id=item_id,
        title=title,
        price=_as_price(args.get("price")),
        location=args.get("area") or ex_content.get("area") or "",
        seller=args.get("nick") or ex_content.get("userNickName"),
        category=args.get("category"),
        age_minutes=age,
        image_url=_first_image(main),
        query=query,
    )


def parse_search_response(
    payload: dict[str, Any],
    query: str,
    max_age_minutes: Optional[int] = None,
    now_ms: Optional[int] = None,
) -> list[SearchItem]:
    """Listings in `payload` whose title mentions `query` and that are young enough."""
    check_api_status(payload)

    data = payload.get("data")
    if not isinstance(data, dict):
        logger.warning("No data object in search response")
        return []

    entries = []
    for key in RESULT_LIST_KEYS:
        if isinstance(data.get(key), list) and data[key]:
            entries = data[key]
            break
    if not entries:
        logger.debug(f"No listings in response for '{query}'")
        return []

    items = []
    needle = query.strip().lower()
    for index, raw in enumerate(entries):
        if not isinstance(raw, dict):
            continue
        try:
            item = parse_item(raw, query, now_ms=now_ms)
        except (TypeError, AttributeError, ValueError) as e:
            logger.warning(f"Error parsing listing {index}: {e}")
            continue
        if item is None:
            continue
        if needle and needle not in item.title.lower():
            continue
        if max_age_minutes is not None and item.age_minutes > max_age_minutes:
            continue
        items.append(item)

    logger.debug(f"Parsed {len(items)} listings from {len(entries)} entries for '{query}'")
    return items
