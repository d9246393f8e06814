"""Tests for search response parsing."""
import pytest

from goofish_monitor.errors import RemoteApiError
from goofish_monitor.parse.models import UNKNOWN_AGE_MINUTES
from goofish_monitor.parse.search_results import check_api_status, parse_search_response

NOW_MS = 1_700_000_000_000


def entry(item_id, title, price_fen="123400", minutes_ago=5, pic="//img.example/a.jpg", **args):
    click_args = {
        "id": item_id,
        "price": price_fen,
        "publishTime": str(NOW_MS - minutes_ago * 60_000) if minutes_ago is not None else None,
        "area": "Shanghai",
        "nick": "seller1",
    }
    click_args.update(args)
    return {
        "data": {
            "item": {
                "main": {
                    "clickParam": {"args": click_args},
                    "exContent": {"title": title, "picUrl": pic},
                }
            }
        }
    }


def envelope(*entries, ret=("SUCCESS::调用成功",)):
    return {"ret": list(ret), "data": {"resultList": list(entries)}}


def test_parses_listing_fields():
    items = parse_search_response(envelope(entry("111", "Sony camera A7")), "camera", now_ms=NOW_MS)
    assert len(items) == 1
    item = items[0]
    assert item.item_id == "111"
    assert item.title == "Sony camera A7"
    assert item.price == 1234.0
    assert item.location == "Shanghai"
    assert item.seller == "seller1"
    assert item.age_minutes == 5
    assert item.image_url == "https://img.example/a.jpg"
    assert item.query == "camera"
    assert item.url.endswith("/item?id=111")


def test_filters_titles_without_query():
    payload = envelope(entry("1", "Camera bag"), entry("2", "Phone case"))
    items = parse_search_response(payload, "camera", now_ms=NOW_MS)
    assert [i.item_id for i in items] == ["1"]


def test_filters_old_listings():
    payload = envelope(
        entry("1", "camera new", minutes_ago=10),
        entry("2", "camera old", minutes_ago=600),
        entry("3", "camera undated", minutes_ago=None),
    )
    items = parse_search_response(payload, "camera", max_age_minutes=60, now_ms=NOW_MS)
    assert [i.item_id for i in items] == ["1"]


def test_undated_listing_has_unknown_age():
    items = parse_search_response(
        envelope(entry("3", "camera", minutes_ago=None)), "camera", now_ms=NOW_MS
    )
    assert items[0].age_minutes == UNKNOWN_AGE_MINUTES
    assert items[0].age_display == "unknown"


def test_skips_entries_without_id():
    payload = envelope(entry("", "camera"), {"data": {}}, "junk", entry("9", "camera"))
    items = parse_search_response(payload, "camera", now_ms=NOW_MS)
    assert [i.item_id for i in items] == ["9"]


def test_empty_result_list():
    assert parse_search_response(envelope(), "camera") == []
    assert parse_search_response({"ret": ["SUCCESS::ok"]}, "camera") == []


def test_token_failure_is_credential_related():
    payload = {"ret": ["FAIL_SYS_TOKEN_EXOIRED::令牌过期"], "data": {}}
    with pytest.raises(RemoteApiError) as exc_info:
        parse_search_response(payload, "camera")
    assert exc_info.value.ret_code == "FAIL_SYS_TOKEN_EXOIRED::令牌过期"
    assert exc_info.value.credential_related is True


def test_other_failures_are_not_credential_related():
    with pytest.raises(RemoteApiError) as exc_info:
        check_api_status({"ret": ["FAIL_BIZ_PARAM_ERROR::bad"]})
    assert exc_info.value.credential_related is False


@pytest.mark.parametrize("msg", ["请先登录", "Session timeout", "未授权访问", "令牌无效"])
def test_login_wording_in_message_is_credential_related(msg):
    with pytest.raises(RemoteApiError) as exc_info:
        check_api_status({"ret": ["FAIL_BIZ_FORBIDDEN::denied"], "msg": msg})
    assert exc_info.value.api_message == msg
    assert exc_info.value.credential_related is True


def test_status_success_is_accepted():
    check_api_status({"status": "SUCCESS"})


@pytest.mark.parametrize("status_code", [401, 403, 429])
def test_http_rejections_are_credential_related(status_code):
    assert RemoteApiError("rejected", status_code=status_code).credential_related is True


def test_server_error_is_not_credential_related():
    assert RemoteApiError("boom", status_code=500).credential_related is False
