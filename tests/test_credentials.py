"""Tests for credential sets and validation helpers."""
import dataclasses

import pytest

from goofish_monitor.auth.credentials import (
    CredentialSet,
    CredentialSource,
    format_cookie_header,
    mask_value,
    parse_cookie_header,
    placeholder_value,
    token_age_hours,
    validate_credentials,
)

DOMAIN = "h5api.m.goofish.com"


def test_parse_cookie_header_keeps_order():
    cookies = parse_cookie_header("b=2; a=1; c=x=y")
    assert list(cookies.items()) == [("b", "2"), ("a", "1"), ("c", "x=y")]


def test_parse_cookie_header_skips_attributes_and_junk():
    cookies = parse_cookie_header("_m_h5_tk=abc_1; Path=/; Domain=.goofish.com; HttpOnly; Secure")
    assert cookies == {"_m_h5_tk": "abc_1"}


def test_parse_cookie_header_empty():
    assert parse_cookie_header("") == {}
    assert parse_cookie_header(None) == {}
    assert parse_cookie_header("   ") == {}


def test_format_cookie_header():
    assert format_cookie_header({"a": "1", "b": "2"}) == "a=1; b=2"
    assert format_cookie_header([("x", "y")]) == "x=y"


def test_credential_set_header_round_trip():
    creds = CredentialSet.from_header(DOMAIN, "a=1; b=2", CredentialSource.STATIC)
    assert creds.to_header() == "a=1; b=2"
    assert creds.get("a") == "1"
    assert creds.get("missing") is None
    assert "b" in creds
    assert len(creds) == 2
    assert list(creds) == ["a", "b"]


def test_credential_set_is_immutable():
    creds = CredentialSet.from_header(DOMAIN, "a=1", CredentialSource.LIVE)
    with pytest.raises(dataclasses.FrozenInstanceError):
        creds.domain = "other"


def test_with_values_returns_new_set():
    creds = CredentialSet.from_header(DOMAIN, "a=1; b=2", CredentialSource.LIVE)
    extended = creds.with_values({"b": "3", "c": "4"})
    assert creds.as_dict() == {"a": "1", "b": "2"}
    assert extended.as_dict() == {"a": "1", "b": "3", "c": "4"}
    assert extended.source is CredentialSource.LIVE
    assert extended.domain == DOMAIN


def test_empty_set():
    creds = CredentialSet.empty(DOMAIN)
    assert len(creds) == 0
    assert creds.source is CredentialSource.EMPTY
    assert creds.to_header() == ""


def test_validate_two_of_three():
    assert validate_credentials({"a": "1", "c": "3"}, ("a", "b", "c"), 2) is True


def test_validate_ignores_extra_keys():
    values = {"a": "1", "x": "1", "y": "2", "z": "3"}
    assert validate_credentials(values, ("a", "b", "c"), 2) is False


def test_validate_empty_values_do_not_count():
    assert validate_credentials({"a": "1", "b": "", "c": "  "}, ("a", "b", "c"), 2) is False


def test_validate_works_on_credential_sets():
    creds = CredentialSet.from_header(DOMAIN, "_m_h5_tk=x_1; t=2", CredentialSource.LIVE)
    assert validate_credentials(creds, ("_m_h5_tk", "cna", "t"), 2) is True


def test_placeholder_value():
    value = placeholder_value()
    assert len(value) == 13
    assert value.isalnum()


def test_token_age_hours():
    now = 1_700_000_000.0
    issued = int((now - 2 * 3600) * 1000)
    assert token_age_hours(f"abc_{issued}", now=now) == pytest.approx(2.0)


def test_token_age_hours_without_timestamp():
    assert token_age_hours("abc", now=0) is None
    assert token_age_hours("abc_notanumber", now=0) is None
    assert token_age_hours(None) is None


def test_mask_value():
    assert mask_value("abcdefghijk") == "abcdef..."
    assert mask_value("abc") == "***"
