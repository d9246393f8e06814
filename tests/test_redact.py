"""Tests for redaction module."""
from goofish_monitor.parse.redact import REDACTED, redact_dict, redact_json, redact_string


def test_redact_string_cookie_header():
    """Secret cookie values are masked, names kept."""
    text = "Cookie: _m_h5_tk=abc123_1700000000000; cna=XyZ987; theme=dark"
    result = redact_string(text)
    assert f"_m_h5_tk={REDACTED}" in result
    assert f"cna={REDACTED}" in result
    assert "abc123" not in result
    assert "XyZ987" not in result
    assert "theme=dark" in result


def test_redact_string_short_cookie_name_not_inside_words():
    """The `t` cookie is masked without touching other `...t=` keys."""
    result = redact_string("t=1700000000; limit=20")
    assert result == f"t={REDACTED}; limit=20"


def test_redact_string_bot_token():
    """Telegram bot tokens in URLs are masked."""
    text = "POST https://api.telegram.org/bot123456:AA-secret_token/sendMessage failed"
    result = redact_string(text)
    assert "AA-secret_token" not in result
    assert f"bot{REDACTED}" in result


def test_redact_string_signature():
    """Signatures in query strings are masked."""
    text = "GET /h5/x/1.0/?t=1&sign=0123456789abcdef0123456789abcdef&api=x"
    result = redact_string(text)
    assert "0123456789abcdef0123456789abcdef" not in result
    assert f"sign={REDACTED}" in result


def test_redact_string_empty():
    assert redact_string("") == ""
    assert redact_string(None) is None


def test_redact_dict_nested():
    """Secret keys are replaced at any depth, other data preserved."""
    data = {
        "domain": "h5api.m.goofish.com",
        "cookies": {"_m_h5_tk": "abc_1", "cna": "xyz", "lang": "en"},
        "request": {"cookie": "_m_h5_tk=abc_1", "query": "iphone"},
    }
    result = redact_dict(data)
    assert result["domain"] == "h5api.m.goofish.com"
    assert result["cookies"]["_m_h5_tk"] == REDACTED
    assert result["cookies"]["cna"] == REDACTED
    assert result["cookies"]["lang"] == "en"
    assert result["request"]["cookie"] == REDACTED
    assert result["request"]["query"] == "iphone"


def test_redact_json_preserves_structure():
    """Lists and scalars pass through with strings redacted."""
    data = {
        "user_id": 42,
        "running": True,
        "errors": ["HTTP 403 with cna=secretvalue", "timeout"],
    }
    result = redact_json(data)
    assert result["user_id"] == 42
    assert result["running"] is True
    assert "secretvalue" not in result["errors"][0]
    assert result["errors"][1] == "timeout"


def test_redact_dict_accepts_integer_keys():
    """Status maps keyed by user id pass through with values redacted."""
    result = redact_dict({7: {"last_error": "cookie2=abc failed"}})
    assert result == {7: {"last_error": f"cookie2={REDACTED} failed"}}
