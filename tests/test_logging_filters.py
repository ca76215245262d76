import logging

from catalog_sync.logging_filters import _PayloadTrimFilter, summarize_html, truncate


def _record(msg, *args):
    return logging.LogRecord("uvicorn.error", logging.INFO, __file__, 1, msg, args, None)


def test_html_description_is_summarized():
    html = "<p>" + "A very long product description. " * 20 + "</p>"
    record = _record("[ATTR] description=%s", html)
    assert _PayloadTrimFilter().filter(record) is True
    assert record.getMessage().endswith(f"[HTML {len('[ATTR] description=' + html)} chars trimmed]")
    assert "<p>" not in record.getMessage()


def test_long_plain_message_is_truncated():
    record = _record("x" * 50)
    _PayloadTrimFilter(limit=10).filter(record)
    assert record.getMessage() == "x" * 10 + " [40 chars trimmed]"


def test_short_messages_pass_through():
    record = _record("[SYNC] add: %s products", 3)
    _PayloadTrimFilter().filter(record)
    assert record.getMessage() == "[SYNC] add: 3 products"


def test_helpers():
    assert truncate("abc", 5) == "abc"
    assert summarize_html("<div>Hi <b>there</b></div>") == "Hi there [HTML 26 chars trimmed]"
