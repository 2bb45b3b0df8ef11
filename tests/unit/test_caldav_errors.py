"""
@file: tests/unit/test_caldav_errors.py
@description: Unit-тесты классификации ответов CalDAV и обрезки сообщений (caldav_sync/exceptions.py)
@dependencies: pytest
"""

import pytest

from caldav_sync.exceptions import (
    AuthTransportError,
    ConflictTransportError,
    TransientTransportError,
    classify_response,
    truncate_error_message,
)

HREF = "https://dav.example.com/cal/uid.ics"


@pytest.mark.parametrize("method, status_code", [("PUT", 201), ("PUT", 204), ("DELETE", 204), ("DELETE", 404)])
def test_success_responses(method, status_code):
    assert classify_response(method, HREF, status_code) is None


def test_not_found_on_put_is_transient():
    assert isinstance(classify_response("PUT", HREF, 404), TransientTransportError)


def test_conflict_only_on_put():
    assert isinstance(classify_response("PUT", HREF, 412), ConflictTransportError)
    assert isinstance(classify_response("DELETE", HREF, 412), TransientTransportError)


def test_auth_errors_not_retryable():
    error = classify_response("DELETE", HREF, 401, "denied")
    assert isinstance(error, AuthTransportError)
    assert error.retryable is False
    assert "401" in str(error)


def test_body_excerpt_is_capped():
    error = classify_response("PUT", HREF, 500, "x" * 1000)
    assert len(error.body_excerpt) == 200


def test_truncate_error_message():
    assert truncate_error_message("short") == "short"
    truncated = truncate_error_message("e" * 600)
    assert len(truncated) == 500
    assert truncated.endswith("...")
    assert truncate_error_message("e" * 500) == "e" * 500
