"""
Unit tests for the structlog processors.
"""

from shared.logging import (
    REDACTED,
    add_correlation_context,
    clear_context,
    redact_credentials,
    set_request_id,
    set_user_context,
)


class TestLoggingProcessors:
    """Test cases for the gateway's event processors."""

    def teardown_method(self):
        clear_context()

    def test_credentials_are_masked(self):
        event = redact_credentials(None, "info", {
            "event": "Login failed",
            "username": "alex_walker",
            "password": "secret",
            "Authorization": "Token tok-123",
            "token": None,
        })

        assert event["password"] == REDACTED
        assert event["Authorization"] == REDACTED
        assert event["username"] == "alex_walker"
        assert event["token"] is None

    def test_correlation_ids_attached(self):
        request_id = set_request_id()
        set_user_context("7")

        event = add_correlation_context(None, "info", {"event": "Cache hit"})

        assert event["request_id"] == request_id
        assert event["user_id"] == "7"

    def test_cleared_context_adds_nothing(self):
        set_request_id("req-1")
        clear_context()

        assert add_correlation_context(None, "info", {"event": "Gateway torn down"}) == {
            "event": "Gateway torn down"
        }
