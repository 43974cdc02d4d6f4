"""Tests for logging processors and cycle context binding."""

import structlog

from gatewatch.logging import REDACTED, cycle_context, redact_secrets


class TestRedactSecrets:
    def test_token_in_error_url_masked(self) -> None:
        event = {
            "event": "telegram_send_failed",
            "error": "500, url='https://api.telegram.org/bot123456:AAE-x_y9/sendMessage'",
        }

        result = redact_secrets(None, "warning", event)

        assert "123456:AAE-x_y9" not in result["error"]
        assert f"bot{REDACTED}/sendMessage" in result["error"]

    def test_secret_named_fields_masked(self) -> None:
        result = redact_secrets(None, "info", {"event": "x", "bot_token": "123:abc", "token": "t"})

        assert result["bot_token"] == REDACTED
        assert result["token"] == REDACTED

    def test_other_fields_untouched(self) -> None:
        event = {"event": "alert", "symbol": "BOT_USDT", "count": 3, "bot_token": ""}

        assert redact_secrets(None, "info", dict(event)) == event


class TestCycleContext:
    def test_binds_and_unbinds_cycle(self) -> None:
        with cycle_context(7):
            assert structlog.contextvars.get_contextvars()["cycle"] == 7
        assert "cycle" not in structlog.contextvars.get_contextvars()
