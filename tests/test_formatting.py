"""Tests for formatting utilities."""

from __future__ import annotations

from claudedeploy.storage.models import CommandOutcome, ExitClass
from claudedeploy.utils.formatting import format_duration, format_outcome, sanitize_request


class TestFormatDuration:
    def test_milliseconds(self):
        assert format_duration(500) == "500ms"

    def test_seconds(self):
        assert format_duration(2500) == "2.5s"

    def test_minutes(self):
        assert format_duration(125000) == "2m 5s"

    def test_zero(self):
        assert format_duration(0) == "0ms"


class TestFormatOutcome:
    def test_success(self):
        outcome = CommandOutcome("ls", "List", ExitClass.SUCCESS, execution_time_ms=1500)
        assert format_outcome(outcome) == "[OK] List (1.5s)"

    def test_nonzero(self):
        outcome = CommandOutcome("false", "Fail", ExitClass.NONZERO_EXIT, exit_code=2)
        assert "[ERR(2)]" in format_outcome(outcome)

    def test_transport(self):
        outcome = CommandOutcome("x", "X", ExitClass.TRANSPORT_ERROR, exit_code=None)
        assert "[ERR(transport)]" in format_outcome(outcome)


class TestSanitizeRequest:
    def test_removes_credentials(self):
        clean = sanitize_request({"host": "h", "password": "pw", "passphrase": "pp", "key_path": "~/.ssh/id"})
        assert "password" not in clean
        assert "passphrase" not in clean
        assert clean["key_path"] == "~/.ssh/id"

    def test_masks_provider_list(self):
        request = {"providers": [{"name": "openai", "api_key": "sk-1"}, {"name": "x", "api_key": ""}]}
        clean = sanitize_request(request)
        assert clean["providers"][0]["api_key"] == "***"
        assert clean["providers"][1]["api_key"] == ""
        assert request["providers"][0]["api_key"] == "sk-1"

    def test_masks_keyed_providers(self):
        clean = sanitize_request({"providers": {"openai": {"apiKey": "sk-1", "enabled": True}}})
        assert clean["providers"]["openai"]["apiKey"] == "***"
