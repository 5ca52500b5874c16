"""Tests for output module."""

import json

import pytest

from xibo_auth.auth.errors import AuthError, AuthExhausted, CredentialInvalid, EndpointAttempt
from xibo_auth.output import OutputHandler, format_error_json, format_human, format_json


class TestFormatJson:
    """Tests for format_json function."""

    def test_format_success(self):
        """Test formatting successful response."""
        result = format_json({"key": "value"})
        parsed = json.loads(result)
        assert parsed["success"] is True
        assert parsed["data"] == {"key": "value"}

    def test_always_enveloped(self):
        """Test any payload, including an error-shaped one, is wrapped as data."""
        parsed = json.loads(format_json({"success": False}))
        assert parsed == {"success": True, "data": {"success": False}}


class TestFormatErrorJson:
    """Tests for format_error_json function."""

    def test_basic_error(self):
        """Test the error type defaults to the exception class."""
        parsed = json.loads(format_error_json(AuthError("boom"), help_text="try again"))

        assert parsed["success"] is False
        assert parsed["error"]["type"] == "AuthError"
        assert parsed["error"]["message"] == "boom"
        assert parsed["error"]["help"] == "try again"
        assert "status_code" not in parsed["error"]

    def test_status_code_included(self):
        """Test the HTTP status of an auth error is reported."""
        parsed = json.loads(format_error_json(CredentialInvalid("rejected", status_code=401)))

        assert parsed["error"]["status_code"] == 401

    def test_explicit_error_type(self):
        """Test an explicit error type overrides the class name."""
        parsed = json.loads(format_error_json(AuthError("x"), error_type="mfa_required"))

        assert parsed["error"]["type"] == "mfa_required"

    def test_exhausted_lists_attempts(self):
        """Test every failed endpoint is listed for an exhausted login."""
        error = AuthExhausted(
            "All token endpoints failed",
            [
                EndpointAttempt("/api/authorize/access_token", "password", "CredentialInvalid", "HTTP 401"),
                EndpointAttempt("/api/oauth/token", "password", "ProtocolMismatch", "HTTP 404"),
            ],
        )

        parsed = json.loads(format_error_json(error))

        assert len(parsed["error"]["attempts"]) == 2
        assert "/api/oauth/token" in parsed["error"]["attempts"][1]


class TestFormatHuman:
    """Tests for format_human function."""

    def test_mapping_aligned(self):
        """Test mapping keys are padded to a common width."""
        assert format_human({"url": "x", "mode": "y"}) == "url   x\nmode  y"

    def test_non_mapping_as_json(self):
        """Test other values fall back to JSON."""
        assert json.loads(format_human([1, 2])) == [1, 2]


class TestOutputHandler:
    """Tests for OutputHandler class."""

    def test_success_json_mode(self, capsys):
        """Test success output in JSON mode."""
        OutputHandler(json_mode=True).success({"deleted": True})

        parsed = json.loads(capsys.readouterr().out)
        assert parsed == {"success": True, "data": {"deleted": True}}

    def test_success_human_mode(self, capsys):
        """Test success output in human mode prefers the message."""
        OutputHandler(json_mode=False).success({"deleted": True}, human_message="Done.")

        assert capsys.readouterr().out == "Done.\n"

    def test_error_json_mode_exits(self, capsys):
        """Test error output in JSON mode exits with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            OutputHandler(json_mode=True).error(AuthError("bad"))

        assert exc_info.value.code == 1
        assert json.loads(capsys.readouterr().out)["error"]["message"] == "bad"

    def test_error_human_mode_to_stderr(self, capsys):
        """Test error output in human mode goes to stderr with help text."""
        with pytest.raises(SystemExit):
            OutputHandler(json_mode=False).error(AuthError("bad"), help_text="Check it.")

        captured = capsys.readouterr()
        assert "Error: bad" in captured.err
        assert "Check it." in captured.err

    def test_table_human_mode(self, capsys):
        """Test tables are aligned in human mode."""
        OutputHandler(json_mode=False).table(["Name", "Level"], [["displays", "editor"]])

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("Name")
        assert "displays" in lines[2]

    def test_table_json_mode(self, capsys):
        """Test tables become lists of objects in JSON mode."""
        OutputHandler(json_mode=True).table(["Name", "Level"], [["displays", "editor"]])

        parsed = json.loads(capsys.readouterr().out)
        assert parsed["data"] == [{"Name": "displays", "Level": "editor"}]
