"""
Tests for the Claude CLI reasoning engine.
"""

import json
import subprocess
from unittest.mock import patch

import pytest

from chatrelay.engine.claude_cli import ClaudeCLIEngine
from chatrelay.exceptions import EngineError
from chatrelay.models.db import PermissionMode


def _completed(stdout: str = "", stderr: str = "", returncode: int = 0):
    return subprocess.CompletedProcess(
        args=["claude"], returncode=returncode, stdout=stdout, stderr=stderr
    )


def _result_json(**overrides) -> str:
    payload = {
        "type": "result",
        "is_error": False,
        "result": "All done.",
        "session_id": "abc-123",
        "total_cost_usd": 0.25,
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.fixture
def engine() -> ClaudeCLIEngine:
    return ClaudeCLIEngine(command="claude", model="")


class TestBuildArgs:
    """Tests for command-line construction."""

    def test_new_conversation(self, engine):
        args = engine.build_args("hi", None, PermissionMode.DEFAULT)

        assert args == ["claude", "-p", "hi", "--output-format", "json"]

    def test_resume_with_mode(self, engine):
        args = engine.build_args("hi", "tok-1", PermissionMode.ACCEPT_EDITS)

        assert args[-5:] == [
            "--resume",
            "tok-1",
            "--fork-session",
            "--permission-mode",
            "acceptEdits",
        ]

    def test_new_conversation_is_not_forked(self, engine):
        args = engine.build_args("hi", None, PermissionMode.PLAN)

        assert "--fork-session" not in args
        assert "--resume" not in args

    def test_model(self):
        engine = ClaudeCLIEngine(command="claude", model="opus")

        args = engine.build_args("hi", None, PermissionMode.DEFAULT)

        assert args[-2:] == ["--model", "opus"]


class TestInvoke:
    """Tests for running the client."""

    @patch("chatrelay.engine.claude_cli.subprocess.run")
    def test_success(self, mock_run, engine):
        mock_run.return_value = _completed(stdout=_result_json())

        result = engine.invoke("hi", "tok-1", "/srv/app", PermissionMode.PLAN, 30)

        assert result.response_text == "All done."
        assert result.resumption_token == "abc-123"
        assert result.cost_units == 0.25
        _, kwargs = mock_run.call_args
        assert kwargs["cwd"] == "/srv/app"
        assert kwargs["timeout"] == 30

    @patch("chatrelay.engine.claude_cli.subprocess.run")
    def test_non_zero_exit(self, mock_run, engine):
        mock_run.return_value = _completed(stderr="auth failed\n", returncode=1)

        with pytest.raises(EngineError) as exc_info:
            engine.invoke("hi", None, "/srv/app", PermissionMode.DEFAULT, 30)

        assert str(exc_info.value) == "auth failed (exit code 1)"
        assert exc_info.value.exit_code == 1

    @patch("chatrelay.engine.claude_cli.subprocess.run")
    def test_timeout(self, mock_run, engine):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="claude", timeout=30)

        with pytest.raises(EngineError, match="timed out after 30s"):
            engine.invoke("hi", None, "/srv/app", PermissionMode.DEFAULT, 30)

    @patch("chatrelay.engine.claude_cli.subprocess.run")
    def test_missing_executable(self, mock_run, engine):
        mock_run.side_effect = FileNotFoundError("claude")

        with pytest.raises(EngineError, match="Could not start engine"):
            engine.invoke("hi", None, "/srv/app", PermissionMode.DEFAULT, 30)


class TestParseOutput:
    """Tests for parsing the JSON result document."""

    def test_malformed_json(self):
        with pytest.raises(EngineError, match="Malformed engine output"):
            ClaudeCLIEngine.parse_output("not json")

    def test_not_an_object(self):
        with pytest.raises(EngineError, match="expected a JSON object"):
            ClaudeCLIEngine.parse_output("[1, 2]")

    def test_error_result(self):
        with pytest.raises(EngineError, match="reported an error: overloaded"):
            ClaudeCLIEngine.parse_output(_result_json(is_error=True, result="overloaded"))

    def test_missing_session_id(self):
        with pytest.raises(EngineError, match="missing session_id"):
            ClaudeCLIEngine.parse_output(_result_json(session_id=None))

    def test_cost_is_optional(self):
        result = ClaudeCLIEngine.parse_output(_result_json(total_cost_usd=None))

        assert result.cost_units is None
