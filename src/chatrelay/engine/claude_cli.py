"""
Reasoning engine backed by the Claude command-line client.

Runs the client in print mode with JSON output and resumes earlier
conversations by session id. A resumed session is forked so each turn
returns a fresh session id.
"""

import json
import logging
import subprocess
from typing import Optional

from chatrelay.config import settings
from chatrelay.exceptions import EngineError
from chatrelay.models.db import PermissionMode

from .base import EngineResult, ReasoningEngine

logger = logging.getLogger(__name__)


class ClaudeCLIEngine(ReasoningEngine):
    """Invoke ``claude -p`` as a subprocess, one call per turn."""

    def __init__(self, command: Optional[str] = None, model: Optional[str] = None):
        self.command = command or settings.engine_command
        self.model = model if model is not None else settings.engine_model

    def build_args(
        self, prompt: str, resumption_token: Optional[str], mode: PermissionMode
    ) -> list[str]:
        args = [self.command, "-p", prompt, "--output-format", "json"]
        if resumption_token:
            # Forking gives every turn its own session id
            args.extend(["--resume", resumption_token, "--fork-session"])
        if mode != PermissionMode.DEFAULT:
            args.extend(["--permission-mode", mode.value])
        if self.model:
            args.extend(["--model", self.model])
        return args

    def invoke(
        self,
        prompt: str,
        resumption_token: Optional[str],
        working_context: str,
        mode: PermissionMode,
        timeout: float,
    ) -> EngineResult:
        args = self.build_args(prompt, resumption_token, mode)
        logger.info(
            f"Invoking engine in {working_context} "
            f"(resume={resumption_token or 'new'}, mode={mode.value})"
        )

        try:
            completed = subprocess.run(
                args,
                cwd=working_context,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise EngineError(f"Engine timed out after {timeout:g}s") from None
        except OSError as e:
            raise EngineError(f"Could not start engine '{self.command}': {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            logger.error(f"Engine exited with {completed.returncode}: {stderr}")
            raise EngineError(stderr or "Engine failed", exit_code=completed.returncode)

        return self.parse_output(completed.stdout)

    @staticmethod
    def parse_output(stdout: str) -> EngineResult:
        """
        Parse the JSON document printed by the client.

        Raises:
            EngineError: If the output is not a successful result document
        """
        try:
            payload = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise EngineError(f"Malformed engine output: {e}") from e

        if not isinstance(payload, dict):
            raise EngineError("Malformed engine output: expected a JSON object")
        if payload.get("is_error"):
            raise EngineError(f"Engine reported an error: {payload.get('result', '')}")

        session_id = payload.get("session_id")
        if not session_id:
            raise EngineError("Engine output is missing session_id")

        cost = payload.get("total_cost_usd")
        return EngineResult(
            response_text=payload.get("result") or "",
            resumption_token=session_id,
            cost_units=float(cost) if cost is not None else None,
        )
