"""Reasoning engine interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from chatrelay.models.db import PermissionMode


@dataclass(frozen=True)
class EngineResult:
    """Outcome of one engine call."""

    response_text: str
    resumption_token: str
    cost_units: Optional[float] = None


class ReasoningEngine(ABC):
    """
    External engine that turns a prompt into a response.

    Implementations resume an earlier conversation when given the token
    returned by a previous call, and issue a new token for every call.
    """

    @abstractmethod
    def invoke(
        self,
        prompt: str,
        resumption_token: Optional[str],
        working_context: str,
        mode: PermissionMode,
        timeout: float,
    ) -> EngineResult:
        """
        Run one turn.

        Args:
            prompt: Text to send
            resumption_token: Token of the exchange to resume, or None to
                start a fresh engine conversation
            working_context: Working directory the engine operates in
            mode: Permission mode of the channel
            timeout: Seconds before the call is abandoned

        Returns:
            EngineResult with the response and the new resumption token

        Raises:
            EngineError: If the engine fails, times out or returns garbage
        """
