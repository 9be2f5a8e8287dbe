"""Reasoning engine adapters."""

from chatrelay.engine.base import EngineResult, ReasoningEngine
from chatrelay.engine.claude_cli import ClaudeCLIEngine

__all__ = ["ClaudeCLIEngine", "EngineResult", "ReasoningEngine"]
