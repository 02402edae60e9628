from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(slots=True)
class GenerationMetrics:
    generations_total: int = 0
    generations_streaming_total: int = 0
    generations_failed_total: int = 0
    rounds_total: int = 0
    round_cap_hits_total: int = 0
    tool_calls_total: Dict[str, int] = field(default_factory=dict)
    tool_call_failures_total: int = 0
    mcp_connect_failures_total: int = 0

    def increment_tool_call(self, tool_name: str) -> None:
        self.tool_calls_total[tool_name] = self.tool_calls_total.get(tool_name, 0) + 1

    def snapshot(self) -> dict:
        return {
            "generations_total": self.generations_total,
            "generations_streaming_total": self.generations_streaming_total,
            "generations_failed_total": self.generations_failed_total,
            "rounds_total": self.rounds_total,
            "round_cap_hits_total": self.round_cap_hits_total,
            "tool_calls_total": dict(self.tool_calls_total),
            "tool_call_failures_total": self.tool_call_failures_total,
            "mcp_connect_failures_total": self.mcp_connect_failures_total,
        }


_generation_metrics = GenerationMetrics()


def get_generation_metrics() -> GenerationMetrics:
    return _generation_metrics
