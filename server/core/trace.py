"""Per-request diagnostic trace, emitted as a single log line."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4


@dataclass
class RequestTrace:
    """Accumulates pipeline events for one chat turn.

    Created by the engine at the start of a request, passed explicitly to
    every stage that wants to record something, and emitted once when the
    response is ready.
    """
    request_id: str = field(default_factory=lambda: uuid4().hex[:12])
    started_at: float = field(default_factory=time.monotonic)
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def add(self, stage: str, **fields: Any) -> None:
        self.events.append((stage, fields))

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.events]

    def last(self, stage: str) -> dict[str, Any]:
        for name, fields in reversed(self.events):
            if name == stage:
                return fields
        return {}

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)

    def emit(self, logger: logging.Logger) -> None:
        parts = []
        for stage, fields in self.events:
            detail = ",".join(f"{k}={v}" for k, v in fields.items())
            parts.append(f"{stage}({detail})" if detail else stage)
        logger.info(f"[{self.request_id}] {' > '.join(parts)} in {self.elapsed_ms()}ms")
