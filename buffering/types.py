from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from buffering.errors import InvalidCounterKeyError


@dataclass(frozen=True)
class CounterKey:
    entity_id: str
    field_path: str

    def encode(self) -> str:
        """Campo dell'hash accumulatore: array JSON compatto, reversibile anche con ':' negli ID."""
        return json.dumps([self.entity_id, self.field_path], ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str) -> "CounterKey":
        try:
            parts = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise InvalidCounterKeyError(f"Counter key non decodificabile: {raw!r}") from e

        if (
            not isinstance(parts, list)
            or len(parts) != 2
            or not all(isinstance(p, str) for p in parts)
        ):
            raise InvalidCounterKeyError(f"Counter key con formato inatteso: {raw!r}")

        return cls(entity_id=parts[0], field_path=parts[1])


@dataclass(frozen=True)
class IncrementOperation:
    entity_id: str
    field_path: str
    delta: int

    def as_dict(self) -> Dict[str, object]:
        return {"entity_id": self.entity_id, "field_path": self.field_path, "delta": self.delta}


@dataclass
class BulkIncrementResult:
    matched: List[str] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    applied_operations: int = 0


class FlushOutcome(str, Enum):
    LOCKED = "locked"
    EMPTY = "empty"
    FLUSHED = "flushed"


@dataclass
class FlushReport:
    outcome: FlushOutcome
    operations: List[IncrementOperation] = field(default_factory=list)
    result: Optional[BulkIncrementResult] = None
    skipped_entries: int = 0
