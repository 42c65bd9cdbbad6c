"""
Per-unit outcomes and the run manifest.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Literal, Optional

logger = logging.getLogger(__name__)

Status = Literal["success", "skipped", "failed"]


@dataclass(frozen=True)
class UnitOutcome:
    """Result of one unit of work: a variable, a scenario or a change surface."""

    unit: str
    name: str
    status: Status
    reason: Optional[str] = None
    scenario: Optional[str] = None
    path: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class RunManifest:
    """What a pipeline run produced, skipped and why, and whether it aborted."""

    outcomes: list[UnitOutcome] = field(default_factory=list)
    info: dict = field(default_factory=dict)
    aborted: Optional[str] = None

    def record(self, outcome: UnitOutcome) -> UnitOutcome:
        self.outcomes.append(outcome)
        return outcome

    def extend(self, outcomes: list[UnitOutcome]) -> None:
        self.outcomes.extend(outcomes)

    def abort(self, reason: str) -> None:
        logger.error(f"Run aborted: {reason}")
        self.aborted = reason

    def filter(self, unit: Optional[str] = None, status: Optional[Status] = None) -> list[UnitOutcome]:
        return [
            o for o in self.outcomes
            if (unit is None or o.unit == unit) and (status is None or o.status == status)
        ]

    @property
    def succeeded(self) -> list[UnitOutcome]:
        return self.filter(status="success")

    @property
    def skipped(self) -> list[UnitOutcome]:
        return self.filter(status="skipped")

    @property
    def failed(self) -> list[UnitOutcome]:
        return self.filter(status="failed")

    def to_dict(self) -> dict:
        return {
            "aborted": self.aborted,
            "info": self.info,
            "summary": {
                "success": len(self.succeeded),
                "skipped": len(self.skipped),
                "failed": len(self.failed),
            },
            "outcomes": [o.to_dict() for o in self.outcomes],
        }

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved run manifest to {path}")
        return path
