"""Outcome tracking for dispatched actions.

Every ActionResult produced by the dispatcher is recorded here so a session
can report how often the vision model was needed, which locators keep
failing, and how long actions take.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional

import structlog

from .models import ActionResult, ActionStatus

logger = structlog.get_logger()


@dataclass
class OutcomeRecord:
    """One recorded action."""

    action: str
    target: str
    status: ActionStatus
    duration_ms: int
    used_vlm: bool
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "target": self.target,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "used_vlm": self.used_vlm,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ExecutionStats:
    """Aggregate statistics for a session.

    Example:
        stats = session.get_stats()
        print(f"Vision fallback rate: {stats.vlm_fallback_rate:.1%}")
    """

    total_actions: int = 0
    succeeded: int = 0
    vlm_fallbacks: int = 0
    not_found: int = 0
    failed: int = 0

    total_duration_ms: int = 0
    vlm_duration_ms: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_actions == 0:
            return 0.0
        return (self.succeeded + self.vlm_fallbacks) / self.total_actions

    @property
    def vlm_fallback_rate(self) -> float:
        if self.total_actions == 0:
            return 0.0
        return self.vlm_fallbacks / self.total_actions

    @property
    def avg_duration_ms(self) -> float:
        if self.total_actions == 0:
            return 0.0
        return self.total_duration_ms / self.total_actions

    @property
    def avg_vlm_duration_ms(self) -> float:
        if self.vlm_fallbacks == 0:
            return 0.0
        return self.vlm_duration_ms / self.vlm_fallbacks

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_actions": self.total_actions,
            "succeeded": self.succeeded,
            "vlm_fallbacks": self.vlm_fallbacks,
            "not_found": self.not_found,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "vlm_fallback_rate": self.vlm_fallback_rate,
            "avg_duration_ms": self.avg_duration_ms,
            "avg_vlm_duration_ms": self.avg_vlm_duration_ms,
        }


class OutcomeTracker:
    """Collects action outcomes.

    Example:
        tracker = OutcomeTracker()
        tracker.record("click", "text=Save", result)
        tracker.get_common_failures(top_n=5)
    """

    def __init__(self, max_records: int = 1000):
        self.max_records = max_records
        self.stats = ExecutionStats()
        self.records: list[OutcomeRecord] = []
        self.log = logger.bind(component="outcome_tracker")

    def record(self, action: str, target: str, result: ActionResult) -> OutcomeRecord:
        record = OutcomeRecord(
            action=action,
            target=target,
            status=result.status,
            duration_ms=result.duration_ms,
            used_vlm=result.used_vlm,
            error=result.error,
        )
        self.records.append(record)
        if len(self.records) > self.max_records:
            self.records = self.records[-self.max_records:]

        self.stats.total_actions += 1
        self.stats.total_duration_ms += result.duration_ms
        if result.status == ActionStatus.SUCCESS:
            self.stats.succeeded += 1
        elif result.status == ActionStatus.VLM_FALLBACK:
            self.stats.vlm_fallbacks += 1
            self.stats.vlm_duration_ms += result.duration_ms
        elif result.status == ActionStatus.NOT_FOUND:
            self.stats.not_found += 1
        else:
            self.stats.failed += 1

        return record

    def get_stats(self) -> ExecutionStats:
        return self.stats

    def reset_stats(self) -> None:
        self.stats = ExecutionStats()
        self.records = []

    def get_common_failures(self, top_n: int = 10) -> list[dict]:
        """Targets that most often needed the vision model or failed.

        Args:
            top_n: Number of top targets to return

        Returns:
            List of dicts with target and count
        """
        counts = Counter(
            record.target
            for record in self.records
            if record.status != ActionStatus.SUCCESS
        )
        return [{"target": target, "count": count} for target, count in counts.most_common(top_n)]
