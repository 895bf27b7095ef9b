"""
Explicit processor results.

A processor returns one of these instead of relying on exceptions alone; the
worker settles the job according to ``kind``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class OutcomeKind(str, Enum):
    COMPLETED = "completed"  # side effects applied
    SKIPPED = "skipped"  # precondition stale, nothing to do
    DISCARDED = "discarded"  # permanent failure, retrying cannot help
    RESCHEDULED = "rescheduled"  # run again at a corrected time
    RETRY = "retry"  # transient failure, consume an attempt


@dataclass(frozen=True)
class FollowUp:
    """A job to enqueue after the current one has settled.

    Used when the follow-up shares the current job's idempotency key and so
    cannot be enqueued while the current job is still active.
    """

    payload: Any  # JobPayload
    run_at: datetime


@dataclass(frozen=True)
class JobOutcome:
    kind: OutcomeKind
    result: dict[str, Any] | None = None
    reason: str | None = None
    run_at: datetime | None = None
    payload: Any = None  # replacement payload for RESCHEDULED
    stop_repeat: bool = False
    follow_ups: tuple[FollowUp, ...] = field(default_factory=tuple)

    @classmethod
    def completed(
        cls, result: dict[str, Any] | None = None, *, stop_repeat: bool = False
    ) -> "JobOutcome":
        return cls(OutcomeKind.COMPLETED, result=result, stop_repeat=stop_repeat)

    @classmethod
    def skipped(
        cls,
        reason: str,
        *,
        follow_ups: tuple[FollowUp, ...] = (),
        stop_repeat: bool = False,
    ) -> "JobOutcome":
        return cls(
            OutcomeKind.SKIPPED,
            reason=reason,
            follow_ups=follow_ups,
            stop_repeat=stop_repeat,
        )

    @classmethod
    def discarded(cls, reason: str, *, stop_repeat: bool = False) -> "JobOutcome":
        return cls(OutcomeKind.DISCARDED, reason=reason, stop_repeat=stop_repeat)

    @classmethod
    def rescheduled(
        cls, run_at: datetime, reason: str, payload: Any = None
    ) -> "JobOutcome":
        return cls(OutcomeKind.RESCHEDULED, run_at=run_at, reason=reason, payload=payload)

    @classmethod
    def retry(cls, reason: str) -> "JobOutcome":
        return cls(OutcomeKind.RETRY, reason=reason)

    @property
    def is_terminal_success(self) -> bool:
        """Settles the job as completed."""
        return self.kind in (
            OutcomeKind.COMPLETED,
            OutcomeKind.SKIPPED,
            OutcomeKind.DISCARDED,
        )

    def as_result(self) -> dict[str, Any]:
        """Result document stored on the job row."""
        document: dict[str, Any] = {"outcome": self.kind.value}
        if self.reason:
            document["reason"] = self.reason
        if self.result:
            document.update(self.result)
        return document
