"""Snapshot index and the per-phase fallback resolution policy."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from pydantic import ValidationError

from pwtrace.models.events import FrameSnapshotEvent, TraceEvent
from pwtrace.models.trace import Action, Snapshot, SnapshotPhase, SnapshotResolution

logger = logging.getLogger(__name__)

_CALL_ID_RE = re.compile(r"@call@(\d+)$")

# Fallback order per requested phase. Before and after are deliberately
# asymmetric; "closest" is always last.
FALLBACK_ORDER: dict[str, tuple[str, ...]] = {
    "before": ("action", "after", "closest"),
    "after": ("action", "before", "closest"),
    "action": ("before", "after", "closest"),
}


def call_id_from_snapshot_name(name: Optional[str]) -> Optional[str]:
    """Extract the numeric call id from a ``<phase>@call@<digits>`` name."""
    if not name:
        return None
    match = _CALL_ID_RE.search(name)
    return match.group(1) if match else None


class SnapshotStore:
    """Indexes ``frame-snapshot`` events by name and by timestamp."""

    def __init__(self, snapshots: list[Snapshot]):
        self.snapshots = snapshots
        self._by_name: dict[str, Snapshot] = {}
        for snap in snapshots:
            # first snapshot with a given name wins
            if snap.name and snap.name not in self._by_name:
                self._by_name[snap.name] = snap
        self._non_trivial = [
            s for s in snapshots if not s.is_trivial and s.timestamp is not None
        ]

    @classmethod
    def from_events(cls, events: Iterable[TraceEvent]) -> "SnapshotStore":
        snapshots = []
        for event in events:
            if not isinstance(event, FrameSnapshotEvent):
                continue
            try:
                snapshots.append(Snapshot.model_validate(event.snapshot))
            except ValidationError as e:
                logger.warning("Skipping unreadable frame snapshot: %s", e.error_count())
        logger.debug("Indexed %d frame snapshots", len(snapshots))
        return cls(snapshots)

    def __len__(self) -> int:
        return len(self.snapshots)

    def get_by_name(self, name: Optional[str]) -> Optional[Snapshot]:
        if not name:
            return None
        return self._by_name.get(name)

    def get_near_time(self, timestamp: float) -> Optional[Snapshot]:
        """Non-trivial snapshot closest in time; ties go to the earliest one."""
        best: Optional[Snapshot] = None
        best_distance = 0.0
        for snap in self._non_trivial:
            distance = abs(snap.timestamp - timestamp)
            if best is None or distance < best_distance:
                best, best_distance = snap, distance
        return best

    def get_action_snapshot(self, action: Action) -> Optional[Snapshot]:
        """The ``input@call@<id>`` snapshot captured while the action ran."""
        if action.before_snapshot:
            call_id = call_id_from_snapshot_name(action.before_snapshot)
        else:
            call_id = call_id_from_snapshot_name(action.after_snapshot)
        if call_id is None:
            return None
        return self.get_by_name(f"input@call@{call_id}")

    def _snapshot_for(self, action: Action, phase: str) -> Optional[Snapshot]:
        if phase == "before":
            return self.get_by_name(action.before_snapshot)
        if phase == "after":
            return self.get_by_name(action.after_snapshot)
        if phase == "action":
            return self.get_action_snapshot(action)
        raise ValueError(f"Unknown snapshot phase: {phase}")

    def resolve(self, action: Action, phase: SnapshotPhase = "before") -> SnapshotResolution:
        """Snapshot for ``phase`` of ``action``, degrading through fallbacks.

        The nominal snapshot is used when present and non-trivial.
        Otherwise the phase's fallback order is tried, ending with the
        non-trivial snapshot nearest to the action's start (before and
        action phases) or end (after phase).
        """
        if phase not in FALLBACK_ORDER:
            raise ValueError(f"Unknown snapshot phase: {phase}")

        requested_name = {
            "before": action.before_snapshot,
            "after": action.after_snapshot,
            "action": None,
        }[phase]
        nominal = self._snapshot_for(action, phase)
        if nominal is not None and not nominal.is_trivial:
            return SnapshotResolution(
                phase=phase, snapshot=nominal, requested_name=requested_name or nominal.name,
            )

        for fallback in FALLBACK_ORDER[phase]:
            if fallback == "closest":
                anchor = action.end_time if phase == "after" else action.start_time
                candidate = self.get_near_time(anchor)
            else:
                candidate = self._snapshot_for(action, fallback)
                if candidate is not None and candidate.is_trivial:
                    candidate = None
            if candidate is not None:
                logger.debug("Snapshot for %s (%s) fell back to %s",
                             action.call_id, phase, fallback)
                return SnapshotResolution(
                    phase=phase,
                    snapshot=candidate,
                    requested_name=requested_name,
                    fallback_used=True,
                    fallback_type=fallback,
                )

        return SnapshotResolution(
            phase=phase,
            requested_name=requested_name,
            fallback_used=True,
            fallback_type="closest",
        )
