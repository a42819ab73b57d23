"""Rebuilds executed actions and step-group nesting from a flat event list."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from pwtrace.models.events import AfterEvent, BeforeEvent, TraceEvent
from pwtrace.models.trace import Action, StepGroup

logger = logging.getLogger(__name__)

DEFAULT_GROUP_METHOD = "tracingGroup"


class ActionReconstructor:
    """Pairs before/after events into actions in two linear passes.

    Pass one indexes ``after`` events and registers every step group
    that has both of its events. Pass two walks the ``before`` events in
    file order and emits one immutable Action per matched pair.
    """

    def __init__(self, group_method: str = DEFAULT_GROUP_METHOD, max_parent_hops: int = 256):
        self.group_method = group_method
        self.max_parent_hops = max_parent_hops
        self.groups: dict[str, StepGroup] = {}
        self.unmatched_calls: list[str] = []

    def reconstruct(self, events: Iterable[TraceEvent]) -> list[Action]:
        befores: list[BeforeEvent] = []
        afters: dict[str, AfterEvent] = {}
        seen_calls: set[str] = set()

        for event in events:
            if isinstance(event, BeforeEvent):
                if event.call_id in seen_calls:
                    logger.warning("Duplicate before event for %s ignored", event.call_id)
                    continue
                seen_calls.add(event.call_id)
                befores.append(event)
            elif isinstance(event, AfterEvent):
                if event.call_id in afters:
                    logger.debug("Duplicate after event for %s ignored", event.call_id)
                    continue
                afters[event.call_id] = event

        self.groups = {}
        self.unmatched_calls = []
        for before in befores:
            if before.method == self.group_method and before.call_id in afters:
                self.groups[before.call_id] = StepGroup(
                    call_id=before.call_id,
                    title=before.title,
                    parent_id=before.parent_id,
                    stack=before.stack,
                )

        actions = []
        for before in befores:
            after = afters.get(before.call_id)
            if after is None:
                self.unmatched_calls.append(before.call_id)
                logger.debug("Call %s (%s) never completed; dropped", before.call_id, before.method)
                continue
            actions.append(self._build_action(before, after))

        orphans = set(afters) - seen_calls
        if orphans:
            logger.debug("%d after events had no matching before", len(orphans))
        if self.groups:
            logger.debug("Registered %d step groups", len(self.groups))
        return actions

    def nesting_depth(self, parent_id: Optional[str]) -> int:
        """Number of registered groups on the chain starting at ``parent_id``."""
        depth = 0
        visited: set[str] = set()
        current = parent_id
        while current and current in self.groups:
            if current in visited or depth >= self.max_parent_hops:
                logger.warning("Parent chain from %s is cyclic or too deep; stopping at %d",
                               parent_id, depth)
                break
            visited.add(current)
            depth += 1
            current = self.groups[current].parent_id
        return depth

    def _build_action(self, before: BeforeEvent, after: AfterEvent) -> Action:
        step_title = None
        source_location = None
        nesting_depth = 0

        own_group = self.groups.get(before.call_id)
        if own_group is not None:
            step_title = own_group.title
            source_location = own_group.source_location
            nesting_depth = self.nesting_depth(before.parent_id)
        elif before.parent_id and before.parent_id in self.groups:
            parent = self.groups[before.parent_id]
            step_title = parent.title
            source_location = parent.source_location
            nesting_depth = self.nesting_depth(before.parent_id)

        start_time = before.start_time
        end_time = after.end_time
        if end_time < start_time:
            logger.warning("Call %s ends before it starts (%.3f < %.3f); clamping",
                           before.call_id, end_time, start_time)
            end_time = start_time

        return Action(
            call_id=before.call_id,
            method=before.method,
            params=before.params,
            start_time=start_time,
            end_time=end_time,
            duration=end_time - start_time,
            status="failed" if after.error is not None else "passed",
            error=after.error,
            before_snapshot=before.before_snapshot,
            after_snapshot=after.after_snapshot,
            step_title=step_title,
            nesting_depth=nesting_depth,
            source_location=source_location,
        )
