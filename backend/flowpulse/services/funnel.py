"""Funnel reconstruction from raw events.

Everything here is pure: callers load the events (already bounded to the
raw-log retention window) and get plain dictionaries back.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol

from flowpulse.domain.events import EventKind, parse_kind
from flowpulse.domain.rates import percentage

PATH_SEPARATOR = " → "
TOP_PATHS = 10
CRITICAL_DROP_OFF = 50.0


class RawEventLike(Protocol):
    event: str
    run_id: Optional[str]
    visitor_id: str
    node_id: Optional[str]
    node_title: Optional[str]
    node_type: Optional[str]
    step_order: Optional[int]
    execution_time: Optional[int]
    success: Optional[bool]
    detail: Optional[dict]
    timestamp: datetime


@dataclass(slots=True)
class JourneyStep:
    node_id: str
    title: str
    type: str
    step_order: Optional[int]
    entered_at: datetime
    completed: bool = False
    completed_at: Optional[datetime] = None
    execution_time: Optional[int] = None
    condition_met: Optional[bool] = None


@dataclass(slots=True)
class VisitorJourney:
    run_id: str
    visitor_id: str
    start_time: datetime
    end_time: datetime
    steps: list[JourneyStep] = field(default_factory=list)
    completed: bool = False

    def latest_step(self, node_id: Optional[str]) -> Optional[JourneyStep]:
        for step in reversed(self.steps):
            if step.node_id == node_id:
                return step
        return None


def _condition_met(event: RawEventLike) -> Optional[bool]:
    if event.success is not None:
        return event.success
    detail = event.detail or {}
    if "conditionMet" in detail:
        return bool(detail["conditionMet"])
    result = detail.get("result")
    if isinstance(result, str):
        return result.lower() == "passed"
    return None


def build_journeys(events: Iterable[RawEventLike]) -> list[VisitorJourney]:
    """Group time-ordered events into one journey per run (visitor when no run id)."""
    journeys: dict[str, VisitorJourney] = {}
    for event in events:
        kind = parse_kind(event.event)
        if kind not in (
            EventKind.STEP_ENTERED,
            EventKind.STEP_COMPLETED,
            EventKind.CONDITION_EVALUATED,
            EventKind.ACTION_EXECUTED,
        ):
            continue
        run_id = event.run_id or event.visitor_id
        journey = journeys.get(run_id)
        if journey is None:
            journey = VisitorJourney(
                run_id=run_id,
                visitor_id=event.visitor_id,
                start_time=event.timestamp,
                end_time=event.timestamp,
            )
            journeys[run_id] = journey
        journey.end_time = max(journey.end_time, event.timestamp)

        if kind == EventKind.STEP_ENTERED:
            journey.steps.append(
                JourneyStep(
                    node_id=event.node_id or "",
                    title=event.node_title or event.node_id or "",
                    type=event.node_type or "",
                    step_order=event.step_order,
                    entered_at=event.timestamp,
                )
            )
            continue

        step = journey.latest_step(event.node_id)
        if kind in (EventKind.STEP_COMPLETED, EventKind.ACTION_EXECUTED):
            if step is not None:
                step.completed = True
                step.completed_at = event.timestamp
                if event.execution_time is not None:
                    step.execution_time = event.execution_time
            if kind == EventKind.ACTION_EXECUTED:
                journey.completed = True
        elif step is not None:
            step.condition_met = _condition_met(event)
            if event.execution_time is not None:
                step.execution_time = event.execution_time
    return list(journeys.values())


def funnel_steps(journeys: list[VisitorJourney]) -> list[dict[str, Any]]:
    """Per-step counts and rates; counts never increase along the funnel."""
    # key -> (lowest step order, first-seen position)
    order: dict[tuple[str, str], tuple[float, int]] = {}
    counts: Counter[tuple[str, str]] = Counter()
    completions: Counter[tuple[str, str]] = Counter()

    for journey in journeys:
        reached: dict[tuple[str, str], bool] = {}
        for step in journey.steps:
            key = (step.title, step.type)
            step_order = float(step.step_order) if step.step_order is not None else float("inf")
            if key in order:
                lowest, seen_at = order[key]
                order[key] = (min(lowest, step_order), seen_at)
            else:
                order[key] = (step_order, len(order))
            reached[key] = reached.get(key, False) or step.completed
        for key, completed in reached.items():
            counts[key] += 1
            if completed:
                completions[key] += 1

    ordered = sorted(order, key=lambda key: order[key])
    steps: list[dict[str, Any]] = []
    first_count = 0
    previous: Optional[int] = None
    for index, key in enumerate(ordered):
        count = counts[key] if previous is None else min(counts[key], previous)
        completed = min(completions[key], count)
        if index == 0:
            first_count = count
        lowest = order[key][0]
        steps.append(
            {
                "step": index + 1,
                "title": key[0],
                "type": key[1],
                "stepOrder": int(lowest) if lowest != float("inf") else None,
                "count": count,
                "completed": completed,
                "conversionRate": percentage(count, first_count),
                "dropOff": 0.0 if previous is None else percentage(previous - count, previous),
                "successRate": percentage(completed, count),
            }
        )
        previous = count
    return steps


def drop_off_table(steps: list[dict[str, Any]]) -> list[dict[str, Any]]:
    table = []
    for prev, current in zip(steps, steps[1:]):
        lost = prev["count"] - current["count"]
        rate = percentage(lost, prev["count"])
        table.append(
            {
                "fromStep": prev["title"],
                "toStep": current["title"],
                "dropOffCount": lost,
                "dropOffRate": rate,
                "critical": rate > CRITICAL_DROP_OFF,
            }
        )
    return table


def path_analysis(journeys: list[VisitorJourney], limit: int = TOP_PATHS) -> list[dict[str, Any]]:
    """Most frequent step paths with the visitors that followed each."""
    frequency: Counter[str] = Counter()
    visitors: dict[str, list[str]] = {}
    for journey in journeys:
        if not journey.steps:
            continue
        path = PATH_SEPARATOR.join(step.title for step in journey.steps)
        frequency[path] += 1
        members = visitors.setdefault(path, [])
        if journey.visitor_id not in members:
            members.append(journey.visitor_id)
    return [
        {"path": path, "count": count, "visitors": visitors[path]}
        for path, count in frequency.most_common(limit)
    ]


def step_timing(journeys: list[VisitorJourney]) -> list[dict[str, Any]]:
    samples: dict[str, list[int]] = {}
    for journey in journeys:
        for step in journey.steps:
            if step.execution_time is not None:
                samples.setdefault(step.title, []).append(step.execution_time)
    return [
        {
            "title": title,
            "avgExecutionTime": round(sum(values) / len(values), 1),
            "samples": len(values),
        }
        for title, values in samples.items()
    ]


def reconstruct_funnel(events: Iterable[RawEventLike]) -> dict[str, Any]:
    """Build the full funnel report for one workflow's events."""
    journeys = build_journeys(events)
    steps = funnel_steps(journeys)
    completed = sum(1 for journey in journeys if journey.completed)
    return {
        "summary": {
            "totalJourneys": len(journeys),
            "completedJourneys": completed,
            "overallConversionRate": percentage(completed, len(journeys)),
        },
        "steps": steps,
        "dropOffs": drop_off_table(steps),
        "paths": path_analysis(journeys),
        "stepTiming": step_timing(journeys),
    }
