"""
cinelog.engine.achievements — Achievement Predicates & Evaluation
===================================================================

Closed set of predicate variants, one frozen dataclass per kind, each
carrying only the parameters it needs.  A handler registry maps every
variant to a pure function ``(predicate, snapshot, trigger) → bool``; the
registry is checked against the :data:`Predicate` union at import time,
so adding a variant without a handler fails loudly instead of silently
never firing.

Variants whose counter source does not exist yet are registered with a
handler that raises :class:`PredicateNotImplemented`.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, get_args

from cinelog.constants import WIRED_GENRE_IDS
from cinelog.database.models import COUNTER_FIELDS, TriggerAction

if TYPE_CHECKING:
    from cinelog.engine.catalog import AchievementDefinition

logger = logging.getLogger(__name__)


class PredicateNotImplemented(Exception):
    """Raised for predicate kinds that have no counter source yet."""


# ---------------------------------------------------------------------------
# Counter snapshot — immutable point-in-time view of one user's counters
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CounterSnapshot:
    """Read-only counters for one user.

    Parameters
    ----------
    user_id : Owner of the counters.
    counters : Counter name → value (see ``COUNTER_FIELDS``).
    genre_counts : Catalog genre id → number of logs in that genre.
    taken_at : When the snapshot was read.
    """

    user_id: str
    counters: Mapping[str, int] = field(default_factory=dict)
    genre_counts: Mapping[int, int] = field(default_factory=dict)
    taken_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "counters", MappingProxyType(dict(self.counters)))
        object.__setattr__(self, "genre_counts", MappingProxyType(dict(self.genre_counts)))

    def get(self, name: str) -> int:
        """Value of counter *name*; unknown names raise ``KeyError``."""
        if name not in COUNTER_FIELDS:
            raise KeyError(f"Unknown counter: {name!r}")
        return self.counters.get(name, 0)

    def genre(self, genre_id: int) -> int:
        return self.genre_counts.get(genre_id, 0)

    @classmethod
    def empty(cls, user_id: str) -> CounterSnapshot:
        return cls(user_id=user_id)


@dataclass(frozen=True, slots=True)
class Trigger:
    """The action that scheduled an evaluation, if known."""

    action: TriggerAction | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Predicate variants
# ---------------------------------------------------------------------------
class CompositeKind(enum.StrEnum):
    """Cross-entity predicates that simple counters cannot answer."""
    COMPLETED_SERIES = "completed_series"
    SAME_DIRECTOR = "same_director"
    CURRENT_YEAR_RELEASES = "current_year_releases"


@dataclass(frozen=True, slots=True)
class CounterThreshold:
    """``snapshot[counter] >= threshold``."""

    predicate_type: ClassVar[str] = "counter_threshold"
    counter: str
    threshold: int


@dataclass(frozen=True, slots=True)
class GenreCounterThreshold:
    """Logs in one catalog genre ``>= threshold``."""

    predicate_type: ClassVar[str] = "genre_counter_threshold"
    genre_id: int
    threshold: int


@dataclass(frozen=True, slots=True)
class CalendarDate:
    """The triggering *action* happened on ``month``/``day`` (UTC)."""

    predicate_type: ClassVar[str] = "calendar_date"
    month: int
    day: int
    action: TriggerAction


@dataclass(frozen=True, slots=True)
class CompositeCount:
    """Count of a derived fact (e.g. series fully logged) ``>= threshold``."""

    predicate_type: ClassVar[str] = "composite_count"
    composite: CompositeKind
    threshold: int


@dataclass(frozen=True, slots=True)
class UniqueGenreCount:
    """Distinct genres logged ``>= threshold``."""

    predicate_type: ClassVar[str] = "unique_genre_count"
    threshold: int


@dataclass(frozen=True, slots=True)
class LogStreak:
    """Consecutive days with at least one log ``>= days``."""

    predicate_type: ClassVar[str] = "log_streak"
    days: int


Predicate = (
    CounterThreshold
    | GenreCounterThreshold
    | CalendarDate
    | CompositeCount
    | UniqueGenreCount
    | LogStreak
)


# ---------------------------------------------------------------------------
# Handlers — pure functions (predicate, snapshot, trigger) → bool
# ---------------------------------------------------------------------------
def _check_counter_threshold(
    pred: CounterThreshold, snapshot: CounterSnapshot, trigger: Trigger | None,
) -> bool:
    return snapshot.get(pred.counter) >= pred.threshold


def _check_genre_counter_threshold(
    pred: GenreCounterThreshold, snapshot: CounterSnapshot, trigger: Trigger | None,
) -> bool:
    if pred.genre_id not in WIRED_GENRE_IDS:
        raise PredicateNotImplemented(f"genre {pred.genre_id} has no counter source")
    return snapshot.genre(pred.genre_id) >= pred.threshold


def _check_calendar_date(
    pred: CalendarDate, snapshot: CounterSnapshot, trigger: Trigger | None,
) -> bool:
    if trigger is None or trigger.action != pred.action:
        return False
    when = trigger.occurred_at
    if when.tzinfo is not None:
        when = when.astimezone(UTC)
    return (when.month, when.day) == (pred.month, pred.day)


def _not_implemented(pred: Any, snapshot: CounterSnapshot, trigger: Trigger | None) -> bool:
    raise PredicateNotImplemented(f"{pred.predicate_type} has no counter source")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------
PREDICATE_HANDLERS: dict[type, Callable[[Any, CounterSnapshot, Trigger | None], bool]] = {
    CounterThreshold: _check_counter_threshold,
    GenreCounterThreshold: _check_genre_counter_threshold,
    CalendarDate: _check_calendar_date,
    CompositeCount: _not_implemented,
    UniqueGenreCount: _not_implemented,
    LogStreak: _not_implemented,
}

_missing = set(get_args(Predicate)) - set(PREDICATE_HANDLERS)
if _missing:
    raise RuntimeError(
        f"No handler registered for predicate variants: {sorted(t.__name__ for t in _missing)}"
    )


def evaluate_predicate(
    predicate: Predicate,
    snapshot: CounterSnapshot,
    trigger: Trigger | None = None,
) -> bool:
    """Dispatch *predicate* to its handler.

    Raises
    ------
    PredicateNotImplemented
        For variants without a counter source.
    TypeError
        If *predicate* is not one of the :data:`Predicate` variants.
    """
    handler = PREDICATE_HANDLERS.get(type(predicate))
    if handler is None:
        raise TypeError(f"Not a predicate variant: {predicate!r}")
    return handler(predicate, snapshot, trigger)


# ---------------------------------------------------------------------------
# Main check function
# ---------------------------------------------------------------------------
def check_achievements(
    definitions: Iterable[AchievementDefinition],
    snapshot: CounterSnapshot,
    already_granted: set[str],
    trigger: Trigger | None = None,
) -> list[str]:
    """Return ids of definitions the user now qualifies for.

    Definitions already in *already_granted* are skipped.  A definition
    whose predicate is unimplemented or malformed is skipped without
    affecting the rest of the catalog.
    """
    due: list[str] = []

    for definition in definitions:
        if definition.id in already_granted:
            continue

        try:
            satisfied = evaluate_predicate(definition.predicate, snapshot, trigger)
        except PredicateNotImplemented as exc:
            logger.debug("Skipping %s: %s", definition.id, exc)
            continue
        except Exception:
            logger.exception(
                "Predicate evaluation failed for %s (user %s)",
                definition.id, snapshot.user_id,
            )
            continue

        if satisfied:
            due.append(definition.id)

    return due
