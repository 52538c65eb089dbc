"""
cinelog.engine.catalog — Static Achievement Catalog
=====================================================

The catalog is code, not data: definitions never change at runtime and
are versioned with :data:`CATALOG_VERSION`.  Bump the version whenever a
definition is added, removed or re-thresholded so clients can refresh
their cached copy.

Ids are stable — the grant ledger stores them verbatim.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from cinelog.constants import GENRE_DOCUMENTARY, GENRE_HORROR
from cinelog.database.models import TriggerAction
from cinelog.engine.achievements import (
    CalendarDate,
    CompositeCount,
    CompositeKind,
    CounterThreshold,
    GenreCounterThreshold,
    LogStreak,
    Predicate,
    UniqueGenreCount,
)

CATALOG_VERSION = "3"


@dataclass(frozen=True, slots=True)
class AchievementDefinition:
    id: str
    display_name: str
    description: str
    icon: str
    predicate: Predicate

    @property
    def predicate_type(self) -> str:
        return self.predicate.predicate_type

    @property
    def threshold(self) -> int | None:
        """Numeric target for progress bars, when the predicate has one."""
        if isinstance(self.predicate, LogStreak):
            return self.predicate.days
        return getattr(self.predicate, "threshold", None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "description": self.description,
            "icon": self.icon,
            "predicate_type": self.predicate_type,
            "threshold": self.threshold,
        }


def _series(
    prefix: str,
    icon_prefix: str,
    make_predicate,
    tiers: Sequence[tuple[int, str, str]],
) -> list[AchievementDefinition]:
    """Expand ``(threshold, name, description)`` tiers into definitions."""
    return [
        AchievementDefinition(
            id=f"{prefix}_{value}",
            display_name=name,
            description=description,
            icon=f"{icon_prefix}{value}",
            predicate=make_predicate(value),
        )
        for value, name, description in tiers
    ]


def _counter(name: str):
    return lambda value: CounterThreshold(counter=name, threshold=value)


def _genre(genre_id: int):
    return lambda value: GenreCounterThreshold(genre_id=genre_id, threshold=value)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------
_GENERAL: list[AchievementDefinition] = [
    AchievementDefinition(
        id="FIRST_LOG",
        display_name="First Step",
        description="You logged your first entry!",
        icon="FirstLog",
        predicate=CounterThreshold(counter="items_logged", threshold=1),
    ),
    AchievementDefinition(
        id="LOG_10",
        display_name="Getting Into It",
        description="You logged 10 entries!",
        icon="Log10",
        predicate=CounterThreshold(counter="items_logged", threshold=10),
    ),
    AchievementDefinition(
        id="FIRST_REVIEW",
        display_name="Critic",
        description="You wrote your first review!",
        icon="FirstReview",
        predicate=CounterThreshold(counter="reviews_written", threshold=1),
    ),
]

_MOVIES = _series("LOG_MOVIE", "LogMovie", _counter("movies_logged"), [
    (1, "First Film", "You logged your first movie!"),
    (10, "Film Buff", "You logged 10 movies!"),
    (20, "Film Collector", "You logged 20 movies!"),
    (40, "Cinephile", "You logged 40 movies!"),
    (80, "Film Guru", "You logged 80 movies!"),
    (100, "Hundred Club (Film)", "You logged 100 movies!"),
    (150, "Film Archivist", "You logged 150 movies!"),
    (200, "Film Library", "You logged 200 movies!"),
    (300, "Film Encyclopedia", "You logged 300 movies!"),
    (400, "Film Explorer", "You logged 400 movies!"),
    (500, "Five Hundred Films", "You logged 500 movies! Incredible!"),
    (600, "Film Marathoner", "You logged 600 movies!"),
    (700, "Film Devotee", "You logged 700 movies!"),
    (800, "Film Legend", "You logged 800 movies!"),
    (900, "Film Giant", "You logged 900 movies!"),
    (1000, "A Thousand Films!", "You logged 1000 movies! You are a legend!"),
])

_EPISODES = _series("LOG_TV_EPISODE", "LogTvEpisode", _counter("episodes_logged"), [
    (1, "First Episode", "You logged your first TV episode!"),
    (25, "Series Watcher", "You logged 25 episodes!"),
    (35, "Season Hunter", "You logged 35 episodes!"),
    (55, "Marathon Begins", "You logged 55 episodes!"),
    (100, "Hundred Club (TV)", "You logged 100 episodes!"),
    (120, "Episode Monster", "You logged 120 episodes!"),
    (180, "Series Addict", "You logged 180 episodes!"),
    (250, "Screen Worm", "You logged 250 episodes!"),
    (350, "Series Professor", "You logged 350 episodes!"),
    (450, "Series Encyclopedia", "You logged 450 episodes!"),
    (550, "Series Emperor", "You logged 550 episodes!"),
    (650, "Series Giant", "You logged 650 episodes!"),
    (750, "Series Legend", "You logged 750 episodes!"),
    (850, "Series Devotee", "You logged 850 episodes!"),
    (950, "Series Marathoner", "You logged 950 episodes!"),
    (1000, "A Thousand Episodes!", "You logged 1000 episodes! Respect!"),
])

_FOLLOWING = _series("FOLLOWING", "Following", _counter("following"), [
    (5, "Friendly", "You follow 5 people!"),
    (15, "Social Network", "You follow 15 people!"),
    (30, "Popular", "You follow 30 people!"),
    (50, "Networker", "You follow 50 people!"),
    (75, "Community Leader", "You follow 75 people!"),
])

_FOLLOWERS = _series("FOLLOWER", "Follower", _counter("followers"), [
    (1, "First Follower", "You gained your first follower!"),
    (5, "Small Circle", "You gained 5 followers!"),
    (10, "Familiar Face", "You gained 10 followers!"),
    (25, "Community Member", "You gained 25 followers!"),
    (50, "Rising Star", "You gained 50 followers!"),
    (100, "A Hundred Followers!", "You reached 100 followers!"),
    (250, "Center of Attention", "You reached 250 followers!"),
    (500, "Half a Thousand", "You reached 500 followers! Wow!"),
    (1000, "A Thousand Followers!", "You reached 1000 followers! You're a star!"),
])

_LISTS = _series("LIST", "List", _counter("lists_created"), [
    (1, "First List", "You created your first list!"),
    (3, "List Maker", "You created 3 lists!"),
    (5, "Collector", "You created 5 lists!"),
    (10, "List Guru", "You created 10 lists!"),
])

_WATCHLIST = _series("WATCHLIST", "Watchlist", _counter("watchlist_size"), [
    (10, "Planner", "You added 10 items to your watchlist!"),
    (20, "Investing in the Future", "You added 20 items to your watchlist!"),
    (50, "Waiting Room", "You added 50 items to your watchlist!"),
    (100, "Impatient Viewer", "You added 100 items to your watchlist!"),
])

_LIKES = _series("LIKE", "Like", _counter("likes_given"), [
    (1, "First Like", "You liked your first entry!"),
    (5, "Appreciator", "You liked 5 entries!"),
    (10, "Shower of Likes", "You liked 10 entries!"),
    (25, "Generous Liker", "You liked 25 entries!"),
    (100, "King of Likes", "You liked 100 entries!"),
    (250, "Like Legend", "You liked 250 entries!"),
])

_GENRES = [
    *_series("HORROR_MARATHON", "HorrorMarathon", _genre(GENRE_HORROR), [
        (5, "Horror Night", "You logged 5 horror movies!"),
        (10, "Horror Marathon", "You logged 10 horror movies!"),
        (20, "Master of Horror", "You logged 20 horror movies!"),
    ]),
    *_series("DOCU_MARATHON", "DocuMarathon", _genre(GENRE_DOCUMENTARY), [
        (3, "Documentary Fan", "You logged 3 documentaries!"),
        (5, "Documentary Week", "You logged 5 documentaries!"),
        (10, "Documentary Archive", "You logged 10 documentaries!"),
    ]),
]

_COMPOSITE = [
    *_series(
        "DIRECTOR", "Director",
        lambda v: CompositeCount(composite=CompositeKind.SAME_DIRECTOR, threshold=v),
        [
            (3, "Director Follower", "You watched 3 films by the same director!"),
            (4, "Director Fan", "You watched 4 films by the same director!"),
            (6, "Director Expert", "You watched 6 films by the same director!"),
            (10, "Director Collector", "You watched 10 films by the same director!"),
        ],
    ),
    *_series(
        "THIS_YEAR", "ThisYear",
        lambda v: CompositeCount(composite=CompositeKind.CURRENT_YEAR_RELEASES, threshold=v),
        [
            (3, "Up to Date", "You logged 3 films released this year!"),
            (5, "Trend Follower", "You logged 5 films released this year!"),
            (10, "Pulse of the Year", "You logged 10 films released this year!"),
        ],
    ),
    AchievementDefinition(
        id="COMPLETE_SERIES",
        display_name="Series Finisher",
        description="You logged every season of a show!",
        icon="CompleteSeries",
        predicate=CompositeCount(composite=CompositeKind.COMPLETED_SERIES, threshold=1),
    ),
    *_series("GENRE_EXPLORER", "GenreExplorer", lambda v: UniqueGenreCount(threshold=v), [
        (3, "Genre Explorer", "You logged content in at least 3 genres!"),
        (5, "Genre Traveller", "You logged content in at least 5 genres!"),
        (10, "Genre Expert", "You logged content in at least 10 genres!"),
    ]),
    *_series("STREAK", "Streak", lambda v: LogStreak(days=v), [
        (10, "Daily Viewer", "You logged for 10 days in a row!"),
        (20, "Logging Master", "You logged for 20 days in a row!"),
    ]),
]

_CALENDAR = [
    AchievementDefinition(
        id="NEW_YEAR_LIST",
        display_name="New Year Plan",
        description="You created a list on January 1st!",
        icon="NewYearList",
        predicate=CalendarDate(month=1, day=1, action=TriggerAction.LIST_CREATED),
    ),
    AchievementDefinition(
        id="ANNIVERSARY_LIST",
        display_name="Anniversary",
        description="You created a list on April 23rd!",
        icon="AnniversaryList",
        predicate=CalendarDate(month=4, day=23, action=TriggerAction.LIST_CREATED),
    ),
]

ACHIEVEMENTS: tuple[AchievementDefinition, ...] = (
    *_GENERAL,
    *_MOVIES,
    *_EPISODES,
    *_FOLLOWING,
    *_FOLLOWERS,
    *_LISTS,
    *_WATCHLIST,
    *_LIKES,
    *_GENRES,
    *_COMPOSITE,
    *_CALENDAR,
)

CATALOG_BY_ID: dict[str, AchievementDefinition] = {d.id: d for d in ACHIEVEMENTS}

if len(CATALOG_BY_ID) != len(ACHIEVEMENTS):
    raise RuntimeError("Duplicate achievement ids in catalog")


def get_definition(achievement_id: str) -> AchievementDefinition | None:
    return CATALOG_BY_ID.get(achievement_id)
