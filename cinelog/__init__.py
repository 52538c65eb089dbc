"""
Cinelog — Social Watch Diary Core
==================================
Users log what they watched, follow each other, and earn milestone
achievements.  This package holds the two pieces of the backend that need
real care: the fan-out-on-read activity feed and the idempotent
achievement evaluator, plus the write paths and maintenance jobs that
feed them.

Package layout::

    cinelog/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Placeholder identity, shared defaults
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── feed.py        # Pure merge / rank / enrich of feed entries
    │   ├── achievements.py # Predicate variants + evaluation (pure)
    │   └── catalog.py     # Static, versioned achievement catalog
    ├── services/
    │   ├── social_service.py     # Relation / activity / identity reads
    │   ├── counter_service.py    # Atomic counter mutations + snapshots
    │   ├── feed_service.py       # Concurrent feed aggregation
    │   ├── achievement_service.py # Grant ledger + evaluator
    │   ├── task_queue.py         # At-least-once evaluation outbox
    │   ├── activity_service.py   # Write paths (logs, follows, lists…)
    │   └── reconciliation_service.py # Counter drift repair
    ├── worker/
    │   ├── core.py        # EvaluationWorker loop
    │   └── __main__.py    # python -m cinelog.worker
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT viewer / admin dependencies
        └── routes/        # Feed, achievements, admin endpoints
"""

__version__ = "0.1.0"
