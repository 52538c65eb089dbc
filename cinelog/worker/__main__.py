"""
cinelog.worker.__main__ — Entry point for ``python -m cinelog.worker``
======================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (worker tuning).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Run the EvaluationWorker until SIGINT / SIGTERM.

Run with::

    python -m cinelog.worker
"""

from __future__ import annotations

import asyncio
import logging
import signal

from dotenv import load_dotenv

from cinelog.config import load_config
from cinelog.database.engine import create_db_engine, init_db
from cinelog.worker.core import EvaluationWorker

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("cinelog")


async def _run(worker: EvaluationWorker) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt handling in main().
            pass
    await worker.run_forever(stop)


def main() -> None:
    """Bootstrap and run the evaluation worker."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config()
    logger.info(
        "Config loaded — batch=%d lease=%ds poll=%.1fs",
        cfg.worker.batch_size, cfg.worker.lease_seconds, cfg.worker.poll_interval_seconds,
    )

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Run (blocks until signalled).
    worker = EvaluationWorker(engine, cfg.worker)
    try:
        asyncio.run(_run(worker))
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
