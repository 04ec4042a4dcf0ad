# queue_server/app/scheduler.py
# periodic queue recalculation, the safety net behind the per-change trigger
import logging
import threading

from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .db import SessionLocal
from .recalculator import recalculate_queue

logger = logging.getLogger(__name__)


def run_once(session_factory=SessionLocal):
    db = session_factory()
    try:
        return recalculate_queue(db)
    finally:
        db.close()


def start_recalc_loop(interval: float | None = None, session_factory=SessionLocal,
                      stop_event: threading.Event | None = None) -> threading.Thread:
    if interval is None:
        interval = settings.recalc_interval_seconds
    stop_event = stop_event or threading.Event()

    def run():
        while not stop_event.is_set():
            try:
                result = run_once(session_factory)
                if result.partial:
                    logger.warning("scheduled recalculation skipped %d token(s): %s",
                                   result.skipped, result.skipped_token_ids)
            except SQLAlchemyError:
                # keep the loop alive; the next tick retries
                logger.exception("scheduled recalculation failed")
            stop_event.wait(interval)

    t = threading.Thread(target=run, name="queue-recalc", daemon=True)
    t.start()
    logger.info("queue recalculation every %.1fs", interval)
    return t
