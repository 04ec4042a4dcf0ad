# queue_server/app/recalculator.py
import logging
from dataclasses import dataclass, field
from itertools import groupby
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .store import get_service_duration, list_waiting_tokens, update_token_position_and_estimate

logger = logging.getLogger(__name__)


@dataclass
class RecalcResult:
    updated: int = 0
    skipped: int = 0
    skipped_token_ids: list[int] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.skipped > 0

    def as_dict(self) -> dict:
        return {
            "updated": self.updated,
            "skipped": self.skipped,
            "skipped_token_ids": list(self.skipped_token_ids),
            "partial": self.partial,
        }


def recalculate_queue(db: Session, branch_id: Optional[int] = None,
                      service_id: Optional[int] = None) -> RecalcResult:
    """
    Re-derive position_in_queue and estimated_wait_time for every waiting token.

    Tokens are ranked per service by created_at (id breaks ties); rank N gets
    N x that service's estimated_duration. The pass is a pure function of the
    waiting set, so running it again without changes writes the same values.
    Tokens whose service cannot be resolved keep their last values and are
    reported in ``skipped``; the rest of the pass still commits.
    """
    result = RecalcResult()
    waiting = [(t.service_id, t.id, t.token_number)
               for t in list_waiting_tokens(db, branch_id=branch_id, service_id=service_id)]

    # one commit per service partition: a failing partition is rolled back alone
    for sid, group in groupby(waiting, key=lambda row: row[0]):
        tokens = [(tid, number) for _, tid, number in group]
        try:
            duration = get_service_duration(db, sid)
            if duration is None:
                logger.warning("service %s not found, skipping %d waiting token(s)",
                               sid, len(tokens))
                result.skipped += len(tokens)
                result.skipped_token_ids.extend(tid for tid, _ in tokens)
                continue

            updated = 0
            for rank, (tid, number) in enumerate(tokens, start=1):
                if update_token_position_and_estimate(db, tid, rank, rank * duration):
                    updated += 1
                else:
                    # left the waiting set since the read; the next pass excludes it
                    logger.debug("token %s (%s) no longer waiting", tid, number)
            db.commit()
            result.updated += updated
        except SQLAlchemyError:
            db.rollback()
            logger.warning("recalculation failed for service %s, skipping %d token(s)",
                           sid, len(tokens), exc_info=True)
            result.skipped += len(tokens)
            result.skipped_token_ids.extend(tid for tid, _ in tokens)

    logger.debug("recalculated queue branch=%s service=%s updated=%d skipped=%d",
                 branch_id, service_id, result.updated, result.skipped)
    return result
