# queue_server/app/lifecycle.py
"""Token status transitions driven by staff and admin actions."""
import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from . import audit
from .errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from .models import (CANCELLED, COMPLETED, IN_PROGRESS, TOKEN_STATUSES, WAITING, Counter,
                     Token, utcnow)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    WAITING: {IN_PROGRESS, CANCELLED},
    IN_PROGRESS: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}

CALL_NEXT_ATTEMPTS = 5


def _get_token(db: Session, token_id: int) -> Token:
    token = db.get(Token, token_id)
    if token is None:
        raise NotFoundError("token not found")
    return token


def _get_counter(db: Session, counter_id, branch_id: int) -> Counter:
    if counter_id is None:
        raise ValidationError("missing counter_id")
    counter = db.get(Counter, counter_id)
    if counter is None or not counter.is_active or counter.branch_id != branch_id:
        raise NotFoundError("counter not found")
    return counter


def _transition(db: Session, token: Token, status: str, user: str,
                counter: Optional[Counter] = None) -> dict:
    if status not in ALLOWED_TRANSITIONS[token.status]:
        raise InvalidTransitionError(f"cannot move token from {token.status} to {status}")

    previous = token.status
    allowed_from = [s for s, targets in ALLOWED_TRANSITIONS.items() if status in targets]
    # position is only defined inside the waiting set
    values = {"status": status, "updated_at": utcnow(), "position_in_queue": None}
    if counter is not None:
        values["counter_id"] = counter.id

    # guarded write: another request may have moved the token since it was read
    result = db.execute(
        update(Token)
        .where(Token.id == token.id, Token.status.in_(allowed_from))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(token)
        raise InvalidTransitionError(f"cannot move token from {token.status} to {status}")
    db.commit()
    db.refresh(token)

    out = {
        "id": token.id,
        "token_number": token.token_number,
        "status": token.status,
        "counter_id": token.counter_id,
        "service_id": token.service_id,
        "branch_id": token.branch_id,
        "customer_name": token.customer_name,
    }
    logger.info("token %s (%s): %s -> %s", out["id"], out["token_number"], previous, status)
    audit.record(db, out["id"], status, user=user,
                 details=f"{previous} -> {status}" + (f" counter={counter.id}" if counter else ""))
    return out


def start_service(db: Session, token_id: int, counter_id: int, user: str = "staff") -> dict:
    token = _get_token(db, token_id)
    counter = _get_counter(db, counter_id, token.branch_id)
    return _transition(db, token, IN_PROGRESS, user, counter=counter)


def complete_token(db: Session, token_id: int, user: str = "staff") -> dict:
    return _transition(db, _get_token(db, token_id), COMPLETED, user)


def cancel_token(db: Session, token_id: int, user: str = "staff") -> dict:
    return _transition(db, _get_token(db, token_id), CANCELLED, user)


def update_token_status(db: Session, token_id: int, status: str,
                        counter_id: Optional[int] = None, user: str = "admin") -> dict:
    if not status:
        raise ValidationError("status is required")
    if status not in TOKEN_STATUSES:
        raise ValidationError(f"unknown status {status!r}")
    if status == IN_PROGRESS:
        return start_service(db, token_id, counter_id, user=user)
    if status == COMPLETED:
        return complete_token(db, token_id, user=user)
    if status == CANCELLED:
        return cancel_token(db, token_id, user=user)
    raise InvalidTransitionError("tokens cannot return to waiting")


def call_next(db: Session, counter_id: int, branch_id: Optional[int] = None,
              service_id: Optional[int] = None, user: str = "staff") -> dict:
    """Start service on the earliest-booked waiting token of the scope.

    A token taken by another counter between the read and the guarded write is
    passed over and the next waiting token is tried.
    """
    taken = []
    for _ in range(CALL_NEXT_ATTEMPTS):
        q = db.query(Token).filter(Token.status == WAITING)
        if branch_id is not None:
            q = q.filter(Token.branch_id == branch_id)
        if service_id is not None:
            q = q.filter(Token.service_id == service_id)
        if taken:
            q = q.filter(Token.id.notin_(taken))
        token = q.order_by(Token.created_at, Token.id).first()
        if token is None:
            raise NotFoundError("no tokens in queue")
        counter = _get_counter(db, counter_id, token.branch_id)
        try:
            return _transition(db, token, IN_PROGRESS, user, counter=counter)
        except InvalidTransitionError:
            logger.info("token %s was taken concurrently, trying the next one", token.id)
            taken.append(token.id)
    raise ConflictError("queue is changing too fast, please retry")
