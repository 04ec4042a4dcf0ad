# queue_server/app/store.py
"""Token store queries used by the issuer and the recalculator.

All functions take an open Session and leave transaction control to the caller.
"""
from typing import Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from .models import ACTIVE_STATUSES, WAITING, Service, Token


def find_latest_token_in_scope(db: Session, branch_id: int, service_id: int,
                               datestr: str) -> Optional[Token]:
    return (db.query(Token)
            .filter(and_(Token.branch_id == branch_id,
                         Token.service_id == service_id,
                         Token.scope_date == datestr))
            .order_by(Token.created_at.desc(), Token.id.desc())
            .first())


def count_active_tokens_in_scope(db: Session, branch_id: int, service_id: int) -> int:
    return (db.query(Token)
            .filter(and_(Token.branch_id == branch_id,
                         Token.service_id == service_id,
                         Token.status.in_(ACTIVE_STATUSES)))
            .count())


def count_waiting_tokens(db: Session, service_id: int) -> int:
    return db.query(Token).filter(Token.service_id == service_id, Token.status == WAITING).count()


def insert_token(db: Session, **fields) -> Token:
    token = Token(**fields)
    db.add(token)
    # flush so a scope collision surfaces here as IntegrityError
    db.flush()
    return token


def list_waiting_tokens(db: Session, branch_id: Optional[int] = None,
                        service_id: Optional[int] = None) -> list[Token]:
    q = db.query(Token).filter(Token.status == WAITING)
    if branch_id is not None:
        q = q.filter(Token.branch_id == branch_id)
    if service_id is not None:
        q = q.filter(Token.service_id == service_id)
    return q.order_by(Token.service_id, Token.created_at, Token.id).all()


def update_token_position_and_estimate(db: Session, token_id: int, position: int,
                                       estimate: int) -> bool:
    # status guard: a token that left the waiting set mid-pass is not touched
    updated = (db.query(Token)
               .filter(Token.id == token_id, Token.status == WAITING)
               .update({Token.position_in_queue: position,
                        Token.estimated_wait_time: estimate},
                       synchronize_session=False))
    return updated == 1


def get_service_duration(db: Session, service_id: int) -> Optional[int]:
    row = db.query(Service.estimated_duration).filter(Service.id == service_id).first()
    if row is None:
        return None
    return row[0]
