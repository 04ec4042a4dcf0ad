# queue_server/app/queries.py
"""Read-only views for tracking, display boards and admin listings."""
from typing import Optional

from sqlalchemy.orm import Session

from .errors import NotFoundError, ValidationError
from .models import IN_PROGRESS, WAITING, Branch, Counter, Service, Token


def _iso(dt):
    return dt.isoformat() if dt else None


def token_row(t: Token) -> dict:
    return {
        "id": t.id,
        "token_number": t.token_number,
        "status": t.status,
        "customer_name": t.customer_name,
        "customer_phone": t.customer_phone,
        "estimated_wait_time": t.estimated_wait_time,
        "position_in_queue": t.position_in_queue,
        "counter_id": t.counter_id,
        "counter_name": t.counter.name if t.counter else None,
        "service_id": t.service_id,
        "service_name": t.service.name if t.service else None,
        "created_at": _iso(t.created_at),
    }


def get_token_status(db: Session, token_id: int) -> dict:
    t = db.get(Token, token_id)
    if t is None:
        raise NotFoundError("token not found")
    out = token_row(t)
    out["branch_id"] = t.branch_id
    out["branch_name"] = t.branch.name if t.branch else None
    out["updated_at"] = _iso(t.updated_at)
    return out


def track_token(db: Session, token_number: Optional[str], phone: Optional[str]) -> dict:
    if not token_number or not phone:
        raise ValidationError("token number and phone number are required")
    t = (db.query(Token)
         .filter(Token.token_number == token_number.strip().upper(),
                 Token.customer_phone == phone.strip())
         .order_by(Token.created_at.desc(), Token.id.desc())
         .first())
    if t is None:
        raise NotFoundError("token not found")
    return {"id": t.id, "token_number": t.token_number, "status": t.status}


def list_branches(db: Session) -> list[dict]:
    rows = db.query(Branch).filter(Branch.is_active.is_(True)).order_by(Branch.name).all()
    return [{"id": b.id, "name": b.name, "address": b.address, "phone": b.phone,
             "is_active": b.is_active} for b in rows]


def get_branch(db: Session, branch_id: int) -> dict:
    b = db.get(Branch, branch_id)
    if b is None:
        raise NotFoundError("branch not found")
    return {"id": b.id, "name": b.name, "address": b.address, "phone": b.phone,
            "is_active": b.is_active}


def list_services(db: Session, branch_id: Optional[int]) -> list[dict]:
    if branch_id is None:
        raise ValidationError("branch id is required")
    rows = (db.query(Service)
            .filter(Service.branch_id == branch_id, Service.status == "active")
            .order_by(Service.name)
            .all())
    return [{"id": s.id, "name": s.name, "description": s.description,
             "estimated_duration": s.estimated_duration} for s in rows]


def list_counters(db: Session, branch_id: Optional[int] = None) -> list[dict]:
    q = db.query(Counter).filter(Counter.is_active.is_(True))
    if branch_id is not None:
        q = q.filter(Counter.branch_id == branch_id)
    return [{"id": c.id, "name": c.name, "branch_id": c.branch_id, "is_active": c.is_active}
            for c in q.order_by(Counter.name).all()]


def list_tokens(db: Session, status: Optional[str] = None) -> list[dict]:
    q = db.query(Token)
    if status and status != "all":
        q = q.filter(Token.status == status)
    return [token_row(t) for t in q.order_by(Token.created_at.desc(), Token.id.desc()).all()]


def recent_tokens(db: Session, limit: int = 10) -> list[dict]:
    rows = db.query(Token).order_by(Token.created_at.desc(), Token.id.desc()).limit(limit).all()
    return [{"id": t.id, "token_number": t.token_number, "customer_name": t.customer_name,
             "status": t.status, "created_at": _iso(t.created_at),
             "service_name": t.service.name if t.service else None} for t in rows]


def now_serving(db: Session, branch_id: Optional[int] = None) -> list[dict]:
    q = db.query(Token).filter(Token.status == IN_PROGRESS)
    if branch_id is not None:
        q = q.filter(Token.branch_id == branch_id)
    rows = q.order_by(Token.updated_at.desc(), Token.id.desc()).all()
    return [{"token_number": t.token_number,
             "counter_name": t.counter.name if t.counter else None,
             "service_name": t.service.name if t.service else None} for t in rows]


def waiting_queue(db: Session, branch_id: Optional[int] = None, limit: int = 20) -> list[dict]:
    q = db.query(Token).filter(Token.status == WAITING)
    if branch_id is not None:
        q = q.filter(Token.branch_id == branch_id)
    # NULL positions (not yet recalculated) sort after ranked tokens
    rows = (q.order_by(Token.position_in_queue.is_(None), Token.position_in_queue,
                       Token.created_at, Token.id)
            .limit(limit)
            .all())
    return [{"id": t.id, "token_number": t.token_number, "customer_name": t.customer_name,
             "estimated_wait_time": t.estimated_wait_time,
             "position_in_queue": t.position_in_queue,
             "service_name": t.service.name if t.service else None} for t in rows]
