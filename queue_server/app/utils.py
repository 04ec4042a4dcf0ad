# queue_server/app/utils.py
import re
from datetime import date, datetime, timezone

from sqlalchemy import and_, update
from sqlalchemy.orm import Session

from .models import Service, TokenCounter
from .store import find_latest_token_in_scope

DEFAULT_PREFIX = "TK"
_SUFFIX_RE = re.compile(r"(\d+)$")


def format_token_number(prefix: str, seq: int) -> str:
    # padding is cosmetic, 1000 renders as GE1000
    return f"{prefix}{seq:03d}"


def service_prefix(service: Service) -> str:
    if service.prefix and service.prefix.strip():
        return service.prefix.strip().upper()
    letters = "".join(ch for ch in (service.name or "") if ch.isalpha())
    return letters[:2].upper() or DEFAULT_PREFIX


def parse_ordinal(token_number: str | None) -> int:
    if not token_number:
        return 0
    m = _SUFFIX_RE.search(token_number)
    return int(m.group(1)) if m else 0


def utc_today() -> date:
    # same clock as created_at, which is stored in UTC
    return datetime.now(timezone.utc).date()


def scope_datestr(today: date | None = None) -> str:
    if today is None:
        today = utc_today()
    return today.strftime("%Y%m%d")


def next_token_ordinal_atomic(db: Session, branch_id: int, service_id: int, datestr: str) -> int:
    """
    Advance the (branch, service, day) counter and return the new ordinal.

    Runs inside the caller's transaction, so the counter and the token insert
    commit together. The single-statement UPDATE takes the write lock before any
    read; a first use of the scope inserts the counter row, guarded by its
    unique constraint (IntegrityError on a concurrent first use).
    """
    scope = and_(TokenCounter.branch_id == branch_id,
                 TokenCounter.service_id == service_id,
                 TokenCounter.scope_date == datestr)

    result = db.execute(
        update(TokenCounter)
        .where(scope)
        .values(last_seq=TokenCounter.last_seq + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return db.query(TokenCounter.last_seq).filter(scope).scalar()

    # seed from tokens already stored for the scope, numbers are never reused
    latest = find_latest_token_in_scope(db, branch_id, service_id, datestr)
    seq = parse_ordinal(latest.token_number) + 1 if latest else 1
    db.add(TokenCounter(branch_id=branch_id, service_id=service_id,
                        scope_date=datestr, last_seq=seq))
    db.flush()
    return seq
