# queue_server/app/issuer.py
import logging
from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import audit
from .errors import ConflictError, NotFoundError, ValidationError
from .models import WAITING, Branch, Service, utcnow
from .store import count_active_tokens_in_scope, count_waiting_tokens, insert_token
from .utils import format_token_number, next_token_ordinal_atomic, scope_datestr, service_prefix

logger = logging.getLogger(__name__)

# one retry is enough: the counter increment is atomic, a collision means a
# concurrent first use of the scope or a row written outside the counter
MAX_ATTEMPTS = 2


def _require(value, field: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"missing {field}")


def _resolve_service(db: Session, branch_id: int, service_id: int) -> Service:
    branch = db.get(Branch, branch_id)
    if branch is None or not branch.is_active:
        raise NotFoundError("branch not found")
    service = db.get(Service, service_id)
    if service is None or service.branch_id != branch_id or service.status != "active":
        raise NotFoundError("service not found")
    return service


def _issue(db: Session, service: Service, branch_id: int, customer_name: str,
           customer_phone: str, today: date | None):
    datestr = scope_datestr(today)
    # counter first: it takes the scope's write lock before the counts are read
    seq = next_token_ordinal_atomic(db, branch_id, service.id, datestr)
    token_number = format_token_number(service_prefix(service), seq)

    duration = service.estimated_duration or 0
    active = count_active_tokens_in_scope(db, branch_id, service.id)
    estimate = (active + 1) * duration
    position = count_waiting_tokens(db, service.id) + 1

    now = utcnow()
    return insert_token(
        db,
        token_number=token_number,
        branch_id=branch_id,
        service_id=service.id,
        scope_date=datestr,
        customer_name=customer_name.strip(),
        customer_phone=customer_phone.strip(),
        status=WAITING,
        position_in_queue=position,
        estimated_wait_time=estimate,
        created_at=now,
        updated_at=now,
    )


def book_token(db: Session, branch_id, service_id, customer_name, customer_phone,
               today: date | None = None) -> dict:
    """
    Issue a new waiting token for a customer.

    Returns ``{id, token_number, status, estimated_wait_time}``. The estimate is
    the booking-time figure, (active tokens + 1) x service duration; the next
    recalculation pass replaces it with the rank-based one.
    """
    _require(branch_id, "branch_id")
    _require(service_id, "service_id")
    _require(customer_name, "customer_name")
    _require(customer_phone, "customer_phone")

    service = _resolve_service(db, branch_id, service_id)
    service_pk = service.id

    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            token = _issue(db, service, branch_id, customer_name, customer_phone, today)
            db.commit()
            db.refresh(token)
            break
        except IntegrityError:
            db.rollback()
            logger.warning("token number collision for branch=%s service=%s (attempt %d)",
                           branch_id, service_pk, attempt)
            if attempt == MAX_ATTEMPTS:
                raise ConflictError("token number collision, please retry")
            service = _resolve_service(db, branch_id, service_pk)

    out = {
        "id": token.id,
        "token_number": token.token_number,
        "status": token.status,
        "estimated_wait_time": token.estimated_wait_time,
    }
    logger.info("booked %s (id=%s) branch=%s service=%s estimate=%s",
                out["token_number"], out["id"], branch_id, service_pk, out["estimated_wait_time"])
    audit.record(db, out["id"], "book", user="customer", details=f"token={out['token_number']}")
    return out
