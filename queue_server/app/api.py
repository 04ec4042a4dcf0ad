# queue_server/app/api.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from . import lifecycle, queries, reports
from .config import settings
from .db import get_db, init_db
from .errors import QueueError
from .issuer import book_token
from .recalculator import recalculate_queue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Queue Server API", lifespan=lifespan)


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # same 400 {"detail": str} shape as the handlers that raise ValidationError
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = loc[-1] if loc else "request body"
    return JSONResponse(status_code=400,
                        content={"detail": f"invalid {field}: {first.get('msg', 'malformed request')}"})


def _after_change(db: Session, service_id: Optional[int]) -> None:
    # event-driven trigger; the scheduler pass covers anything missed here
    if settings.recalc_on_change and service_id is not None:
        result = recalculate_queue(db, service_id=service_id)
        if result.partial:
            logger.warning("recalculation after change skipped %d token(s)", result.skipped)


# Pydantic input models
class TokenIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    branch_id: Optional[int] = Field(None, alias="branchId")
    service_id: Optional[int] = Field(None, alias="serviceId")
    customer_name: Optional[str] = Field(None, alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")


class TokenStatusIn(BaseModel):
    status: Optional[str] = None
    counter_id: Optional[int] = None


class CallNextIn(BaseModel):
    counter_id: int
    branch_id: Optional[int] = None
    service_id: Optional[int] = None


class RecalcIn(BaseModel):
    branch_id: Optional[int] = None
    service_id: Optional[int] = None


@app.get("/health")
def health():
    return {"status": "ok"}


# ---------------------------
# Branches / services
# ---------------------------
@app.get("/api/branches")
def list_branches(db: Session = Depends(get_db)):
    return queries.list_branches(db)


@app.get("/api/branches/{branch_id}")
def get_branch(branch_id: int, db: Session = Depends(get_db)):
    return queries.get_branch(db, branch_id)


@app.get("/api/services")
def list_services(branch_id: Optional[int] = Query(None, alias="branchId"),
                  db: Session = Depends(get_db)):
    return queries.list_services(db, branch_id)


# ---------------------------
# Customer tokens
# ---------------------------
@app.post("/api/tokens")
def create_token(body: TokenIn, db: Session = Depends(get_db)):
    token = book_token(db, body.branch_id, body.service_id, body.customer_name, body.customer_phone)
    _after_change(db, body.service_id)
    return token


@app.get("/api/tokens/track")
def track_token(token: Optional[str] = None, phone: Optional[str] = None,
                db: Session = Depends(get_db)):
    return queries.track_token(db, token, phone)


@app.get("/api/tokens/{token_id}")
def get_token(token_id: int, db: Session = Depends(get_db)):
    return queries.get_token_status(db, token_id)


# ---------------------------
# Admin: queue control
# ---------------------------
@app.get("/api/admin/tokens")
def admin_tokens(status: Optional[str] = None, db: Session = Depends(get_db)):
    return queries.list_tokens(db, status)


@app.patch("/api/admin/tokens/{token_id}")
def update_token(token_id: int, body: TokenStatusIn, db: Session = Depends(get_db)):
    out = lifecycle.update_token_status(db, token_id, body.status, counter_id=body.counter_id)
    _after_change(db, out["service_id"])
    return {"id": out["id"], "status": out["status"]}


@app.post("/api/admin/tokens/call-next")
def call_next(body: CallNextIn, db: Session = Depends(get_db)):
    out = lifecycle.call_next(db, body.counter_id, branch_id=body.branch_id,
                              service_id=body.service_id)
    _after_change(db, out["service_id"])
    return {
        "message": "Next token called successfully",
        "token": {"id": out["id"], "token_number": out["token_number"],
                  "customer_name": out["customer_name"], "counter_id": out["counter_id"]},
    }


@app.post("/api/admin/tokens/update-positions")
def update_positions(body: Optional[RecalcIn] = None, db: Session = Depends(get_db)):
    body = body or RecalcIn()
    result = recalculate_queue(db, branch_id=body.branch_id, service_id=body.service_id)
    out = result.as_dict()
    out["message"] = "Queue positions updated successfully"
    return out


@app.get("/api/admin/counters")
def admin_counters(branch_id: Optional[int] = Query(None, alias="branchId"),
                   db: Session = Depends(get_db)):
    return queries.list_counters(db, branch_id)


@app.get("/api/admin/recent-tokens")
def admin_recent_tokens(db: Session = Depends(get_db)):
    return queries.recent_tokens(db)


# ---------------------------
# Reports
# ---------------------------
@app.get("/api/admin/stats")
def admin_stats(db: Session = Depends(get_db)):
    return reports.today_stats(db)


@app.get("/api/admin/analytics")
def admin_analytics(days: int = Query(7, ge=1, le=366), db: Session = Depends(get_db)):
    return reports.analytics(db, days=days)


@app.get("/api/admin/analytics/export")
def admin_analytics_export(days: int = Query(7, ge=1, le=366),
                           fmt: str = Query("csv", pattern="^(csv|xlsx)$"),
                           db: Session = Depends(get_db)):
    content, media_type, filename = reports.export_tokens(db, days=days, fmt=fmt)
    return Response(content=content, media_type=media_type,
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


# ---------------------------
# Display boards (polled)
# ---------------------------
@app.get("/api/display/now-serving")
def display_now_serving(branch_id: Optional[int] = Query(None, alias="branchId"),
                        db: Session = Depends(get_db)):
    return queries.now_serving(db, branch_id)


@app.get("/api/display/waiting-queue")
def display_waiting_queue(branch_id: Optional[int] = Query(None, alias="branchId"),
                          limit: int = Query(20, ge=1, le=200),
                          db: Session = Depends(get_db)):
    return queries.waiting_queue(db, branch_id, limit=limit)
