# queue_server/app/reports.py
import io
from datetime import date, timedelta

import pandas as pd
from sqlalchemy.orm import Session

from .models import ACTIVE_STATUSES, CANCELLED, COMPLETED, Branch, Staff, Token
from .utils import scope_datestr, utc_today

EXPORT_COLUMNS = ["id", "token_number", "branch_id", "service_name", "status", "customer_name",
                  "customer_phone", "position_in_queue", "estimated_wait_time", "counter_id",
                  "created_at", "updated_at"]


def _avg(values) -> int:
    return round(sum(values) / len(values)) if values else 0


def _tokens_since(db: Session, start: str) -> list[Token]:
    return (db.query(Token)
            .filter(Token.scope_date >= start)
            .order_by(Token.created_at)
            .all())


def _start_datestr(days: int, today: date | None = None) -> str:
    today = today or utc_today()
    return scope_datestr(today - timedelta(days=days))


def today_stats(db: Session, today: date | None = None) -> dict:
    rows = db.query(Token).filter(Token.scope_date == scope_datestr(today)).all()
    completed = [t for t in rows if t.status == COMPLETED]
    return {
        "totalTokensToday": len(rows),
        "activeTokens": sum(1 for t in rows if t.status in ACTIVE_STATUSES),
        "completedTokens": len(completed),
        "averageWaitTime": _avg([t.estimated_wait_time for t in completed]),
        "activeBranches": db.query(Branch).filter(Branch.is_active.is_(True)).count(),
        "activeStaff": db.query(Staff).filter(Staff.status == "active").count(),
    }


def analytics(db: Session, days: int = 7, today: date | None = None) -> dict:
    rows = _tokens_since(db, _start_datestr(days, today))

    completed = [t for t in rows if t.status == COMPLETED]
    service_minutes = [(t.updated_at - t.created_at).total_seconds() / 60
                       for t in completed if t.updated_at and t.created_at]

    per_service: dict[str, list[int]] = {}
    hours: dict[int, int] = {}
    daily: dict[str, dict[str, int]] = {}
    for t in rows:
        name = t.service.name if t.service else f"service {t.service_id}"
        per_service.setdefault(name, []).append(t.estimated_wait_time or 0)
        if t.created_at:
            hours[t.created_at.hour] = hours.get(t.created_at.hour, 0) + 1
        if t.scope_date not in daily:
            daily[t.scope_date] = {"tokens": 0, "completed": 0}
        daily[t.scope_date]["tokens"] += 1
        if t.status == COMPLETED:
            daily[t.scope_date]["completed"] += 1

    service_stats = [{"service_name": k, "count": len(v), "avg_wait": _avg(v)}
                     for k, v in per_service.items()]
    service_stats.sort(key=lambda s: s["count"], reverse=True)
    peak_hours = [{"hour": h, "count": c}
                  for h, c in sorted(hours.items(), key=lambda kv: kv[1], reverse=True)]
    daily_stats = [{"date": k, "tokens": daily[k]["tokens"], "completed": daily[k]["completed"]}
                   for k in sorted(daily.keys(), reverse=True)]

    return {
        "totalTokens": len(rows),
        "completedTokens": len(completed),
        "cancelledTokens": sum(1 for t in rows if t.status == CANCELLED),
        "averageWaitTime": _avg([t.estimated_wait_time for t in completed]),
        "averageServiceTime": _avg(service_minutes),
        "serviceStats": service_stats,
        "peakHours": peak_hours,
        "dailyStats": daily_stats,
    }


def export_tokens(db: Session, days: int = 7, fmt: str = "csv",
                  today: date | None = None) -> tuple[bytes, str, str]:
    """Return (content, media type, filename) for a token report."""
    rows = []
    for t in _tokens_since(db, _start_datestr(days, today)):
        rows.append({
            "id": t.id,
            "token_number": t.token_number,
            "branch_id": t.branch_id,
            "service_name": t.service.name if t.service else None,
            "status": t.status,
            "customer_name": t.customer_name,
            "customer_phone": t.customer_phone,
            "position_in_queue": t.position_in_queue,
            "estimated_wait_time": t.estimated_wait_time,
            "counter_id": t.counter_id,
            "created_at": t.created_at.isoformat() if t.created_at else None,
            "updated_at": t.updated_at.isoformat() if t.updated_at else None,
        })
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    stem = f"queue_report_{days}d"

    if fmt == "xlsx":
        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="tokens")
        return (buffer.getvalue(),
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                f"{stem}.xlsx")
    return df.to_csv(index=False).encode("utf-8"), "text/csv", f"{stem}.csv"
