"""Queue position recalculation."""

from datetime import datetime, timedelta

from queue_server.app.issuer import book_token
from queue_server.app.lifecycle import cancel_token, complete_token, start_service
from queue_server.app.models import Service, Token
from queue_server.app.recalculator import recalculate_queue

from .conftest import TODAY


def _book_many(db, branch, service, n):
    return [book_token(db, branch.id, service.id, f"Customer {i}", f"555-{i:04d}", today=TODAY)
            for i in range(n)]


def _snapshot(db):
    rows = db.query(Token).order_by(Token.id).all()
    return {r.token_number: (r.status, r.position_in_queue, r.estimated_wait_time) for r in rows}


def _waiting_positions(db, service_id):
    rows = (db.query(Token)
            .filter(Token.service_id == service_id, Token.status == "waiting")
            .order_by(Token.created_at, Token.id)
            .all())
    return [(r.token_number, r.position_in_queue, r.estimated_wait_time) for r in rows]


def test_ranks_by_booking_time(db_session, branch, general):
    _book_many(db_session, branch, general, 3)
    result = recalculate_queue(db_session)

    assert result.updated == 3
    assert result.skipped == 0
    assert not result.partial
    assert _waiting_positions(db_session, general.id) == [
        ("GE001", 1, 15), ("GE002", 2, 30), ("GE003", 3, 45)]


def test_idempotent(db_session, branch, general, loans):
    _book_many(db_session, branch, general, 4)
    _book_many(db_session, branch, loans, 2)

    recalculate_queue(db_session)
    first = _snapshot(db_session)
    recalculate_queue(db_session)
    assert _snapshot(db_session) == first


def test_cancel_then_recalculate(db_session, branch, general):
    tokens = _book_many(db_session, branch, general, 3)
    cancel_token(db_session, tokens[1]["id"])
    recalculate_queue(db_session)

    assert _waiting_positions(db_session, general.id) == [("GE001", 1, 15), ("GE003", 2, 30)]
    cancelled = db_session.get(Token, tokens[1]["id"])
    assert cancelled.status == "cancelled"
    assert cancelled.position_in_queue is None


def test_start_service_then_recalculate(db_session, branch, general, counter):
    tokens = _book_many(db_session, branch, general, 3)
    start_service(db_session, tokens[0]["id"], counter.id)
    recalculate_queue(db_session)

    assert _waiting_positions(db_session, general.id) == [("GE002", 1, 15), ("GE003", 2, 30)]
    started = db_session.get(Token, tokens[0]["id"])
    assert started.status == "in_progress"
    assert started.counter_id == counter.id
    assert started.position_in_queue is None


def test_services_ranked_independently(db_session, branch, general, loans):
    # interleave bookings across two services
    for _ in range(3):
        book_token(db_session, branch.id, general.id, "G", "1", today=TODAY)
        book_token(db_session, branch.id, loans.id, "L", "2", today=TODAY)
    recalculate_queue(db_session)

    assert [p for _, p, _ in _waiting_positions(db_session, general.id)] == [1, 2, 3]
    assert [e for _, _, e in _waiting_positions(db_session, general.id)] == [15, 30, 45]
    assert [p for _, p, _ in _waiting_positions(db_session, loans.id)] == [1, 2, 3]
    assert [e for _, _, e in _waiting_positions(db_session, loans.id)] == [20, 40, 60]


def test_positions_follow_created_at_not_id(db_session, branch, general):
    tokens = _book_many(db_session, branch, general, 3)
    # last booked row gets the earliest timestamp
    last = db_session.get(Token, tokens[2]["id"])
    last.created_at = datetime(2020, 1, 1)
    db_session.commit()

    recalculate_queue(db_session)
    assert [n for n, _, _ in _waiting_positions(db_session, general.id)] == [
        "GE003", "GE001", "GE002"]
    assert db_session.get(Token, tokens[2]["id"]).position_in_queue == 1


def test_fixes_stale_values(db_session, branch, general):
    tokens = _book_many(db_session, branch, general, 2)
    for t in db_session.query(Token).all():
        t.position_in_queue = 9
        t.estimated_wait_time = 999
    db_session.commit()

    recalculate_queue(db_session)
    assert db_session.get(Token, tokens[0]["id"]).position_in_queue == 1
    assert db_session.get(Token, tokens[1]["id"]).estimated_wait_time == 30


def test_duration_change_applies(db_session, branch, general):
    _book_many(db_session, branch, general, 2)
    general.estimated_duration = 10
    db_session.commit()

    recalculate_queue(db_session)
    assert [e for _, _, e in _waiting_positions(db_session, general.id)] == [10, 20]


def test_does_not_touch_other_fields(db_session, branch, general, counter):
    tokens = _book_many(db_session, branch, general, 3)
    start_service(db_session, tokens[0]["id"], counter.id)
    complete_token(db_session, tokens[0]["id"])
    before = db_session.get(Token, tokens[0]["id"])
    before_values = (before.status, before.counter_id, before.estimated_wait_time,
                     before.updated_at)

    recalculate_queue(db_session)
    after = db_session.get(Token, tokens[0]["id"])
    assert (after.status, after.counter_id, after.estimated_wait_time,
            after.updated_at) == before_values
    assert after.position_in_queue is None


def test_scoped_to_service(db_session, branch, general, loans):
    _book_many(db_session, branch, general, 2)
    _book_many(db_session, branch, loans, 2)
    for t in db_session.query(Token).all():
        t.position_in_queue = None
    db_session.commit()

    result = recalculate_queue(db_session, service_id=loans.id)
    assert result.updated == 2
    assert [p for _, p, _ in _waiting_positions(db_session, loans.id)] == [1, 2]
    assert [p for _, p, _ in _waiting_positions(db_session, general.id)] == [None, None]


def test_dangling_service_is_skipped(db_session, branch, general, loans):
    _book_many(db_session, branch, general, 2)
    lost = _book_many(db_session, branch, loans, 2)
    for t in db_session.query(Token).filter(Token.service_id == loans.id):
        t.estimated_wait_time = 77
    db_session.commit()
    # test engine does not enforce foreign keys
    db_session.delete(db_session.get(Service, loans.id))
    db_session.commit()

    result = recalculate_queue(db_session)

    assert result.updated == 2
    assert result.skipped == 2
    assert result.partial
    assert sorted(result.skipped_token_ids) == sorted(t["id"] for t in lost)
    assert [e for _, _, e in _waiting_positions(db_session, general.id)] == [15, 30]
    # left at last-known estimate
    assert {db_session.get(Token, t["id"]).estimated_wait_time for t in lost} == {77}


def test_empty_waiting_set(db_session):
    result = recalculate_queue(db_session)
    assert result.as_dict() == {"updated": 0, "skipped": 0, "skipped_token_ids": [],
                                "partial": False}


def test_contiguous_after_many_changes(db_session, branch, general, counter):
    tokens = _book_many(db_session, branch, general, 8)
    cancel_token(db_session, tokens[2]["id"])
    start_service(db_session, tokens[0]["id"], counter.id)
    cancel_token(db_session, tokens[5]["id"])
    recalculate_queue(db_session)

    rows = _waiting_positions(db_session, general.id)
    assert [p for _, p, _ in rows] == list(range(1, len(rows) + 1))
    assert all(e == p * 15 for _, p, e in rows)
    assert len(rows) == 5


def test_created_at_ties_broken_by_id(db_session, branch, general):
    tokens = _book_many(db_session, branch, general, 3)
    same = datetime(2026, 3, 2, 9, 0, 0)
    for t in db_session.query(Token).all():
        t.created_at = same
    db_session.commit()

    recalculate_queue(db_session)
    assert [db_session.get(Token, t["id"]).position_in_queue for t in tokens] == [1, 2, 3]


def test_timedelta_ordering(db_session, branch, general):
    tokens = _book_many(db_session, branch, general, 2)
    base = datetime(2026, 3, 2, 9, 0, 0)
    db_session.get(Token, tokens[0]["id"]).created_at = base + timedelta(milliseconds=2)
    db_session.get(Token, tokens[1]["id"]).created_at = base + timedelta(milliseconds=1)
    db_session.commit()

    recalculate_queue(db_session)
    assert db_session.get(Token, tokens[1]["id"]).position_in_queue == 1
    assert db_session.get(Token, tokens[0]["id"]).position_in_queue == 2
