from datetime import datetime, timedelta, timezone

import pytest

from conformity import audit, models
from conformity.database import run_atomic
from conformity.errors import AuditWriteError
from conformity.services import lifecycle


def _entries(session, entity_id):
    return (
        session.query(models.AuditEntry)
        .filter(models.AuditEntry.entity_id == str(entity_id))
        .order_by(models.AuditEntry.created_at)
        .all()
    )


def _planned_test(session, actor_id, type_id):
    actor = session.get(models.Personnel, actor_id)
    test = run_atomic(
        session,
        lambda retried: lifecycle.create_test(session, actor=actor, test_type_id=type_id, criticality=2),
    )
    return actor, test


def test_compute_diff_skips_housekeeping_fields():
    old = {"status": "PLANIFIE", "updated_at": "a", "created_at": "x", "location": None}
    new = {"status": "EN_COURS", "updated_at": "b", "created_at": "x", "location": None}
    assert audit.compute_diff(old, new) == {"status": {"old": "PLANIFIE", "new": "EN_COURS"}}
    assert audit.compute_diff({"updated_at": "a"}, {"updated_at": "b"}) == {}


def test_snapshot_is_json_safe():
    test = models.IndustrialTest(
        number="TEST-2026-999",
        status=models.TestStatus.PLANIFIE,
        planned_date=datetime(2026, 1, 2, 3, 4, tzinfo=timezone.utc),
    )
    snap = audit.snapshot(test)
    assert snap["status"] == "PLANIFIE"
    assert snap["planned_date"] == "2026-01-02T03:04:00+00:00"


def test_classification_tags():
    assert audit.AUDITED_ENTITIES[models.IndustrialTest].tag == "TESTS_INDUSTRIELS"
    assert audit.AUDITED_ENTITIES[models.NonConformity].entity_type == "non_conformities"
    assert "version" in audit.AUDITED_ENTITIES[models.IndustrialTest].exclude
    assert "updated_at" in audit.AUDITED_ENTITIES[models.Measurement].exclude


def test_one_entry_per_effective_update(db, make_personnel, hydraulic_type):
    engineer = make_personnel("Ingénieur")
    actor, test = _planned_test(db, engineer.id, hydraulic_type.id)
    context = audit.RequestContext(url="http://testserver/api/tests", ip_address="10.0.0.1", user_agent="pytest")

    run_atomic(
        db,
        lambda retried: audit.update(
            db, test, {"updated_at": datetime.now(timezone.utc) + timedelta(minutes=1)}, actor_id=actor.id
        ),
    )
    assert [e.event for e in _entries(db, test.id)] == ["created"]

    run_atomic(
        db,
        lambda retried: audit.update(
            db, test, {"observations": "gauge swapped", "location": "Bay 3"}, actor_id=actor.id, context=context
        ),
    )
    entries = _entries(db, test.id)
    assert [e.event for e in entries] == ["created", "updated"]
    update = entries[-1]
    assert update.changes == {
        "location": {"old": None, "new": "Bay 3"},
        "observations": {"old": None, "new": "gauge swapped"},
    }
    assert update.actor_id == actor.id
    assert update.tag == "TESTS_INDUSTRIELS"
    assert update.ip_address == "10.0.0.1"
    assert update.user_agent == "pytest"

    run_atomic(db, lambda retried: audit.update(db, test, {"location": "Bay 3"}, actor_id=actor.id))
    assert len(_entries(db, test.id)) == 2


def test_failed_audit_write_rolls_back_mutation(db, make_personnel, hydraulic_type, monkeypatch):
    engineer = make_personnel("Ingénieur")
    actor, test = _planned_test(db, engineer.id, hydraulic_type.id)
    test_id = test.id

    monkeypatch.setattr(audit, "UPDATED", None)
    with pytest.raises(AuditWriteError):
        run_atomic(db, lambda retried: audit.update(db, test, {"observations": "unaudited"}, actor_id=actor.id))

    reloaded = db.get(models.IndustrialTest, test_id)
    assert reloaded.observations is None
    assert len(_entries(db, test_id)) == 1


def test_ledger_entries_are_append_only(db, make_personnel, hydraulic_type):
    engineer = make_personnel("Ingénieur")
    _, test = _planned_test(db, engineer.id, hydraulic_type.id)
    entry = _entries(db, test.id)[0]

    entry.tag = "TAMPERED"
    with pytest.raises(AuditWriteError):
        db.flush()
    db.rollback()

    entry = _entries(db, test.id)[0]
    db.delete(entry)
    with pytest.raises(AuditWriteError):
        db.flush()
    db.rollback()
    assert _entries(db, test.id)[0].tag == "TESTS_INDUSTRIELS"
