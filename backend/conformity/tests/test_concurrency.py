from uuid import UUID

import pytest

from conformity import models
from conformity.database import run_atomic
from conformity.errors import ConcurrencyConflict
from conformity.services import lifecycle


def _running_test(client, headers, hydraulic_type):
    test = client.post(
        "/api/tests",
        json={"test_type_id": str(hydraulic_type.id), "criticality": 2},
        headers=headers,
    ).json()
    for item_id, value in ((hydraulic_type.pressure_id, 100), (hydraulic_type.temperature_id, 20)):
        resp = client.post(
            f"/api/tests/{test['id']}/measurements",
            json={"checklist_item_id": str(item_id), "measured_value": value},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
    return test


def test_concurrent_terminer_loses_with_conflict(
    client, make_personnel, auth_headers, hydraulic_type, session_factory
):
    engineer = make_personnel("Ingénieur")
    test = _running_test(client, auth_headers(engineer), hydraulic_type)
    test_id = test["id"]

    first = session_factory()
    second = session_factory()
    attempts = []
    try:
        actor = first.get(models.Personnel, engineer.id)

        def operation(retried):
            attempts.append(retried)
            loaded = lifecycle.get_test(first, UUID(test_id))
            if not retried:
                rival = lifecycle.get_test(second, loaded.id)
                lifecycle.terminer(second, rival, actor=second.get(models.Personnel, engineer.id))
                second.commit()
            return lifecycle.terminer(first, loaded, actor=actor, retried=retried)

        with pytest.raises(ConcurrencyConflict):
            run_atomic(first, operation)
        assert attempts == [False, True]
    finally:
        first.close()
        second.close()

    with session_factory() as check:
        stored = check.get(models.IndustrialTest, UUID(test_id))
        assert stored.status == "TERMINE"
        assert stored.is_locked is True
        finishes = [
            entry
            for entry in check.query(models.AuditEntry)
            .filter(models.AuditEntry.entity_id == test_id, models.AuditEntry.event == "updated")
            .all()
            if entry.changes.get("status", {}).get("new") == "TERMINE"
        ]
        assert len(finishes) == 1


def test_terminer_after_committed_winner_is_a_conflict(
    client, make_personnel, auth_headers, hydraulic_type, session_factory
):
    engineer = make_personnel("Ingénieur")
    headers = auth_headers(engineer)
    test = _running_test(client, headers, hydraulic_type)

    with session_factory() as winner:
        loaded = lifecycle.get_test(winner, UUID(test["id"]), for_update=True)
        lifecycle.terminer(winner, loaded, actor=winner.get(models.Personnel, engineer.id))
        winner.commit()

    resp = client.post(f"/api/tests/{test['id']}/terminer", headers=headers)
    assert resp.status_code == 409
    assert resp.json()["error"] == "concurrency_conflict"
    assert resp.json()["current_status"] == "TERMINE"


def test_number_collision_is_retried_once(db, make_personnel, hydraulic_type, monkeypatch):
    engineer = make_personnel("Ingénieur")
    actor = db.get(models.Personnel, engineer.id)
    taken = run_atomic(
        db, lambda retried: lifecycle.create_test(db, actor=actor, test_type_id=hydraulic_type.id)
    ).number

    real_next_number = lifecycle.next_number
    calls = []

    def colliding_next_number(session, now=None):
        calls.append(now)
        return taken if len(calls) == 1 else real_next_number(session, now)

    monkeypatch.setattr(lifecycle, "next_number", colliding_next_number)
    created = run_atomic(
        db, lambda retried: lifecycle.create_test(db, actor=actor, test_type_id=hydraulic_type.id)
    )
    assert len(calls) == 2
    assert created.number != taken


def test_persistent_number_collision_is_a_conflict(db, make_personnel, hydraulic_type, monkeypatch):
    engineer = make_personnel("Ingénieur")
    actor = db.get(models.Personnel, engineer.id)
    taken = run_atomic(
        db, lambda retried: lifecycle.create_test(db, actor=actor, test_type_id=hydraulic_type.id)
    ).number

    monkeypatch.setattr(lifecycle, "next_number", lambda session, now=None: taken)
    with pytest.raises(ConcurrencyConflict):
        run_atomic(
            db, lambda retried: lifecycle.create_test(db, actor=actor, test_type_id=hydraulic_type.id)
        )
    assert db.query(models.IndustrialTest).filter(models.IndustrialTest.number == taken).count() == 1
