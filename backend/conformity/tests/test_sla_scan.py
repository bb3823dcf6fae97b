from datetime import datetime, timedelta, timezone
from uuid import UUID

from conformity import models, tasks
from conformity.services import nonconformity


def _manual_nc(client, headers, type_id, criticality):
    test = client.post("/api/tests", json={"test_type_id": str(type_id)}, headers=headers).json()
    resp = client.post(
        "/api/nonconformities",
        json={"test_id": test["id"], "criticality": criticality, "description": "burr on weld"},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_scan_alerts_detector_once(client, db, make_personnel, auth_headers, hydraulic_type, email_outbox):
    detector = make_personnel("Technicien")
    nc = _manual_nc(client, auth_headers(make_personnel("Ingénieur")), hydraulic_type.id, 1)
    db.query(models.NonConformity).filter(models.NonConformity.id == UUID(nc["id"])).update(
        {"detector_id": detector.id}
    )
    db.commit()

    deadline = datetime.fromisoformat(nc["sla_deadline"])
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)

    tasks.alert_due_nonconformities(db, now=deadline - timedelta(hours=30), warning_hours=5)
    db.commit()
    assert all(message[0] != detector.email for message in email_outbox)

    now = deadline - timedelta(hours=1)
    alerted = tasks.alert_due_nonconformities(db, now=now, warning_hours=5)
    db.commit()
    assert alerted >= 1

    sent = [message for message in email_outbox if message[0] == detector.email]
    assert len(sent) == 1
    assert sent[0][1] == f"NC {nc['number']} SLA due soon"

    stored = db.get(models.NonConformity, UUID(nc["id"]))
    assert nonconformity.as_utc(stored.sla_alerted_at) == now
    entry = (
        db.query(models.AuditEntry)
        .filter(models.AuditEntry.entity_id == nc["id"], models.AuditEntry.event == "updated")
        .one()
    )
    assert entry.actor_id is None
    assert entry.url == "system://scheduler"
    assert list(entry.changes) == ["sla_alerted_at"]

    assert tasks.alert_due_nonconformities(db, now=now, warning_hours=5) == 0


def test_overdue_and_closed_records(client, db, make_personnel, auth_headers, hydraulic_type, email_outbox):
    engineer = make_personnel("Ingénieur")
    headers = auth_headers(engineer)
    open_nc = _manual_nc(client, headers, hydraulic_type.id, 4)
    closed_nc = _manual_nc(client, headers, hydraulic_type.id, 4)
    client.post(f"/api/nonconformities/{closed_nc['id']}/close", json={"comment": "scrapped"}, headers=headers)

    now = datetime.now(timezone.utc) + timedelta(days=30)
    due = nonconformity.due_for_alert(db, now=now, warning_hours=0)
    ids = {str(nc.id) for nc in due}
    assert open_nc["id"] in ids
    assert closed_nc["id"] not in ids

    tasks.alert_due_nonconformities(db, now=now, warning_hours=0)
    db.commit()
    subjects = [message[1] for message in email_outbox if message[0] == engineer.email]
    assert f"NC {open_nc['number']} SLA overdue" in subjects
    assert all(closed_nc["number"] not in subject for subject in subjects)
