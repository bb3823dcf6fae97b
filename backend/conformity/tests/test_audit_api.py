from datetime import datetime, timedelta, timezone
from uuid import uuid4


def _tracked_test(client, headers, type_id):
    test = client.post("/api/tests", json={"test_type_id": str(type_id)}, headers=headers).json()
    client.patch(f"/api/tests/{test['id']}", json={"observations": "bench B"}, headers=headers)
    client.post(f"/api/tests/{test['id']}/demarrer", headers=headers)
    return test


def test_entries_filters_and_pagination(client, make_personnel, auth_headers, hydraulic_type):
    engineer = make_personnel("Ingénieur")
    headers = auth_headers(engineer)
    test = _tracked_test(client, headers, hydraulic_type.id)

    resp = client.get(
        "/api/audit/entries",
        params={"entity_type": "tests", "entity_id": test["id"]},
        headers=headers,
    )
    assert resp.status_code == 200
    page = resp.json()
    assert page["total"] == 3
    assert sorted(item["event"] for item in page["items"]) == ["created", "updated", "updated"]
    assert all(item["tag"] == "TESTS_INDUSTRIELS" for item in page["items"])
    assert all(item["actor_id"] == str(engineer.id) for item in page["items"])

    created = client.get(
        "/api/audit/entries",
        params={"entity_id": test["id"], "event": "created"},
        headers=headers,
    ).json()["items"][0]
    assert created["url"].endswith("/api/tests")
    assert created["ip_address"] == "testclient"
    assert created["user_agent"] == "testclient"
    assert created["changes"]["status"] == {"old": None, "new": "PLANIFIE"}

    paged = client.get(
        "/api/audit/entries",
        params={"actor_id": str(engineer.id), "limit": 1, "offset": 1},
        headers=headers,
    ).json()
    assert paged["total"] == 3
    assert paged["limit"] == 1
    assert len(paged["items"]) == 1

    single = client.get(f"/api/audit/entries/{created['id']}", headers=headers)
    assert single.status_code == 200
    assert single.json()["entity_id"] == test["id"]
    assert client.get(f"/api/audit/entries/{uuid4()}", headers=headers).status_code == 404


def test_report_groups_by_entity_and_event(client, make_personnel, auth_headers, hydraulic_type):
    engineer = make_personnel("Ingénieur")
    headers = auth_headers(engineer)
    _tracked_test(client, headers, hydraulic_type.id)

    now = datetime.now(timezone.utc)
    resp = client.get(
        "/api/audit/report",
        params={
            "start": (now - timedelta(hours=1)).isoformat(),
            "end": (now + timedelta(hours=1)).isoformat(),
            "actor_id": str(engineer.id),
        },
        headers=headers,
    )
    assert resp.status_code == 200
    counts = {(row["entity_type"], row["event"]): row["count"] for row in resp.json()}
    assert counts == {("tests", "created"): 1, ("tests", "updated"): 2}


def test_ledger_requires_audit_permission(client, make_personnel, auth_headers):
    headers = auth_headers(make_personnel("Technicien"))
    resp = client.get("/api/audit/entries", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["error"] == "authorization_denied"
    assert client.get("/api/audit/entries").status_code == 401
