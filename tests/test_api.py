"""
End-to-end API scenarios over the ASGI app.
"""

import pytest

from conftest import PASSWORD, future, login


def task_payload(assignee, title="Quarterly report"):
    return {
        "title": title,
        "description": "Compile the numbers for the quarter",
        "assigned_to": str(assignee.id),
        "deadline": future().isoformat(),
        "priority": "high",
    }


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client, seeded):
    response = await client.get("/v1/tasks")
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_and_me(client, seeded):
    response = await client.post(
        "/v1/auth/login",
        json={"email": seeded["employee"].email, "password": PASSWORD, "fcm_token": "device-9"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert "password_hash" not in body["user"]
    assert "login_attempts" not in body["user"]

    me = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.json()["email"] == seeded["employee"].email


@pytest.mark.asyncio
async def test_full_review_cycle(client, seeded):
    manager = await login(client, seeded["manager"])
    employee = await login(client, seeded["employee"])

    created = await client.post("/v1/tasks", json=task_payload(seeded["employee"]), headers=manager)
    assert created.status_code == 201, created.text
    task_id = created.json()["id"]

    for status in ("in_progress", "completed"):
        moved = await client.put(
            f"/v1/tasks/{task_id}/status", json={"status": status}, headers=employee
        )
        assert moved.status_code == 200, moved.text

    # The assignee cannot approve their own work
    denied = await client.put(
        f"/v1/tasks/{task_id}/status", json={"status": "approved"}, headers=employee
    )
    assert denied.status_code == 403
    assert denied.json()["detail"]["code"] == "PERMISSION_DENIED"

    approved = await client.put(
        f"/v1/tasks/{task_id}/status", json={"status": "approved"}, headers=manager
    )
    assert approved.status_code == 200
    body = approved.json()
    assert body["status"] == "approved"
    assert body["approved_by"] == str(seeded["manager"].id)
    assert [h["status"] for h in body["status_history"]] == [
        "pending",
        "in_progress",
        "completed",
        "approved",
    ]

    again = await client.put(
        f"/v1/tasks/{task_id}/status", json={"status": "pending"}, headers=manager
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_cross_team_access_is_denied_and_audited(client, seeded):
    other_manager = await login(client, seeded["other_manager"])
    employee = await login(client, seeded["employee"])
    admin = await login(client, seeded["admin"])

    created = await client.post(
        "/v1/tasks", json=task_payload(seeded["outsider"], "Other team work"), headers=other_manager
    )
    task_id = created.json()["id"]

    hidden = await client.get(f"/v1/tasks/{task_id}", headers=employee)
    assert hidden.status_code == 404

    moved = await client.put(
        f"/v1/tasks/{task_id}/status", json={"status": "in_progress"}, headers=employee
    )
    assert moved.status_code == 403

    denials = await client.get(
        "/v1/audit/logs",
        params={"action": "access_denied", "actor_id": str(seeded["employee"].id)},
        headers=admin,
    )
    assert denials.status_code == 200
    entries = denials.json()["items"]
    assert len(entries) == 2
    assert {e["resource_id"] for e in entries} == {task_id}
    assert all(e["category"] == "security" for e in entries)


@pytest.mark.asyncio
async def test_reject_requires_reason(client, seeded):
    manager = await login(client, seeded["manager"])
    employee = await login(client, seeded["employee"])
    task_id = (
        await client.post("/v1/tasks", json=task_payload(seeded["employee"]), headers=manager)
    ).json()["id"]
    for status in ("in_progress", "completed"):
        await client.put(f"/v1/tasks/{task_id}/status", json={"status": status}, headers=employee)

    response = await client.put(
        f"/v1/tasks/{task_id}/status", json={"status": "rejected"}, headers=manager
    )
    assert response.status_code == 400
    assert "rejection_reason" in response.json()["detail"]["errors"]


@pytest.mark.asyncio
async def test_lockout_over_http(client, seeded):
    email = seeded["employee"].email
    for _ in range(5):
        response = await client.post(
            "/v1/auth/login", json={"email": email, "password": "Wrong1pass"}
        )
        assert response.status_code == 401

    locked = await client.post("/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert locked.status_code == 423
    assert locked.json()["detail"]["lock_until"] is not None

    admin = await login(client, seeded["admin"])
    report = await client.get("/v1/audit/security", params={"hours": 1}, headers=admin)
    assert report.status_code == 200
    [by_ip] = report.json()["failed_logins_by_ip"]
    assert by_ip["count"] == 6


@pytest.mark.asyncio
async def test_malformed_input_is_400_with_field_errors(client, seeded):
    manager = await login(client, seeded["manager"])
    payload = task_payload(seeded["employee"])
    payload["title"] = "ab"

    response = await client.post("/v1/tasks", json=payload, headers=manager)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["code"] == "VALIDATION_FAILED"
    assert "title" in detail["errors"]


@pytest.mark.asyncio
async def test_manager_user_management(client, seeded):
    manager = await login(client, seeded["manager"])

    created = await client.post(
        "/v1/users",
        json={"name": "New Hire", "email": "new.hire@example.com", "password": PASSWORD},
        headers=manager,
    )
    assert created.status_code == 201
    assert created.json()["manager_id"] == str(seeded["manager"].id)

    duplicate = await client.post(
        "/v1/users",
        json={"name": "New Hire", "email": "NEW.HIRE@example.com", "password": PASSWORD},
        headers=manager,
    )
    assert duplicate.status_code == 409

    promote = await client.post(
        "/v1/users",
        json={
            "name": "Second Boss",
            "email": "boss2@example.com",
            "password": PASSWORD,
            "role": "manager",
        },
        headers=manager,
    )
    assert promote.status_code == 403

    team = await client.get("/v1/users", headers=manager)
    assert {u["email"] for u in team.json()["items"]} == {
        seeded["manager"].email,
        seeded["employee"].email,
        "new.hire@example.com",
    }

    outsider = await client.get(f"/v1/users/{seeded['outsider'].id}", headers=manager)
    assert outsider.status_code == 404

    deactivate = await client.delete(f"/v1/users/{seeded['employee'].id}", headers=manager)
    assert deactivate.status_code == 403


@pytest.mark.asyncio
async def test_deactivated_user_loses_access(client, seeded):
    manager = await login(client, seeded["manager"])
    employee = await login(client, seeded["employee"])
    admin = await login(client, seeded["admin"])
    await client.post("/v1/tasks", json=task_payload(seeded["employee"]), headers=manager)

    response = await client.delete(f"/v1/users/{seeded['employee'].id}", headers=admin)
    assert response.status_code == 200
    assert response.json()["reassigned_tasks"] == 1

    assert (await client.get("/v1/tasks", headers=employee)).status_code == 401

    own = await client.delete(f"/v1/users/{seeded['admin'].id}", headers=admin)
    assert own.status_code == 400
    assert own.json()["detail"]["code"] == "SELF_DEACTIVATION"


@pytest.mark.asyncio
async def test_notification_settings_round_trip(client, seeded):
    employee = await login(client, seeded["employee"])

    updated = await client.put(
        "/v1/notifications/settings",
        json={"task_assignments": False, "task_updates": True},
        headers=employee,
    )
    assert updated.status_code == 200
    assert updated.json()["task_assignments"] is False

    current = await client.get("/v1/notifications/settings", headers=employee)
    assert current.json()["task_assignments"] is False
    assert current.json()["task_approvals"] is True


@pytest.mark.asyncio
async def test_audit_endpoints_are_super_admin_only(client, seeded):
    manager = await login(client, seeded["manager"])
    admin = await login(client, seeded["admin"])

    assert (await client.get("/v1/audit/summary", headers=manager)).status_code == 403

    summary = await client.get("/v1/audit/summary", params={"period": "24h"}, headers=admin)
    assert summary.status_code == 200
    assert summary.json()["stats"]["total"] >= 2

    cleanup = await client.delete("/v1/audit/logs/cleanup", params={"days": 90}, headers=admin)
    assert cleanup.status_code == 200
    assert cleanup.json() == {"ok": True, "deleted_count": 0, "retention_days": 90}

    too_short = await client.delete("/v1/audit/logs/cleanup", params={"days": 5}, headers=admin)
    assert too_short.status_code == 400


@pytest.mark.asyncio
async def test_oversized_user_agent_is_still_audited(client, seeded):
    response = await client.post(
        "/v1/auth/login",
        json={"email": seeded["employee"].email, "password": "Wrong1pass"},
        headers={"User-Agent": "x" * 2000},
    )
    assert response.status_code == 401

    admin = await login(client, seeded["admin"])
    failures = await client.get(
        "/v1/audit/logs", params={"action": "failed_login"}, headers=admin
    )
    [entry] = failures.json()["items"]
    assert entry["user_agent"] == "x" * 512


@pytest.mark.asyncio
async def test_notification_endpoints(client, seeded):
    manager = await login(client, seeded["manager"])
    admin = await login(client, seeded["admin"])
    employee = await login(client, seeded["employee"])

    sent = await client.post(
        "/v1/notifications/send",
        json={
            "user_id": str(seeded["employee"].id),
            "title": "Standup moved",
            "body": "Standup is at 10:30 today",
        },
        headers=manager,
    )
    assert sent.status_code == 200
    assert sent.json() == {"ok": True, "delivered": True}

    outside = await client.post(
        "/v1/notifications/send",
        json={"user_id": str(seeded["outsider"].id), "title": "Hi", "body": "Hello"},
        headers=manager,
    )
    assert outside.status_code == 403

    broadcast = await client.post(
        "/v1/notifications/broadcast",
        json={"title": "Maintenance", "body": "Downtime on Sunday", "target_type": "role"},
        headers=admin,
    )
    assert broadcast.status_code == 400

    reminders = await client.post("/v1/notifications/reminders/overdue", headers=manager)
    assert reminders.status_code == 200
    assert reminders.json() == {"ok": True, "total_tasks": 0, "total_sent": 0}

    denied = await client.post("/v1/notifications/reminders/overdue", headers=employee)
    assert denied.status_code == 403
