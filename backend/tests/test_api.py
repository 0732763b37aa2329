import asyncio

from cleanbook.domain.settings_store.db_models import Setting
from tests.conftest import MONDAY

TASKS = ["task-kitchen-counters", "task-bath-tub", "task-living-dust"]


def _headers(actor_id: str, role: str = "member") -> dict[str, str]:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role}


ADMIN = _headers("admin-1", "admin")


def _book(client, marketplace, member_id=None, **overrides):
    payload = {
        "zone_id": marketplace.zone_id,
        "address": "221B Baker St",
        "scheduled_date": MONDAY.isoformat(),
        "scheduled_time": "10:00",
        "task_ids": TASKS,
    }
    payload.update(overrides)
    return client.post("/v1/bookings", json=payload, headers=_headers(member_id or marketplace.gold_member_id))


def test_healthz_and_readyz(client):
    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.head("/healthz").status_code == 200

    response = client.get("/readyz")
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert [check["name"] for check in body["checks"]] == ["db", "pricing_config"]


def test_estimate_endpoint(client, marketplace):
    response = client.post("/v1/estimate", json={"task_ids": TASKS, "member_tier": "gold"})

    assert response.status_code == 200
    body = response.json()
    assert body["effort"]["modified_minutes"] == 70
    assert body["pricing"]["total_cents"] == 5865
    assert body["total_display"] == "$58.65"
    assert body["minimum_job_value_cents"] == 5000
    assert body["meets_minimum"] is True


def test_estimate_by_job_type(client):
    response = client.post("/v1/estimate/job-type", json={"job_type": "standard"})

    assert response.status_code == 200
    assert response.json()["effort_minutes"] == 120
    assert response.json()["total_cents"] == 9775


def test_estimate_errors_are_problem_details(client, marketplace):
    response = client.post("/v1/estimate", json={"task_ids": ["unknown"]}, headers={"X-Request-ID": "req-1"})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.headers["X-Request-ID"] == "req-1"
    body = response.json()
    assert body["title"] == "Validation Error"
    assert body["detail"] == "No valid tasks selected"
    assert body["request_id"] == "req-1"

    response = client.post("/v1/estimate", json={"task_ids": [], "member_tier": "platinum"})
    assert response.status_code == 422
    fields = {error["field"] for error in response.json()["errors"]}
    assert {"task_ids", "member_tier"} <= fields


def test_broken_pricing_setting_is_configuration_problem(client, marketplace, async_session_maker):
    async def _break_setting():
        async with async_session_maker() as session:
            setting = await session.get(Setting, "per_minute_cents")
            setting.value = "fifty"
            await session.commit()

    asyncio.run(_break_setting())
    response = client.post("/v1/estimate", json={"task_ids": TASKS})

    assert response.status_code == 500
    body = response.json()
    assert body["type"] == "https://cleanbook.dev/problems/configuration-error"
    assert body["title"] == "Configuration Error"
    assert [error["field"] for error in body["errors"]] == ["per_minute_cents"]


def test_missing_actor_problem_type(client, marketplace):
    response = client.get("/v1/bookings/anything")

    assert response.status_code == 401
    assert response.json()["type"] == "https://cleanbook.dev/problems/missing-actor"
    assert response.json()["detail"] == "Missing actor"


def test_booking_requires_actor(client, marketplace):
    response = client.post("/v1/bookings", json={})

    assert response.status_code in (401, 422)
    response = client.get("/v1/bookings/anything")
    assert response.status_code == 401
    response = client.get("/v1/bookings/anything", headers=_headers("x", "superuser"))
    assert response.status_code == 403


def test_booking_roundtrip_with_access_rules(client, marketplace, notifier):
    created = _book(client, marketplace)

    assert created.status_code == 201
    body = created.json()
    job_id = body["job"]["job_id"]
    assert body["job"]["cleaner_id"] == marketplace.alice_id
    assert body["pricing"] == {"total_cents": 5865, "cleaner_payout_cents": 4335, "total_display": "$58.65"}
    assert "Top rated" in body["match_reason"]
    assert notifier.events[0][0] == "booking_created"

    assert client.get(f"/v1/bookings/{job_id}", headers=_headers(marketplace.gold_member_id)).status_code == 200
    assert client.get(f"/v1/bookings/{job_id}", headers=_headers(marketplace.alice_id, "cleaner")).status_code == 200
    assert client.get(f"/v1/bookings/{job_id}", headers=_headers(marketplace.bob_id, "cleaner")).status_code == 403
    assert client.get(f"/v1/bookings/{job_id}", headers=_headers(marketplace.free_member_id)).status_code == 403
    assert client.get(f"/v1/bookings/{job_id}", headers=ADMIN).status_code == 200

    missing = client.get("/v1/bookings/nope", headers=ADMIN)
    assert missing.status_code == 404
    assert missing.json()["type"] == "https://cleanbook.dev/problems/not-found"


def test_booking_creation_rules(client, marketplace):
    admin_without_member = client.post(
        "/v1/bookings",
        json={
            "zone_id": marketplace.zone_id,
            "address": "1 Main St",
            "scheduled_date": MONDAY.isoformat(),
            "scheduled_time": "10:00",
            "task_ids": TASKS,
        },
        headers=ADMIN,
    )
    assert admin_without_member.status_code == 400

    on_behalf = client.post(
        f"/v1/bookings?member_id={marketplace.free_member_id}",
        json={
            "zone_id": marketplace.zone_id,
            "address": "1 Main St",
            "scheduled_date": MONDAY.isoformat(),
            "scheduled_time": "10:00",
            "task_ids": TASKS,
        },
        headers=ADMIN,
    )
    assert on_behalf.status_code == 201
    assert on_behalf.json()["job"]["member_id"] == marketplace.free_member_id

    cleaner_booking = client.post(
        "/v1/bookings",
        json={
            "zone_id": marketplace.zone_id,
            "address": "1 Main St",
            "scheduled_date": MONDAY.isoformat(),
            "scheduled_time": "12:00",
            "task_ids": TASKS,
        },
        headers=_headers(marketplace.alice_id, "cleaner"),
    )
    assert cleaner_booking.status_code == 403

    closed = _book(client, marketplace, zone_id=marketplace.closed_zone_id)
    assert closed.status_code == 400

    bad_time = _book(client, marketplace, scheduled_time="25:00")
    assert bad_time.status_code == 400


def test_no_cleaner_is_conflict(client, marketplace):
    assert _book(client, marketplace).status_code == 201
    assert _book(client, marketplace, scheduled_time="10:15").status_code == 201

    response = _book(client, marketplace, scheduled_time="10:30")

    assert response.status_code == 409
    assert response.json()["title"] == "Conflict"
    assert response.json()["type"] == "https://cleanbook.dev/problems/conflict"


def test_checklist_progress_via_api(client, marketplace):
    job_id = _book(client, marketplace).json()["job"]["job_id"]
    cleaner = _headers(marketplace.alice_id, "cleaner")

    checklist = client.get(f"/v1/bookings/{job_id}/checklist", headers=cleaner).json()
    assert [item["task_name"] for item in checklist["items"]] == ["Wipe counters", "Scrub tub", "Dust shelves"]
    assert checklist["effort_hours"] == 1.17

    item_id = checklist["items"][0]["item_id"]
    patched = client.patch(
        f"/v1/bookings/{job_id}/checklist/items/{item_id}", json={"notes": "Done early"}, headers=cleaner
    )
    assert patched.status_code == 200
    assert patched.json()["is_completed"] is True

    summary = client.get(f"/v1/bookings/{job_id}/checklist/summary", headers=cleaner).json()
    assert summary["completed_tasks"] == 1
    assert summary["progress"] == 33
    assert summary["remaining_minutes"] == 40
    assert summary["remaining_tasks"] == ["Scrub tub", "Dust shelves"]

    missing = client.patch(f"/v1/bookings/{job_id}/checklist/items/999999", json={}, headers=cleaner)
    assert missing.status_code == 404


def test_lifecycle_rating_and_member_jobs(client, marketplace):
    member = _headers(marketplace.gold_member_id)
    cleaner = _headers(marketplace.alice_id, "cleaner")
    job_id = _book(client, marketplace).json()["job"]["job_id"]

    too_early = client.post(f"/v1/bookings/{job_id}/rate", json={"rating": 5}, headers=member)
    assert too_early.status_code == 409

    assert client.post(f"/v1/bookings/{job_id}/start", headers=cleaner).json()["status"] == "IN_PROGRESS"
    assert client.post(f"/v1/bookings/{job_id}/complete", headers=cleaner).json()["status"] == "COMPLETED"

    rated = client.post(f"/v1/bookings/{job_id}/rate", json={"rating": 4, "review": "Nice"}, headers=member)
    assert rated.status_code == 200
    assert rated.json()["cleaner_rating_average"] == 4.0
    assert rated.json()["cleaner_rating_count"] == 1

    again = client.post(f"/v1/bookings/{job_id}/rate", json={"rating": 5}, headers=member)
    assert again.status_code == 409

    out_of_range = client.post(f"/v1/bookings/{job_id}/rate", json={"rating": 9}, headers=member)
    assert out_of_range.status_code == 400

    jobs = client.get(f"/v1/members/{marketplace.gold_member_id}/jobs", headers=member).json()
    assert jobs["upcoming"] == []
    assert [job["job_id"] for job in jobs["past"]] == [job_id]
    assert jobs["past"][0]["rating"] == 4

    other = client.get(f"/v1/members/{marketplace.gold_member_id}/jobs", headers=_headers("member-free"))
    assert other.status_code == 403


def test_cancel_and_reschedule_via_api(client, marketplace):
    member = _headers(marketplace.gold_member_id)
    job_id = _book(client, marketplace).json()["job"]["job_id"]

    moved = client.post(
        f"/v1/bookings/{job_id}/reschedule",
        json={"new_date": MONDAY.isoformat(), "new_time": "13:00"},
        headers=member,
    )
    assert moved.status_code == 200
    assert moved.json()["scheduled_time"] == "13:00"
    assert moved.json()["cleaner_id"] == marketplace.alice_id

    reassigned = client.post(f"/v1/bookings/{job_id}/reassign", headers=ADMIN)
    assert reassigned.status_code == 200
    assert reassigned.json()["cleaner_id"] == marketplace.bob_id
    assert client.post(f"/v1/bookings/{job_id}/reassign", headers=member).status_code == 403

    cancelled = client.post(f"/v1/bookings/{job_id}/cancel", json={"reason": "Travel"}, headers=member)
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "CANCELLED"

    again = client.post(f"/v1/bookings/{job_id}/cancel", json={}, headers=member)
    assert again.status_code == 409


def test_task_endpoints(client, marketplace):
    grouped = client.get("/v1/tasks").json()
    assert sorted(grouped) == ["bathroom", "kitchen", "living_room"]
    assert [task["task_id"] for task in grouped["kitchen"]] == ["task-kitchen-counters", "task-kitchen-floor"]

    assert client.get("/v1/tasks", params={"q": "dust"}).json() == {
        "living_room": [client.get("/v1/tasks/task-living-dust").json()]
    }
    assert client.get("/v1/tasks/room-types").json() == ["bathroom", "kitchen", "living_room"]
    assert client.get("/v1/tasks/missing").status_code == 404

    created = client.post(
        "/v1/admin/tasks",
        json={"name": "Clean windows", "room_type": "living_room", "effort_minutes": 35},
        headers=ADMIN,
    )
    assert created.status_code == 201
    task_id = created.json()["task_id"]

    assert client.patch(f"/v1/admin/tasks/{task_id}", json={"effort_minutes": 40}, headers=ADMIN).json()[
        "effort_minutes"
    ] == 40
    assert client.get("/v1/admin/tasks/stats", headers=ADMIN).json()["total_tasks"] == 5
    assert client.delete(f"/v1/admin/tasks/{task_id}", headers=ADMIN).status_code == 204
    assert client.get("/v1/admin/tasks/stats", headers=ADMIN).json()["total_tasks"] == 4
    assert client.post("/v1/admin/tasks", json={}, headers=_headers("member-gold")).status_code in (403, 422)


def test_admin_settings_and_matching(client, marketplace):
    member = _headers(marketplace.gold_member_id)
    assert client.get("/v1/admin/settings", headers=member).status_code == 403

    tier_settings = client.get("/v1/admin/settings", params={"category": "tier"}, headers=ADMIN).json()
    assert {setting["key"] for setting in tier_settings} == {
        "tier_silver_discount_percent",
        "tier_gold_discount_percent",
        "tier_diamond_discount_percent",
        "tier_silver_monthly_cents",
        "tier_gold_monthly_cents",
        "tier_diamond_monthly_cents",
    }

    updated = client.put("/v1/admin/settings/base_fee_cents", json={"value": "3000"}, headers=ADMIN)
    assert updated.status_code == 200
    assert updated.json()["value"] == 3000.0
    invalid = client.put("/v1/admin/settings/base_fee_cents", json={"value": "lots"}, headers=ADMIN)
    assert invalid.status_code == 400

    estimate = client.post("/v1/estimate/job-type", json={"job_type": "standard"}).json()
    assert estimate["subtotal_cents"] == 9000

    ranking = client.post(
        "/v1/admin/matching",
        json={
            "zone_id": marketplace.zone_id,
            "scheduled_date": MONDAY.isoformat(),
            "scheduled_time": "10:00",
            "duration_minutes": 60,
        },
        headers=ADMIN,
    ).json()
    assert ranking["best_cleaner_id"] == marketplace.alice_id
    assert [candidate["cleaner_id"] for candidate in ranking["candidates"]] == [
        marketplace.alice_id,
        marketplace.bob_id,
        marketplace.carol_id,
    ]

    slots = client.get(
        f"/v1/admin/cleaners/{marketplace.alice_id}/slots",
        params={"date": MONDAY.isoformat(), "duration_minutes": 540},
        headers=ADMIN,
    ).json()
    assert slots == ["08:00", "08:30", "09:00"]


def test_payout_flow_via_api(client, marketplace, notifier):
    cleaner = _headers(marketplace.alice_id, "cleaner")
    job_id = _book(client, marketplace).json()["job"]["job_id"]
    client.post(f"/v1/bookings/{job_id}/start", headers=cleaner)
    client.post(f"/v1/bookings/{job_id}/complete", headers=cleaner)

    period = {"start": "2000-01-01T00:00:00Z", "end": "2100-01-01T00:00:00Z"}
    preview = client.post("/v1/admin/payouts/preview", json=period, headers=ADMIN).json()
    assert [(p["cleaner_id"], p["gross_payout_cents"]) for p in preview] == [(marketplace.alice_id, 4335)]

    earnings = client.get(f"/v1/cleaners/{marketplace.alice_id}/earnings", headers=cleaner).json()
    assert earnings["pending"]["total_pending_cents"] == 4335
    other_cleaner = _headers(marketplace.bob_id, "cleaner")
    assert client.get(f"/v1/cleaners/{marketplace.alice_id}/earnings", headers=other_cleaner).status_code == 403

    created = client.post("/v1/admin/payouts/batches", json=period, headers=ADMIN)
    assert created.status_code == 201
    batch_id = created.json()["batch_id"]
    assert created.json()["total_jobs"] == 1
    assert client.post("/v1/admin/payouts/batches", json=period, headers=ADMIN).status_code == 409

    detail = client.get(f"/v1/admin/payouts/batches/{batch_id}", headers=ADMIN).json()
    assert detail["cleaner_payouts"][0]["jobs"][0]["job_id"] == job_id

    processed = client.post(f"/v1/admin/payouts/batches/{batch_id}/process", json={}, headers=ADMIN)
    assert processed.json()["status"] == "processed"
    assert notifier.events[-1][0] == "payout_processed"

    earnings = client.get(f"/v1/cleaners/{marketplace.alice_id}/earnings", headers=cleaner).json()
    assert earnings["pending"]["job_count"] == 0
    assert earnings["history"][0]["amount_cents"] == 4335

    backwards = client.post(
        "/v1/admin/payouts/preview",
        json={"start": "2030-01-02T00:00:00Z", "end": "2030-01-01T00:00:00Z"},
        headers=ADMIN,
    )
    assert backwards.status_code == 422
    assert client.get("/v1/admin/payouts/next-period", headers=ADMIN).status_code == 200
