import threading
from datetime import date, timedelta

import models
import routers.absence as absence_router
from scheduler import weekday_lock

from conftest import MONDAY


def create_teacher(client, name, subject=None, role="teacher"):
    response = client.post(
        "/teachers/",
        json={
            "name": name,
            "email": f"{name.lower().replace(' ', '.')}@school.edu",
            "subject": subject,
            "role": role,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def add_period(client, teacher_id, start, end, day="Monday", class_name="7A", subject=None):
    response = client.post(
        f"/teachers/{teacher_id}/schedule",
        json={
            "day": day,
            "period_start": start,
            "period_end": end,
            "class_name": class_name,
            "subject": subject,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def mark_absent(client, teacher_id, absence_date=MONDAY, reason="Flu"):
    return client.post(
        "/absence/report-day",
        json={"teacher_id": teacher_id, "absence_date": absence_date.isoformat(), "reason": reason},
    )


def schedule_of(client, teacher_id, day="Monday"):
    response = client.get(f"/teachers/{teacher_id}/schedule", params={"day": day})
    assert response.status_code == 200
    return response.json()


def coverage_notices(client, teacher_id):
    response = client.get(f"/teachers/{teacher_id}/notifications")
    assert response.status_code == 200
    return [n for n in response.json() if n["title"] == "Coverage Assignment"]


def math_department(client):
    a = create_teacher(client, "Ada Absent", subject="Math")
    b = create_teacher(client, "Ben Math", subject="Math")
    c = create_teacher(client, "Cy Science", subject="Science")
    add_period(client, a["id"], "09:00", "09:50", class_name="8B", subject="Math")
    add_period(client, a["id"], "10:00", "10:50", class_name="8C", subject="Math")
    return a, b, c


def test_marking_absent_assigns_coverage(client):
    a, b, c = math_department(client)

    response = mark_absent(client, a["id"])

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["coverage_assigned"] == 2
    assert body["periods_total"] == 2
    assert body["teacher_name"] == "Ada Absent"
    assert {item["substitute_id"] for item in body["assignments"]} == {b["id"]}
    assert body["coverage_error"] is None

    periods = schedule_of(client, a["id"])
    assert all(p["covered_by"] == b["id"] and p["is_covered"] for p in periods)
    assert len(coverage_notices(client, b["id"])) == 2
    assert coverage_notices(client, c["id"]) == []

    absent_notices = client.get(f"/teachers/{a['id']}/notifications").json()
    assert any(n["title"] == "Marked Absent" and n["severity"] == "warning" for n in absent_notices)


def test_second_absence_for_same_date_conflicts(client):
    a, b, _ = math_department(client)
    assert mark_absent(client, a["id"]).status_code == 200

    again = mark_absent(client, a["id"], reason="Still sick")

    assert again.status_code == 409
    # The engine did not run a second time
    assert len(coverage_notices(client, b["id"])) == 2
    history = client.get("/absence/history", params={"teacher_id": a["id"]}).json()
    assert len(history) == 1


def test_partial_coverage_reports_fewer_periods(client):
    a = create_teacher(client, "Ada Absent")
    b = create_teacher(client, "Ben Busy")
    add_period(client, a["id"], "09:00", "09:50")
    add_period(client, a["id"], "10:00", "10:50")
    add_period(client, a["id"], "11:00", "11:50")
    add_period(client, b["id"], "11:00", "11:50")

    body = mark_absent(client, a["id"]).json()

    assert body["coverage_assigned"] == 2
    assert body["periods_total"] == 3
    uncovered = [p for p in schedule_of(client, a["id"]) if p["period_start"] == "11:00"][0]
    assert uncovered["covered_by"] is None
    assert uncovered["is_covered"] is False
    assert [item["substitute_name"] for item in body["assignments"]][-1] == "Not Found"


def test_unknown_or_inactive_teacher_is_rejected(client):
    teacher = create_teacher(client, "Gone Away")
    client.patch(f"/teachers/{teacher['id']}/status", json={"status": "inactive"})

    assert mark_absent(client, teacher["id"]).status_code == 404
    assert mark_absent(client, 999).status_code == 404


def test_invalid_teacher_id_fails_validation(client):
    response = client.post("/absence/report-day", json={"teacher_id": 0})
    assert response.status_code == 422


def test_date_defaults_to_today(client):
    teacher = create_teacher(client, "Today Only")
    response = client.post("/absence/report-day", json={"teacher_id": teacher["id"]})

    assert response.status_code == 200
    assert response.json()["absence_date"] == date.today().isoformat()
    listed = client.get("/absence/").json()
    assert [row["teacher_name"] for row in listed] == ["Today Only"]
    assert listed[0]["reason"] == "No reason provided"


def test_retracting_absence_clears_its_coverage(client):
    a, b, _ = math_department(client)
    absence_id = mark_absent(client, a["id"]).json()["absence_id"]

    response = client.delete(f"/absence/{absence_id}")

    assert response.status_code == 200
    assert response.json()["coverage_cleared"] == 2
    for period in schedule_of(client, a["id"]):
        assert period["covered_by"] is None
        assert period["is_covered"] is False
    assert client.get("/absence/", params={"date": MONDAY.isoformat()}).json() == []
    assert client.delete(f"/absence/{absence_id}").status_code == 404


def test_retraction_keeps_coverage_from_another_date(client):
    a = create_teacher(client, "Ada Absent")
    create_teacher(client, "Ben Free")
    add_period(client, a["id"], "09:00", "09:50")
    first = mark_absent(client, a["id"]).json()["absence_id"]
    # The weekly row is handed over to next Monday's absence
    mark_absent(client, a["id"], absence_date=MONDAY + timedelta(days=7))

    client.delete(f"/absence/{first}")

    assert schedule_of(client, a["id"])[0]["is_covered"] is True


def test_coverage_listing_names_both_teachers(client):
    a, b, _ = math_department(client)
    mark_absent(client, a["id"], reason="Dentist")

    rows = client.get("/absence/coverage", params={"date": MONDAY.isoformat()}).json()

    assert len(rows) == 2
    assert {row["covering_teacher"] for row in rows} == {"Ben Math"}
    assert {row["original_teacher"] for row in rows} == {"Ada Absent"}
    assert {row["absence_reason"] for row in rows} == {"Dentist"}


def test_reassign_checks_availability(client):
    a, b, c = math_department(client)
    busy = create_teacher(client, "Busy Bee")
    add_period(client, busy["id"], "09:30", "10:20")
    mark_absent(client, a["id"])
    period = schedule_of(client, a["id"])[0]

    refused = client.post(
        "/absence/coverage/reassign",
        json={"period_id": period["id"], "teacher_id": busy["id"], "absence_date": MONDAY.isoformat()},
    )
    assert refused.status_code == 400

    accepted = client.post(
        "/absence/coverage/reassign",
        json={"period_id": period["id"], "teacher_id": c["id"], "absence_date": MONDAY.isoformat()},
    )
    assert accepted.status_code == 200
    assert schedule_of(client, a["id"])[0]["covered_by"] == c["id"]
    assert len(coverage_notices(client, c["id"])) == 1


def test_reassign_rejects_date_on_wrong_weekday(client):
    a, _, c = math_department(client)
    period = schedule_of(client, a["id"])[0]
    response = client.post(
        "/absence/coverage/reassign",
        json={
            "period_id": period["id"],
            "teacher_id": c["id"],
            "absence_date": (MONDAY + timedelta(days=1)).isoformat(),
        },
    )
    assert response.status_code == 400


def test_workload_lists_lowest_first(client):
    a, b, c = math_department(client)
    create_teacher(client, "Head Admin", role="admin")
    mark_absent(client, a["id"])

    rows = client.get("/absence/workload").json()

    assert [row["name"] for row in rows] == ["Ada Absent", "Cy Science", "Ben Math"]
    assert rows[-1]["coverage_count"] == 2


def test_reassign_to_current_substitute_is_accepted(client):
    a, b, _ = math_department(client)
    mark_absent(client, a["id"])
    period = schedule_of(client, a["id"])[0]
    assert period["covered_by"] == b["id"]

    response = client.post(
        "/absence/coverage/reassign",
        json={"period_id": period["id"], "teacher_id": b["id"], "absence_date": MONDAY.isoformat()},
    )

    assert response.status_code == 200
    assert schedule_of(client, a["id"])[0]["covered_by"] == b["id"]


def test_reassign_waits_for_running_coverage_on_same_weekday(client):
    a, _, c = math_department(client)
    period = schedule_of(client, a["id"])[0]
    results = []

    def reassign():
        results.append(client.post(
            "/absence/coverage/reassign",
            json={"period_id": period["id"], "teacher_id": c["id"], "absence_date": MONDAY.isoformat()},
        ))

    lock = weekday_lock("Monday")
    lock.acquire()
    worker = threading.Thread(target=reassign)
    try:
        worker.start()
        worker.join(timeout=0.5)
        assert worker.is_alive()
        assert results == []
    finally:
        lock.release()
    worker.join(timeout=10)

    assert results[0].status_code == 200
    assert schedule_of(client, a["id"])[0]["covered_by"] == c["id"]


def test_failed_notifications_keep_committed_coverage(client, monkeypatch):
    a, b, _ = math_department(client)

    class BrokenNotification:
        def __init__(self, **kwargs):
            raise RuntimeError("notifications table is locked")

    monkeypatch.setattr(models, "Notification", BrokenNotification)
    response = mark_absent(client, a["id"])

    assert response.status_code == 200
    assert response.json()["coverage_assigned"] == 2
    periods = schedule_of(client, a["id"])
    assert [p["covered_by"] for p in periods] == [b["id"], b["id"]]
    assert all(p["is_covered"] for p in periods)


def test_coverage_configuration_error_still_records_absence(client, monkeypatch):
    a, _, _ = math_department(client)

    def misconfigured(*args, **kwargs):
        raise ValueError("Unknown coverage strategy: 'random'")

    monkeypatch.setattr(absence_router, "assign_coverage", misconfigured)
    response = mark_absent(client, a["id"])

    assert response.status_code == 200
    body = response.json()
    assert body["coverage_assigned"] == 0
    assert "random" in body["coverage_error"]
    listed = client.get("/absence/", params={"date": MONDAY.isoformat()}).json()
    assert [row["teacher_name"] for row in listed] == ["Ada Absent"]
