"""End-to-end attendance scenarios through the HTTP API."""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from absensi.core.config import settings
from absensi.main import app
from absensi.models.attendance import AttendanceRecord
from absensi.models.security_log import SecurityLog
from absensi.services.ip_locator import IpLocation, IpLocator

TAP = "/api/v1/attendance/tap"
TEN_METERS = 0.0000899
FIVE_METERS = 0.000045
ONE_TWENTY_METERS = -0.0010792


class FakeLocator:
    def __init__(self, location):
        self.location = location

    async def locate(self, ip):
        return self.location


async def _rows(db: AsyncSession) -> list[AttendanceRecord]:
    db.expire_all()
    return list((await db.execute(select(AttendanceRecord))).scalars().all())


# ── Scenarios ───────────────────────────────────────────────────────
async def test_on_time_check_in(async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 30))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["action"] == "check_in"
    assert data["status"] == "present"
    assert data["distance_meters"] == 10
    assert data["local_time"] == "07.30"
    assert data["record"]["check_in_local"] == "07.30"
    assert data["record"]["check_out_time"] is None

    [row] = await _rows(db_session)
    assert row.date == "2025-09-10"
    assert row.status == "present"
    assert row.check_in_time is not None
    assert row.check_out_time is None


async def test_late_check_in(async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 9, 15))
    resp = await async_client.post(TAP, json=near_office(FIVE_METERS))
    assert resp.status_code == 200
    assert resp.json()["status"] == "late"
    assert resp.json()["distance_meters"] == 5
    [row] = await _rows(db_session)
    assert row.status == "late"


async def test_missed_window_records_late_check_out(
    async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office
):
    set_clock(at_wita(2025, 9, 10, 14, 0))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 200
    data = resp.json()
    assert data["action"] == "late_check_out"
    assert data["status"] == "late"

    [row] = await _rows(db_session)
    assert row.check_in_time is None
    assert row.check_out_time is not None
    assert row.status == "late"

    # the day is closed: a later tap never adds a check-in
    set_clock(at_wita(2025, 9, 10, 15, 0))
    again = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert again.status_code == 409
    assert again.json()["code"] == "already_checked_out"
    [row] = await _rows(db_session)
    assert row.check_in_time is None


async def test_double_check_in_is_rejected_without_mutation(
    async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office
):
    set_clock(at_wita(2025, 9, 10, 8, 10))
    first = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert first.status_code == 200
    [before] = await _rows(db_session)
    check_in = before.check_in_time

    set_clock(at_wita(2025, 9, 10, 9, 0))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "already_checked_in"
    assert body["success"] is False

    [after] = await _rows(db_session)
    assert after.check_in_time == check_in
    assert after.check_out_time is None
    assert after.status == "late"


async def test_out_of_range_is_rejected_and_logged(
    async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office
):
    set_clock(at_wita(2025, 9, 10, 9, 0))
    resp = await async_client.post(TAP, json=near_office(ONE_TWENTY_METERS))
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == "location_out_of_range"
    assert body["distance_meters"] == 120

    assert await _rows(db_session) == []
    logs = (await db_session.execute(select(SecurityLog))).scalars().all()
    assert len(logs) == 1
    assert logs[0].event_type == "location_out_of_range"
    assert logs[0].distance_meters == 120
    assert logs[0].user_id == employee.user_id


# ── Full day and other rejections ───────────────────────────────────
async def test_check_in_then_check_out(async_client: AsyncClient, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 55))
    await async_client.post(TAP, json=near_office(TEN_METERS))

    set_clock(at_wita(2025, 9, 10, 16, 25))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 200
    data = resp.json()
    assert data["action"] == "check_out"
    assert data["status"] == "present"
    assert data["record"]["work_minutes"] == 8 * 60 + 30

    set_clock(at_wita(2025, 9, 10, 17, 0))
    done = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert done.status_code == 409
    assert done.json()["code"] == "attendance_complete"


@pytest.mark.parametrize("hour", [6, 19, 23])
async def test_outside_check_in_window(async_client: AsyncClient, employee, set_clock, at_wita, near_office, hour):
    set_clock(at_wita(2025, 9, 10, hour, 30))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_check_in_window"


async def test_check_out_after_window(async_client: AsyncClient, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 10))
    await async_client.post(TAP, json=near_office(TEN_METERS))
    set_clock(at_wita(2025, 9, 10, 19, 0))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_check_out_window"


async def test_next_day_starts_fresh(async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 10))
    await async_client.post(TAP, json=near_office(TEN_METERS))
    # 07:20 WITA on the 11th is 23:20 UTC on the 10th
    set_clock(at_wita(2025, 9, 11, 7, 20))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 200
    assert resp.json()["record"]["date"] == "2025-09-11"
    assert len(await _rows(db_session)) == 2


@pytest.mark.parametrize(
    "body",
    [{}, {"latitude": -8.3580157, "longitude": 116.159854}, {"accuracy": 5}],
)
async def test_missing_location(async_client: AsyncClient, employee, set_clock, at_wita, body):
    set_clock(at_wita(2025, 9, 10, 7, 30))
    resp = await async_client.post(TAP, json=body)
    assert resp.status_code == 400
    assert resp.json()["code"] == "location_unavailable"


async def test_zero_accuracy_is_suspicious(async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 30))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS, accuracy=0))
    assert resp.status_code == 403
    assert resp.json()["code"] == "suspicious_location_data"
    logs = (await db_session.execute(select(SecurityLog))).scalars().all()
    assert [log.event_type for log in logs] == ["suspicious_location_data"]


async def test_ip_mismatch_blocks(async_client: AsyncClient, employee, set_clock, set_ip_locator, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 30))
    set_ip_locator(FakeLocator(IpLocation(latitude=-6.2, longitude=106.8)))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 403
    assert resp.json()["code"] == "location_ip_mismatch"


async def test_ip_lookup_failure_still_records(async_client: AsyncClient, employee, set_clock, set_ip_locator, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 30))
    set_ip_locator(FakeLocator(None))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 200


async def test_forwarded_header_from_direct_client_is_ignored(
    db_session, employee, set_clock, set_ip_locator, at_wita, near_office
):
    """A private X-Forwarded-For hop must not switch off the IP cross-check."""
    looked_up = []

    def handler(request: httpx.Request) -> httpx.Response:
        looked_up.append(request.url.path)
        return httpx.Response(200, json={"latitude": -6.2, "longitude": 106.8})  # Jakarta

    set_clock(at_wita(2025, 9, 10, 7, 30))
    set_ip_locator(IpLocator("https://geo.test/{ip}/json/", transport=httpx.MockTransport(handler)))
    transport = ASGITransport(app=app, client=("36.68.1.1", 40000))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post(
            TAP, json=near_office(TEN_METERS), headers={"X-Forwarded-For": "10.0.0.1"}
        )

    assert resp.status_code == 403
    assert resp.json()["code"] == "location_ip_mismatch"
    assert looked_up == ["/36.68.1.1/json/"]
    assert await _rows(db_session) == []


async def test_junk_forwarded_address_is_logged_as_none(
    async_client: AsyncClient, db_session, employee, set_clock, at_wita, near_office, monkeypatch
):
    monkeypatch.setattr(settings, "TRUSTED_PROXIES", ["127.0.0.1"])
    set_clock(at_wita(2025, 9, 10, 9, 0))
    resp = await async_client.post(
        TAP, json=near_office(ONE_TWENTY_METERS), headers={"X-Forwarded-For": "a" * 100}
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "location_out_of_range"

    [log] = (await db_session.execute(select(SecurityLog))).scalars().all()
    assert log.event_type == "location_out_of_range"
    assert log.ip_address is None


async def test_user_without_profile_cannot_tap(async_client: AsyncClient, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 7, 30))
    resp = await async_client.post(TAP, json=near_office(TEN_METERS))
    assert resp.status_code == 403
    assert resp.json()["code"] == "profile_not_found"


# ── Read endpoints ──────────────────────────────────────────────────
async def test_today_preview(async_client: AsyncClient, employee, set_clock, at_wita, near_office):
    set_clock(at_wita(2025, 9, 10, 9, 0))
    resp = await async_client.get("/api/v1/attendance/today")
    assert resp.status_code == 200
    data = resp.json()
    assert data["state"] == "empty"
    assert data["next_action"] == "check_in"
    assert data["next_status"] == "late"
    assert data["record"] is None

    await async_client.post(TAP, json=near_office(TEN_METERS))
    data = (await async_client.get("/api/v1/attendance/today")).json()
    assert data["state"] == "awaiting_checkout"
    assert data["next_action"] is None
    assert "already checked in" in data["hint"]


async def test_config(async_client: AsyncClient, employee):
    resp = await async_client.get("/api/v1/attendance/config")
    assert resp.status_code == 200
    data = resp.json()
    assert data["radius_meters"] == 50
    assert data["timezone"] == "Asia/Makassar"
    assert data["windows"] == {
        "check_in_start_hour": 7,
        "on_time_cutoff_hour": 8,
        "check_in_end_hour": 12,
        "check_out_end_hour": 19,
    }
    assert data["location_poll_seconds"] == 30


async def test_history(async_client: AsyncClient, employee, set_clock, at_wita, near_office):
    for day, hour in ((8, 7), (9, 10), (10, 14)):
        set_clock(at_wita(2025, 9, day, hour, 0))
        assert (await async_client.post(TAP, json=near_office(TEN_METERS))).status_code == 200

    set_clock(at_wita(2025, 9, 10, 16, 0))
    resp = await async_client.get("/api/v1/attendance/history?year=2025&month=9")
    assert resp.status_code == 200
    data = resp.json()
    assert [r["date"] for r in data["records"]] == ["2025-09-10", "2025-09-09", "2025-09-08"]
    assert data["total_present"] == 1
    assert data["total_late"] == 2
    assert data["total_attended"] == 3
    assert data["working_days_elapsed"] == 8
    assert data["attendance_percentage"] == 38


async def test_history_rejects_bad_month(async_client: AsyncClient, employee):
    resp = await async_client.get("/api/v1/attendance/history?year=2025&month=13")
    assert resp.status_code == 422
