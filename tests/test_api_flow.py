from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend.domain import events
from backend.domain.errors import ExpiredError, InvalidStateError, StoreUnavailableError
from backend.services.notification_service import InMemoryNotificationDispatcher
from backend.utils.config import get_settings


SLOT = {
    "space_id": "hall-a",
    "date_start": "2026-04-10",
    "date_end": "2026-04-10",
    "time_start": "18:00",
    "time_end": "23:00",
}


def _build_test_client(tmp_path, scheduler_token=None):
    get_settings.cache_clear()
    settings = replace(
        get_settings(),
        database_path=tmp_path / "api_flow.db",
        scheduler_token=scheduler_token,
        seed_demo_data=False,
    )
    dispatcher = InMemoryNotificationDispatcher()
    app = create_app(settings=settings, dispatcher=dispatcher)
    return TestClient(app), dispatcher


def _vendor(vendor_id: str) -> dict[str, str]:
    return {"X-Vendor-Id": vendor_id}


def test_reservation_lifecycle_over_http(tmp_path):
    client, dispatcher = _build_test_client(tmp_path)
    with client:
        created = client.post(
            "/reservations",
            json={"client_id": "client-1", "slot": SLOT, "estimated_value": 2500},
            headers=_vendor("V1"),
        )
        assert created.status_code == 201
        body = created.json()
        assert body["status"] == "active"
        assert body["slot"] == SLOT
        reservation_id = body["id"]

        duplicate = client.post(
            "/reservations",
            json={"client_id": "client-1", "slot": SLOT},
            headers=_vendor("V1"),
        )
        assert duplicate.status_code == 409

        enrolled = client.post("/queue", json=SLOT, headers=_vendor("V2"))
        assert enrolled.status_code == 201
        assert enrolled.json()["position"] == 1

        forbidden = client.post(
            f"/reservations/{reservation_id}/convert",
            json={"proposal_id": "P1"},
            headers=_vendor("V2"),
        )
        assert forbidden.status_code == 403

        extended = client.post(
            f"/reservations/{reservation_id}/extend",
            json={"additional_hours": 12},
            headers=_vendor("V1"),
        )
        assert extended.status_code == 200
        assert "Extended by 12h" in extended.json()["observations"]

        released = client.post(
            f"/reservations/{reservation_id}/release",
            json={"reason": "client declined"},
            headers=_vendor("V1"),
        )
        assert released.status_code == 200
        assert released.json()["status"] == "released"

        again = client.post(
            f"/reservations/{reservation_id}/convert",
            json={"proposal_id": "P1"},
            headers=_vendor("V1"),
        )
        assert again.status_code == 409

        mine = client.get("/queue/mine", headers=_vendor("V2"))
        assert mine.status_code == 200
        assert [entry["status"] for entry in mine.json()] == ["notified"]

    assert [event.recipient_id for event in dispatcher.of_kind(events.SLOT_AVAILABLE)] == ["V2"]


def test_error_mapping(tmp_path):
    client, _ = _build_test_client(tmp_path)
    with client:
        missing_header = client.post("/reservations", json={"client_id": "c", "slot": SLOT})
        assert missing_header.status_code == 401

        backwards = dict(SLOT, date_start="2026-04-11")
        invalid = client.post(
            "/reservations",
            json={"client_id": "c", "slot": backwards},
            headers=_vendor("V1"),
        )
        assert invalid.status_code == 400

        malformed = client.post(
            "/reservations",
            json={"client_id": "c", "slot": dict(SLOT, time_start="6pm")},
            headers=_vendor("V1"),
        )
        assert malformed.status_code == 422

        not_found = client.post(
            "/reservations/does-not-exist/cancel",
            headers=_vendor("V1"),
        )
        assert not_found.status_code == 404

        too_long = client.post(
            "/reservations",
            json={"client_id": "c", "slot": SLOT, "hold_duration_hours": 1},
            headers=_vendor("V1"),
        )
        reservation_id = too_long.json()["id"]
        exceeded = client.post(
            f"/reservations/{reservation_id}/extend",
            json={"additional_hours": 500},
            headers=_vendor("V1"),
        )
        assert exceeded.status_code == 400

        cancelled = client.post(f"/reservations/{reservation_id}/cancel", headers=_vendor("V1"))
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"


def test_listing_includes_time_remaining_and_statistics(tmp_path):
    client, _ = _build_test_client(tmp_path)
    with client:
        for space in ("hall-a", "hall-b"):
            response = client.post(
                "/reservations",
                json={
                    "client_id": "client-1",
                    "slot": dict(SLOT, space_id=space),
                    "estimated_value": 1000,
                    "hold_duration_hours": 10,
                },
                headers=_vendor("V1"),
            )
            assert response.status_code == 201
        client.post(
            "/reservations",
            json={"client_id": "client-2", "slot": SLOT},
            headers=_vendor("V2"),
        )

        listing = client.get("/reservations", headers=_vendor("V1"))
        assert listing.status_code == 200
        payload = listing.json()
        assert len(payload["items"]) == 2
        first = payload["items"][0]
        assert first["expired_now"] is False
        assert first["time_remaining"]["hours"] in (9, 10)
        assert payload["statistics"]["total"] == 2
        assert payload["statistics"]["total_estimated_value"] == 2000
        assert payload["statistics"]["expiring_within_24h"] == 2

        other_vendor_id = client.get("/reservations", headers=_vendor("V2")).json()["items"][0][
            "reservation"
        ]["id"]
        peek = client.get(f"/reservations/{other_vendor_id}", headers=_vendor("V1"))
        assert peek.status_code == 403


def test_queue_endpoints(tmp_path):
    client, _ = _build_test_client(tmp_path)
    with client:
        first = client.post("/queue", json=SLOT, headers=_vendor("V1")).json()
        repeat = client.post("/queue", json=SLOT, headers=_vendor("V1")).json()
        assert repeat["id"] == first["id"]
        client.post("/queue", json=SLOT, headers=_vendor("V2"))

        slot_queue = client.get("/queue", params=SLOT)
        assert slot_queue.status_code == 200
        assert [entry["position"] for entry in slot_queue.json()] == [1, 2]

        position = client.get("/queue/position", params=SLOT, headers=_vendor("V2"))
        assert position.status_code == 200
        assert position.json()["position"] == 2
        assert position.json()["estimated_wait_hours"] == 4

        absent = client.get("/queue/position", params=SLOT, headers=_vendor("V9"))
        assert absent.status_code == 404

        forbidden = client.delete(f"/queue/{first['id']}", headers=_vendor("V2"))
        assert forbidden.status_code == 403
        left = client.delete(f"/queue/{first['id']}", headers=_vendor("V1"))
        assert left.status_code == 200
        assert left.json()["status"] == "removed"
        assert [entry["vendor_id"] for entry in client.get("/queue", params=SLOT).json()] == ["V2"]

        score = client.get("/vendors/V1/score")
        assert score.status_code == 200
        assert score.json()["total"] == 100
        assert score.json()["degraded"] is True


def test_operator_endpoints_require_token(tmp_path):
    client, _ = _build_test_client(tmp_path, scheduler_token="cron-secret")
    with client:
        assert client.post("/sweep").status_code == 401
        assert (
            client.post("/sweep", headers={"Authorization": "Bearer wrong"}).status_code == 401
        )

        authorized = {"Authorization": "Bearer cron-secret"}
        sweep = client.post("/sweep", headers=authorized)
        assert sweep.status_code == 200
        assert sweep.json()["expired_count"] == 0
        assert set(sweep.json()["reminders"]) == {"24h", "12h", "2h"}

        jobs = client.post("/jobs/run", headers=authorized)
        assert jobs.status_code == 200
        assert jobs.json()["report"]["alerts"] == []

        report = client.get("/reports/vendors", headers=authorized)
        assert report.status_code == 200
        assert report.json() == []


def test_vendor_report_ranks_by_conversion_rate(tmp_path):
    client, _ = _build_test_client(tmp_path)
    with client:
        for vendor in ("V1", "V2"):
            for space in ("hall-a", "hall-b"):
                client.post(
                    "/reservations",
                    json={"client_id": "c", "slot": dict(SLOT, space_id=space)},
                    headers=_vendor(vendor),
                )
        v2_holds = client.get("/reservations", headers=_vendor("V2")).json()["items"]
        converted = client.post(
            f"/reservations/{v2_holds[0]['reservation']['id']}/convert",
            json={"proposal_id": "P9"},
            headers=_vendor("V2"),
        )
        assert converted.status_code == 200

        report = client.get("/reports/vendors").json()
        assert [row["vendor_id"] for row in report] == ["V2", "V1"]
        assert report[0]["conversion_rate"] == 50.0
        assert report[1]["mean_conversion_hours"] is None


@pytest.mark.parametrize(
    ("error", "expected_status"),
    [
        (ExpiredError("hold passed its deadline"), 410),
        (InvalidStateError("hold is released"), 409),
        (StoreUnavailableError("database is locked"), 503),
    ],
)
def test_engine_errors_map_to_http_status(tmp_path, monkeypatch, error, expected_status):
    client, _ = _build_test_client(tmp_path)
    with client:
        service = client.app.state.reservation_service

        def _raise(*_args, **_kwargs):
            raise error

        monkeypatch.setattr(service, "convert", _raise)
        response = client.post(
            "/reservations/any-id/convert",
            json={"proposal_id": "P1"},
            headers=_vendor("V1"),
        )

    assert response.status_code == expected_status
    assert response.json()["detail"] == str(error)
