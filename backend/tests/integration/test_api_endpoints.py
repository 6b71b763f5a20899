"""
Integration tests for the HTTP API.

Tests request validation, the mapping of scheduling errors to status codes,
and the main booking flow through the FastAPI application.
"""

from datetime import timedelta

from services.resource_service import ResourceService

from conftest import CLINIC_ID, MONDAY

BASE = f"/api/clinics/{CLINIC_ID}"


def iso(hour: int, minute: int = 0, days: int = 0) -> str:
    return (MONDAY + timedelta(days=days, hours=hour, minutes=minute)).isoformat()


def booking_body(setup, hour=9, **extra):
    body = {"procedure_id": setup["surgery"].id, "start_time": iso(hour)}
    body.update(extra)
    return body


class TestHealth:
    """Test service endpoints."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestErrorMapping:
    """Test that scheduling errors reach clients with the right status."""

    def test_unknown_appointment_is_404(self, client):
        response = client.get(f"{BASE}/appointments/999")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["details"] == {"entity": "Appointment", "id": 999}

    def test_missing_booking_target_is_422(self, client, surgery_setup):
        response = client.post(f"{BASE}/appointments", json={"procedure_id": surgery_setup["surgery"].id})

        assert response.status_code == 422

    def test_invalid_recurrence_is_422(self, client, surgery_setup):
        response = client.post(
            f"{BASE}/resources/{surgery_setup['dr_chen'].id}/availability",
            json={
                "start_time": iso(9),
                "end_time": iso(17),
                "recurrence_pattern": {"type": "weekly", "days_of_week": ["funday"]},
            },
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_insufficient_stock_is_409(self, client, db_session, surgery_setup):
        ResourceService.adjust_inventory(db_session, CLINIC_ID, surgery_setup["botox"].id, -5)

        response = client.post(f"{BASE}/appointments", json=booking_body(surgery_setup))

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "insufficient_inventory"
        assert body["details"]["available"] == 0


class TestBookingFlow:
    """Test searching, booking and cancelling over HTTP."""

    def test_search_slots(self, client, surgery_setup):
        response = client.post(f"{BASE}/slots/search", json={
            "procedure_id": surgery_setup["surgery"].id,
            "range_start": iso(9),
            "range_end": iso(11),
            "granularity_minutes": 30,
        })

        assert response.status_code == 200
        candidates = response.json()["candidates"]
        assert [c["start_time"] for c in candidates] == [iso(9), iso(9, 30), iso(10)]
        assert len(candidates[0]["assignments"]) == 3

    def test_book_and_cancel(self, client, surgery_setup):
        response = client.post(f"{BASE}/appointments", json=booking_body(surgery_setup, contact_id=5))

        assert response.status_code == 201
        appointment = response.json()
        assert appointment["status"] == "scheduled"
        assert appointment["contact_id"] == 5
        assert appointment["start_time"] == iso(9)
        assert len(appointment["resources"]) == 3

        response = client.post(f"{BASE}/appointments/{appointment['id']}/cancel", json={"reason": "sick"})

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "sick"

        details = client.get(f"{BASE}/appointments/{appointment['id']}").json()
        assert details["slot"]["status"] == "available"
        assert details["procedure_name"] == "Surgery"

    def test_conflict_carries_alternatives(self, client, surgery_setup):
        preference = {
            "role_id": surgery_setup["roles"]["surgeon"].id,
            "resource_id": surgery_setup["dr_chen"].id,
            "preference_type": "required",
        }
        first = client.post(f"{BASE}/appointments", json=booking_body(surgery_setup, preferences=[preference]))
        assert first.status_code == 201

        response = client.post(f"{BASE}/appointments", json=booking_body(surgery_setup, preferences=[preference]))

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "conflict"
        assert body["conflicts"][0]["reason"] == "required_preference_unavailable"
        assert iso(10) in [a["start_time"] for a in body["alternatives"]]

    def test_lifecycle_endpoints(self, client, surgery_setup):
        appointment_id = client.post(f"{BASE}/appointments", json=booking_body(surgery_setup)).json()["id"]

        for action, status in [
            ("confirm", "confirmed"), ("check-in", "checked_in"), ("start", "in_progress"), ("complete", "completed")
        ]:
            response = client.post(f"{BASE}/appointments/{appointment_id}/{action}")
            assert response.status_code == 200
            assert response.json()["status"] == status

        response = client.post(f"{BASE}/appointments/{appointment_id}/cancel", json={})
        assert response.status_code == 422

    def test_other_clinic_sees_nothing(self, client, surgery_setup):
        appointment_id = client.post(f"{BASE}/appointments", json=booking_body(surgery_setup)).json()["id"]

        response = client.get(f"/api/clinics/2/appointments/{appointment_id}")

        assert response.status_code == 404
        assert client.get("/api/clinics/2/appointments").json() == {"appointments": []}


class TestProcedureEndpoints:
    """Test composite procedure editing over HTTP."""

    def build_assessment(self, client):
        ids = {}
        for code, duration in [("prep", 15), ("scan", 30)]:
            body = {"code": code, "name": code.title(), "duration_minutes": duration}
            ids[code] = client.post(f"{BASE}/procedures", json=body).json()["id"]
        body = {"code": "assessment", "name": "Assessment", "procedure_type": "composite"}
        ids["assessment"] = client.post(f"{BASE}/procedures", json=body).json()["id"]
        client.post(f"{BASE}/procedures/{ids['assessment']}/children",
                    json={"child_procedure_id": ids["prep"], "gap_after_minutes": 5})
        details = client.post(f"{BASE}/procedures/{ids['assessment']}/children",
                              json={"child_procedure_id": ids["scan"]}).json()
        return ids, [child["composition_id"] for child in details["children"]]

    def test_reorder_children(self, client):
        ids, (prep_link, scan_link) = self.build_assessment(client)

        response = client.put(f"{BASE}/procedures/{ids['assessment']}/children/order", json={"children": [
            {"composition_id": prep_link, "sequence_order": 2},
            {"composition_id": scan_link, "sequence_order": 1},
        ]})

        assert response.status_code == 200
        children = response.json()["children"]
        assert [c["child_procedure_id"] for c in children] == [ids["scan"], ids["prep"]]
        assert [c["gap_after_minutes"] for c in children] == [0, 5]

    def test_reorder_children_rejects_listing_a_child_twice(self, client):
        ids, (prep_link, _) = self.build_assessment(client)

        response = client.put(f"{BASE}/procedures/{ids['assessment']}/children/order", json={"children": [
            {"composition_id": prep_link, "sequence_order": 3},
            {"composition_id": prep_link, "sequence_order": 4},
        ]})

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
