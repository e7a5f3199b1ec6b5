"""Integration tests for API endpoints"""

import uuid
from fastapi.testclient import TestClient
from clinic_ledger.infrastructure.database.models import NotificationRecord

ADMIN_HEADERS = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
RECEPTIONIST_HEADERS = {"X-User-Id": "desk-1", "X-User-Role": "receptionist"}
DOCTOR_HEADERS = {"X-User-Id": "doc-1", "X-User-Role": "doctor"}


def _create_plan(client: TestClient, patient_id, **overrides):
    body = {
        "patient_id": str(patient_id),
        "type": "fixed",
        "total_amount": "300.00",
        "amount_per_installment": "100.00",
        "payment_frequency": "monthly",
        "treatment_types": ["Braces"],
        "note": "adjust monthly",
    }
    body.update(overrides)
    return client.post("/v1/plans", json=body, headers=RECEPTIONIST_HEADERS)


def _pay(client: TestClient, patient_id, plan_id=None, amount="100.00", **overrides):
    body = {
        "patient_id": str(patient_id),
        "payment_plan_id": str(plan_id) if plan_id else None,
        "amount": amount,
        "method": "momo",
    }
    body.update(overrides)
    return client.post("/v1/payments", json=body, headers=RECEPTIONIST_HEADERS)


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "clinic_payments_recorded_total" in response.text


def test_request_id_header(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_missing_identity_rejected(client: TestClient, patient):
    response = client.get(f"/v1/patients/{patient.id}/plan")
    assert response.status_code == 401


def test_create_and_get_plan(client: TestClient, patient):
    response = _create_plan(client, patient.id)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "activated"
    assert data["total_amount_minor"] == 30000
    assert data["total_amount"] == "300.00"
    assert data["notes"] == "Braces - adjust monthly"
    assert data["treatment_types"] == ["Braces"]
    assert data["outstanding_balance"] == "300.00"

    fetched = client.get(f"/v1/plans/{data['plan_id']}", headers=RECEPTIONIST_HEADERS)
    assert fetched.status_code == 200
    by_patient = client.get(f"/v1/patients/{patient.id}/plan", headers=RECEPTIONIST_HEADERS)
    assert by_patient.json()["plan_id"] == data["plan_id"]


def test_create_flexible_plan(client: TestClient, patient):
    response = _create_plan(client, patient.id, type="flexible", amount_per_installment=None, payment_frequency=None)
    assert response.status_code == 201
    assert response.json()["status"] == "outstanding"


def test_duplicate_plan_conflict(client: TestClient, patient):
    assert _create_plan(client, patient.id).status_code == 201
    assert _create_plan(client, patient.id).status_code == 409


def test_invalid_plan_terms(client: TestClient, patient):
    assert _create_plan(client, patient.id, total_amount="abc").status_code == 422
    assert _create_plan(client, patient.id, total_amount="0").status_code == 422
    assert _create_plan(client, patient.id, payment_frequency=None).status_code == 422
    assert _create_plan(client, patient.id, total_amount="1e20").status_code == 422


def test_plan_not_found(client: TestClient, patient):
    assert client.get(f"/v1/plans/{uuid.uuid4()}", headers=ADMIN_HEADERS).status_code == 404
    assert client.get(f"/v1/patients/{patient.id}/plan", headers=ADMIN_HEADERS).status_code == 404


def test_locked_plan_edit(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]

    locked = client.patch(f"/v1/plans/{plan_id}", json={"total_amount": "999.00"}, headers=RECEPTIONIST_HEADERS)
    assert locked.status_code == 423
    assert "administrators" in locked.json()["detail"]

    edited = client.patch(
        f"/v1/plans/{plan_id}", json={"total_amount": "400.00", "note": "new wire"}, headers=ADMIN_HEADERS
    )
    assert edited.status_code == 200
    assert edited.json()["total_amount_minor"] == 40000
    assert edited.json()["notes"] == "Braces - new wire"
    assert edited.json()["note"] == "new wire"


def test_pause_resume(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]

    assert client.post(f"/v1/plans/{plan_id}/pause", headers=RECEPTIONIST_HEADERS).json()["status"] == "paused"
    assert client.post(f"/v1/plans/{plan_id}/pause", headers=RECEPTIONIST_HEADERS).status_code == 200
    assert client.post(f"/v1/plans/{plan_id}/resume", headers=RECEPTIONIST_HEADERS).json()["status"] == "activated"


def test_record_payment_and_balance(client: TestClient, gateway, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]

    response = _pay(client, patient.id, plan_id, send_notification=True)

    assert response.status_code == 201
    data = response.json()
    assert data["amount_minor"] == 10000
    assert data["balance_minor"] == 20000
    assert data["balance"] == "200.00"
    assert data["overpaid"] is False
    assert data["notification_error"] is None
    assert len(gateway.sent_payloads) == 1

    balance = client.get(f"/v1/plans/{plan_id}/balance", headers=RECEPTIONIST_HEADERS).json()
    assert balance["outstanding_balance_minor"] == 20000
    assert balance["total_paid_minor"] == 10000


def test_overpayment_surfaced(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]

    data = _pay(client, patient.id, plan_id, amount="350.00").json()

    assert data["balance"] == "-50.00"
    assert data["overpaid"] is True
    plan = client.get(f"/v1/plans/{plan_id}", headers=RECEPTIONIST_HEADERS).json()
    assert plan["status"] == "completed"
    assert plan["stored_status"] == "activated"


def test_payment_amount_validation(client: TestClient, patient):
    assert _pay(client, patient.id, amount="0").status_code == 422
    assert _pay(client, patient.id, amount="-10").status_code == 422
    assert _pay(client, patient.id, amount="ten").status_code == 422
    assert _pay(client, patient.id, amount="1e30").status_code == 422
    assert _pay(client, patient.id, amount="1e20").status_code == 422


def test_payment_for_unknown_plan(client: TestClient, patient):
    assert _pay(client, patient.id, uuid.uuid4()).status_code == 404


def test_doctor_cannot_record_payments(client: TestClient, patient):
    body = {"patient_id": str(patient.id), "amount": "10.00", "method": "cash"}
    assert client.post("/v1/payments", json=body, headers=DOCTOR_HEADERS).status_code == 403


def test_gateway_failure_returns_created_payment(client: TestClient, db, gateway, patient):
    gateway.status_code = 500

    response = _pay(client, patient.id, send_notification=True)

    assert response.status_code == 201
    assert response.json()["notification_error"]
    assert db.query(NotificationRecord).filter_by(status="failed").count() == 1


def test_list_and_correct_payments(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]
    payment_id = _pay(client, patient.id, plan_id).json()["payment_id"]

    listed = client.get("/v1/payments", params={"patient_id": str(patient.id)}, headers=RECEPTIONIST_HEADERS)
    assert [p["payment_id"] for p in listed.json()["payments"]] == [payment_id]

    patch = {"status": "refunded"}
    assert client.patch(f"/v1/payments/{payment_id}", json=patch, headers=RECEPTIONIST_HEADERS).status_code == 403
    corrected = client.patch(f"/v1/payments/{payment_id}", json=patch, headers=ADMIN_HEADERS)
    assert corrected.json()["status"] == "refunded"
    assert corrected.json()["balance_minor"] == 20000

    assert client.delete(f"/v1/payments/{payment_id}", headers=RECEPTIONIST_HEADERS).status_code == 403
    assert client.delete(f"/v1/payments/{payment_id}", headers=ADMIN_HEADERS).status_code == 204


def test_delete_plan(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]
    payment_id = _pay(client, patient.id, plan_id).json()["payment_id"]

    assert client.delete(f"/v1/plans/{plan_id}", headers=RECEPTIONIST_HEADERS).status_code == 403
    assert client.delete(f"/v1/plans/{plan_id}", headers=ADMIN_HEADERS).status_code == 204
    assert client.get(f"/v1/plans/{plan_id}", headers=ADMIN_HEADERS).status_code == 404

    payments = client.get("/v1/payments", headers=ADMIN_HEADERS).json()["payments"]
    assert payments[0]["payment_id"] == payment_id
    assert payments[0]["payment_plan_id"] is None


def test_receipt_endpoints(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]
    payment_id = _pay(client, patient.id, plan_id, treatment_types=["Scaling"], note="first visit").json()["payment_id"]

    receipt = client.get(f"/v1/payments/{payment_id}/receipt", headers=RECEPTIONIST_HEADERS).json()
    assert receipt["payment_type"] == "plan"
    assert receipt["payment_for"] == "Scaling"
    assert receipt["notes"] == "first visit"
    assert receipt["balance"] == "200.00"
    assert receipt["total_amount"] == "300.00"
    assert receipt["currency"] == "GHS"

    printed = client.get(f"/v1/payments/{payment_id}/receipt/print", headers=RECEPTIONIST_HEADERS)
    assert printed.status_code == 200
    assert printed.headers["content-type"].startswith("text/plain")
    assert "GHS 200.00" in printed.text
    assert "PAYMENT RECEIPT" in printed.text


def test_dashboard_lists(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]

    outstanding = client.get("/v1/plans/outstanding", headers=RECEPTIONIST_HEADERS).json()["plans"]
    assert [p["plan_id"] for p in outstanding] == [plan_id]
    assert outstanding[0]["patient_name"] == "Ama Mensah"

    # Plan started just now, nothing is due yet
    assert client.get("/v1/plans/overdue", headers=RECEPTIONIST_HEADERS).json()["plans"] == []
    refreshed = client.post("/v1/plans/overdue/refresh", headers=RECEPTIONIST_HEADERS).json()
    assert refreshed == {"marked_overdue": 0, "cleared": 0}


def test_notifications_retry_flow(client: TestClient, gateway, patient):
    gateway.status_code = 500
    _pay(client, patient.id, send_notification=True)

    failed = client.get("/v1/notifications/failed", headers=RECEPTIONIST_HEADERS).json()["messages"]
    assert len(failed) == 1
    record_id = failed[0]["id"]

    assert client.post(f"/v1/notifications/{record_id}/retry", headers=RECEPTIONIST_HEADERS).status_code == 502

    gateway.status_code = 200
    retried = client.post(f"/v1/notifications/{record_id}/retry", headers=RECEPTIONIST_HEADERS)
    assert retried.status_code == 200
    assert retried.json()["status"] == "sent"
    assert retried.json()["id"] != record_id

    again = client.post(f"/v1/notifications/{record_id}/retry", headers=RECEPTIONIST_HEADERS)
    assert again.status_code == 404

    statuses = {m["id"]: m["status"] for m in client.get("/v1/notifications", headers=ADMIN_HEADERS).json()["messages"]}
    assert statuses[record_id] == "retried"


def test_bulk_sms(client: TestClient, gateway, patient):
    body = {
        "recipients": [
            {"phone": "0241111111", "message": "Clinic closed Friday", "patient_id": str(patient.id)},
            {"phone": "0242222222", "message": "Clinic closed Friday"},
        ]
    }

    response = client.post("/v1/notifications/bulk", json=body, headers=RECEPTIONIST_HEADERS)

    assert response.status_code == 200
    assert response.json()["sent"] == 2
    assert {m["type"] for m in response.json()["messages"]} == {"bulk"}
    sent_to = [r["To"] for r in gateway.sent_payloads[0]["personalizedRecipients"]]
    assert sent_to == ["233241111111", "233242222222"]

    assert client.post("/v1/notifications/bulk", json=body, headers=DOCTOR_HEADERS).status_code == 403


def test_bulk_sms_gateway_down(client: TestClient, gateway):
    gateway.status_code = 503
    body = {"recipients": [{"phone": "0241111111", "message": "Hi"}]}
    assert client.post("/v1/notifications/bulk", json=body, headers=RECEPTIONIST_HEADERS).status_code == 502


def test_message_status_passthrough(client: TestClient):
    response = client.get("/v1/notifications/status/msg-42", headers=RECEPTIONIST_HEADERS)
    assert response.status_code == 200
    assert response.json() == {"messageId": "msg-42", "status": "Delivered"}


def test_payment_reminder(client: TestClient, db, gateway, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]
    _pay(client, patient.id, plan_id)

    response = client.post(f"/v1/plans/{plan_id}/reminder", headers=RECEPTIONIST_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["amount_due_minor"] == 20000
    assert data["amount_due"] == "200.00"
    assert data["message"]["type"] == "payment_reminder"
    assert data["message"]["status"] == "sent"
    assert "GHS 200.00" in gateway.sent_payloads[-1]["personalizedRecipients"][0]["Content"]


def test_payment_reminder_failures(client: TestClient, db, gateway, patient, patient_without_phone):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]
    assert client.post(f"/v1/plans/{plan_id}/reminder", headers=DOCTOR_HEADERS).status_code == 403
    assert client.post(f"/v1/plans/{uuid.uuid4()}/reminder", headers=RECEPTIONIST_HEADERS).status_code == 404

    no_phone = _create_plan(client, patient_without_phone.id).json()["plan_id"]
    assert client.post(f"/v1/plans/{no_phone}/reminder", headers=RECEPTIONIST_HEADERS).status_code == 404

    gateway.status_code = 500
    assert client.post(f"/v1/plans/{plan_id}/reminder", headers=RECEPTIONIST_HEADERS).status_code == 502
    failed = db.query(NotificationRecord).filter_by(status="failed").one()
    assert failed.type == "payment_reminder"


def test_payment_reminder_for_settled_plan(client: TestClient, patient):
    plan_id = _create_plan(client, patient.id).json()["plan_id"]
    _pay(client, patient.id, plan_id, amount="300.00")

    assert client.post(f"/v1/plans/{plan_id}/reminder", headers=RECEPTIONIST_HEADERS).status_code == 409


def test_plan_template_crud(client: TestClient, patient):
    body = {
        "name": "Orthodontics",
        "total_amount": "1200.00",
        "amount_per_installment": "200.00",
        "payment_frequency": "biweekly",
        "is_default": True,
    }
    assert client.post("/v1/plan-templates", json=body, headers=RECEPTIONIST_HEADERS).status_code == 403
    assert client.get("/v1/plan-templates/default", headers=RECEPTIONIST_HEADERS).json() is None

    created = client.post("/v1/plan-templates", json=body, headers=ADMIN_HEADERS)
    assert created.status_code == 201
    template = created.json()
    assert template["total_amount_minor"] == 120000
    assert template["amount_per_installment"] == "200.00"
    template_id = template["template_id"]

    listed = client.get("/v1/plan-templates", headers=RECEPTIONIST_HEADERS).json()["templates"]
    assert [t["template_id"] for t in listed] == [template_id]
    assert client.get("/v1/plan-templates/default", headers=RECEPTIONIST_HEADERS).json()["template_id"] == template_id

    patched = client.patch(
        f"/v1/plan-templates/{template_id}", json={"total_amount": "1500.00"}, headers=ADMIN_HEADERS
    )
    assert patched.status_code == 200
    assert patched.json()["total_amount"] == "1500.00"
    assert patched.json()["name"] == "Orthodontics"

    plan = client.post(
        "/v1/plans", json={"patient_id": str(patient.id), "template_id": template_id}, headers=RECEPTIONIST_HEADERS
    )
    assert plan.status_code == 201
    assert plan.json()["total_amount_minor"] == 150000

    assert client.delete(f"/v1/plan-templates/{template_id}", headers=RECEPTIONIST_HEADERS).status_code == 403
    assert client.delete(f"/v1/plan-templates/{template_id}", headers=ADMIN_HEADERS).status_code == 204
    assert client.get(f"/v1/plan-templates/{template_id}", headers=ADMIN_HEADERS).status_code == 404
    assert client.get(f"/v1/plans/{plan.json()['plan_id']}", headers=ADMIN_HEADERS).status_code == 200


def test_plan_template_validation(client: TestClient):
    body = {
        "name": "Scaling",
        "total_amount": "0",
        "amount_per_installment": "50.00",
        "payment_frequency": "weekly",
    }
    assert client.post("/v1/plan-templates", json=body, headers=ADMIN_HEADERS).status_code == 422
    body["total_amount"] = "1e20"
    assert client.post("/v1/plan-templates", json=body, headers=ADMIN_HEADERS).status_code == 422
