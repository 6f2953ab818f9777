"""
Integration tests for the Loan Back Office API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from loan_backoffice.config import BackOfficeConfig
from loan_backoffice.storage import InMemoryStorage
from loan_backoffice.system import LoanBackOffice
from loan_backoffice.api import create_app


DOCUMENTS = {
    "sponsor1_doc": {"filename": "s1.pdf", "path": "/uploads/s1.pdf"},
    "sponsor2_doc": {"filename": "s2.pdf", "path": "/uploads/s2.pdf"},
    "terms_doc": {"filename": "terms.pdf", "path": "/uploads/terms.pdf", "content_type": "application/pdf"},
}


def application_payload(**overrides):
    payload = {
        "applicant_name": "Asha Mwinyi",
        "national_id": "AB-123",
        "loan_amount": "1200000",
        "term_months": 12,
        "interest_rate": "12",
        "employment_status": "Entrepreneur",
        "repayment_mode": "monthly",
        "sponsor1_name": "Juma Ally",
        "sponsor1_id": "SP-1",
        "sponsor2_name": "Neema Said",
        "sponsor2_id": "SP-2",
        "documents": DOCUMENTS,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def backoffice():
    return LoanBackOffice(storage=InMemoryStorage(), config=BackOfficeConfig(database_url="memory://"))


@pytest.fixture
def client(backoffice):
    """Test client bound to an in-memory back office"""
    return TestClient(create_app(backoffice))


def submit_and_approve(client, **overrides):
    r = client.post("/loan-applications", json=application_payload(**overrides))
    assert r.status_code == 201
    application_id = r.json()["id"]
    r = client.put(f"/loan-applications/{application_id}/status",
                   json={"status": "approved", "decision_date": "2024-01-01"},
                   headers={"X-Actor-Id": "approver-1"})
    assert r.status_code == 200
    return application_id


class TestHealthEndpoint:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestApplicationEndpoints:
    """Loan application workflow over HTTP"""

    def test_submit_and_fetch(self, client):
        r = client.post("/loan-applications", json=application_payload(), headers={"X-Actor-Id": "7"})
        assert r.status_code == 201
        application_id = r.json()["id"]
        assert r.json()["status"] == "pending"

        r = client.get(f"/loan-applications/{application_id}")
        assert r.status_code == 200
        data = r.json()
        assert data["applicant_name"] == "Asha Mwinyi"
        assert data["loan_amount"] == {"amount": "1200000.00", "currency": "TZS"}
        assert set(data["documents"]) == {"sponsor1_doc", "sponsor2_doc", "terms_doc"}
        assert data["installments"] == []

    def test_submit_reports_every_problem(self, client):
        r = client.post("/loan-applications", json={"applicant_name": "Only Name"})
        assert r.status_code == 400
        problems = r.json()["detail"]["problems"]
        assert "missing field: national_id" in problems
        assert "missing document: terms_doc" in problems

    def test_duplicate_national_id(self, client):
        client.post("/loan-applications", json=application_payload())
        r = client.post("/loan-applications", json=application_payload(applicant_name="Other"))
        assert r.status_code == 409

    def test_list_applications(self, client):
        client.post("/loan-applications", json=application_payload())
        client.post("/loan-applications", json=application_payload(national_id="CD-456"))

        r = client.get("/loan-applications")
        assert r.json()["count"] == 2
        assert r.json()["applications"][0]["national_id"] == "CD-456"

        assert client.get("/loan-applications", params={"status": "approved"}).json()["count"] == 0
        assert client.get("/loan-applications", params={"status": "lost"}).status_code == 400

    def test_schedule_preview(self, client):
        r = client.post("/loan-applications", json=application_payload())
        application_id = r.json()["id"]

        r = client.get(f"/loan-applications/{application_id}/schedule", params={"anchor_date": "2024-01-01"})
        assert r.status_code == 200
        schedule = r.json()["schedule"]
        assert len(schedule) == 12
        assert schedule[0] == {
            "sequence": 1,
            "due_date": "2024-02-01",
            "amount": "244000.00",
            "principal_component": "100000.00",
            "interest_component": "144000.00",
            "running_balance": "1100000.00",
        }

    def test_approve_then_approve_again(self, client):
        application_id = submit_and_approve(client)

        r = client.get(f"/loan-applications/{application_id}")
        assert len(r.json()["installments"]) == 12
        assert r.json()["approved_on"] == "2024-01-01"

        r = client.put(f"/loan-applications/{application_id}/status", json={"status": "approved"})
        assert r.status_code == 409

    def test_invalid_status(self, client):
        r = client.post("/loan-applications", json=application_payload())
        r = client.put(f"/loan-applications/{r.json()['id']}/status", json={"status": "maybe"})
        assert r.status_code == 400

    def test_unknown_application(self, client):
        assert client.get("/loan-applications/999").status_code == 404
        assert client.put("/loan-applications/999/status", json={"status": "approved"}).status_code == 404
        assert client.delete("/loan-applications/999").status_code == 404

    def test_delete(self, client):
        application_id = submit_and_approve(client)

        r = client.delete(f"/loan-applications/{application_id}")
        assert r.status_code == 200
        assert client.get(f"/loan-applications/{application_id}").status_code == 404
        assert client.get("/cash-flow").json()["transactions"] == []

    def test_actor_recorded_in_audit(self, client, backoffice):
        submit_and_approve(client)
        events = backoffice.audit_trail.get_all_events()
        assert events[-1].actor_id == "approver-1"


class TestCashFlowEndpoints:
    """Manual ledger entries over HTTP"""

    def test_create_update_delete(self, client):
        r = client.post("/cash-flow", json={
            "type": "expense", "amount": "1500", "description": "Printer ink", "date": "2024-03-02"
        })
        assert r.status_code == 201
        entry_id = r.json()["id"]

        r = client.put(f"/cash-flow/{entry_id}", json={"amount": "1750.5"})
        assert r.status_code == 200
        assert r.json()["amount"] == "1750.50"

        r = client.delete(f"/cash-flow/{entry_id}")
        assert r.status_code == 200
        assert client.get("/cash-flow").json()["transactions"] == []

    def test_validation(self, client):
        r = client.post("/cash-flow", json={"type": "gift", "amount": "10", "description": "x", "date": "2024-01-01"})
        assert r.status_code == 400
        r = client.post("/cash-flow", json={"type": "income"})
        assert r.status_code == 400

    def test_system_entries_forbidden(self, client):
        submit_and_approve(client)
        disbursement = client.get("/cash-flow").json()["transactions"][0]
        assert disbursement["type"] == "loan_disbursement"

        assert client.put(f"/cash-flow/{disbursement['id']}", json={"amount": "1"}).status_code == 403
        assert client.delete(f"/cash-flow/{disbursement['id']}").status_code == 403

    def test_unknown_entry(self, client):
        assert client.put("/cash-flow/77", json={"amount": "1"}).status_code == 404


class TestRepaymentEndpoints:
    """Installment settlement over HTTP"""

    def test_list_and_pay(self, client):
        submit_and_approve(client)

        r = client.get("/repayments")
        assert r.status_code == 200
        repayments = r.json()["repayments"]
        assert len(repayments) == 12
        assert repayments[0]["applicant_name"] == "Asha Mwinyi"
        assert r.json()["summary"]["total_due"]["amount"] == "2928000.00"

        installment_id = repayments[0]["id"]
        r = client.post(f"/repayments/{installment_id}/pay", json={"paid_date": "2024-02-03"})
        assert r.status_code == 200
        assert r.json()["paid"] is True
        assert r.json()["paid_date"] == "2024-02-03"
        assert r.json()["applicant_name"] == "Asha Mwinyi"
        assert r.json()["total_loan"] == "1200000.00"
        assert r.json()["amount_paid"] == "244000.00"

        r = client.post(f"/repayments/{installment_id}/pay")
        assert r.status_code == 400

        repayment_entries = [t for t in client.get("/cash-flow").json()["transactions"]
                             if t["type"] == "loan_repayment"]
        assert len(repayment_entries) == 1
        assert repayment_entries[0]["date"] == "2024-02-03"

    def test_pay_unknown_installment(self, client):
        assert client.post("/repayments/5/pay").status_code == 404

    def test_put_still_accepted(self, client):
        submit_and_approve(client)
        installment_id = client.get("/repayments").json()["repayments"][0]["id"]

        r = client.put(f"/repayments/{installment_id}/pay", json={"paid_date": "2024-02-03"})
        assert r.status_code == 200
        assert r.json()["amount_paid"] == "244000.00"

    def test_due_soon_window_parameter(self, client):
        submit_and_approve(client)
        r = client.get("/repayments", params={"due_soon_days": 7})
        assert r.json()["summary"]["due_soon_days"] == 7
        assert client.get("/repayments", params={"due_soon_days": -1}).status_code == 400


class TestReportEndpoints:
    """Dashboard and reports over HTTP"""

    def test_dashboard(self, client):
        submit_and_approve(client)
        r = client.get("/dashboard")
        assert r.status_code == 200
        data = r.json()
        assert data["total_applications"] == 1
        assert data["total_expenses"]["amount"] == "1200000.00"
        assert len(data["recent_transactions"]) == 1

    def test_cash_flow_report(self, client):
        submit_and_approve(client)
        r = client.get("/reports/cash-flow", params={
            "startDate": "2024-01-01", "endDate": "2024-01-31", "sortBy": "nonsense", "sortOrder": "desc"
        })
        assert r.status_code == 200
        data = r.json()
        assert data["sort_by"] == "date"
        assert data["sort_order"] == "desc"
        assert data["data"] == [{"date": "2024-01-01", "income": "0", "expense": "1200000.00"}]

    def test_cash_flow_report_requires_dates(self, client):
        assert client.get("/reports/cash-flow", params={"startDate": "2024-01-01"}).status_code == 400

    def test_loan_status_report(self, client):
        submit_and_approve(client)
        client.post("/loan-applications", json=application_payload(national_id="ZZ-9"))

        r = client.get("/reports/loan-applications")
        assert r.json()["data"] == [{"status": "approved", "count": 1}, {"status": "pending", "count": 1}]

    def test_loan_repayment_report(self, client):
        submit_and_approve(client)
        r = client.get("/reports/loan-repayments", params={"sortBy": "loan_id", "sortOrder": "asc"})
        row = r.json()["data"][0]
        assert row["total_installments"] == 12
        assert row["remaining_amount"] == "2928000.00"
