"""
Integration tests for the Namma Paisa Loans API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

import namma_paisa.api.dependencies as dependencies
from namma_paisa.api import app
from namma_paisa.api.dependencies import PaisaSystem, create_access_token
from namma_paisa.config import get_config
from namma_paisa.context import Role


LOAN = {
    "loanType": "PERSONAL_LOAN",
    "institution": "Canara Bank",
    "accountHolderName": "Asha",
    "principalAmount": 12000,
    "interestRate": 0,
    "tenure": 12,
    "emiAmount": 1000,
    "startDate": "2024-01-15",
}

PAYMENT = {
    "paidAmount": 1000,
    "paidDate": "2024-01-15",
    "paymentMethod": "UPI",
}


def _use_system(auth_enabled: bool):
    config = get_config()
    original_system = dependencies.paisa_system
    original_auth_enabled = config.auth_enabled

    dependencies.paisa_system = PaisaSystem("memory")  # Use in-memory storage for tests
    config.auth_enabled = auth_enabled
    return original_system, original_auth_enabled


def _restore(original_system, original_auth_enabled):
    dependencies.paisa_system = original_system
    get_config().auth_enabled = original_auth_enabled


@pytest.fixture
def client():
    """Test client with auth disabled; every call runs as the dev user"""
    originals = _use_system(auth_enabled=False)
    yield TestClient(app)
    _restore(*originals)


@pytest.fixture
def auth_client():
    """Test client that requires bearer tokens"""
    originals = _use_system(auth_enabled=True)
    yield TestClient(app)
    _restore(*originals)


def bearer(user_id: str, *roles: Role) -> dict:
    token = create_access_token(user_id, roles or (Role.CUSTOMER,))
    return {"Authorization": f"Bearer {token}"}


def create_loan(client, headers=None, **overrides) -> dict:
    r = client.post("/loans", json={**LOAN, **overrides}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


class TestHealthEndpoints:
    """Test basic health endpoints"""

    def test_health(self, client):
        """Test health endpoint"""
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["service"] == "namma_paisa_loans"

    def test_unknown_route_uses_error_shape(self, client):
        """Test unknown routes answer with the error body"""
        r = client.get("/nowhere")
        assert r.status_code == 404
        assert "error" in r.json()


class TestLoanFlow:
    """End-to-end loan management tests"""

    def test_create_loan_generates_schedule(self, client):
        """Test creating a loan returns its full EMI schedule"""
        data = create_loan(client)
        assert data["userId"] == "dev_user"
        assert data["currentOutstanding"] == 12000
        assert data["totalPaid"] == 0
        assert len(data["emis"]) == 12
        assert data["emis"][0]["dueDate"] == "2024-01-15"
        assert data["emis"][-1]["dueDate"] == "2024-12-15"
        assert data["goldItems"] == []

    def test_create_accepts_timestamp_start_date(self, client):
        """Test a timestamp start date is reduced to its calendar date"""
        data = create_loan(client, startDate="2024-03-31T00:00:00.000Z", tenure=2, emiAmount=None,
                           principalAmount=2000)
        assert data["startDate"] == "2024-03-31"
        assert [e["dueDate"] for e in data["emis"]] == ["2024-03-31", "2024-04-30"]
        assert data["emiAmount"] == 1000

    def test_gold_loan_items(self, client):
        """Test gold items are stored with a gold loan"""
        data = create_loan(client, loanType="GOLD_LOAN", goldItems=[{
            "title": "Bangle",
            "carat": 22,
            "quantity": 2,
            "grossWeight": 24.5,
            "netWeight": 23.1,
            "loanAmount": 12000,
        }])
        assert len(data["goldItems"]) == 1
        assert data["goldItems"][0]["netWeight"] == 23.1

    def test_list_and_get(self, client):
        """Test listing shows the next EMIs and detail shows all of them"""
        loan = create_loan(client)
        r = client.get("/loans")
        assert r.status_code == 200
        listed = r.json()
        assert [l["id"] for l in listed] == [loan["id"]]
        assert len(listed[0]["emis"]) == 3

        r = client.get(f"/loans/{loan['id']}")
        assert r.status_code == 200
        assert len(r.json()["emis"]) == 12

    def test_missing_loan(self, client):
        """Test an unknown loan id returns 404"""
        r = client.get("/loans/does-not-exist")
        assert r.status_code == 404
        assert r.json() == {"error": "Loan not found"}

    def test_update_regenerates_unpaid_emis(self, client):
        """Test a start date change rebuilds the unpaid EMIs"""
        loan = create_loan(client)
        r = client.put(f"/loans/{loan['id']}", json={
            **LOAN, "startDate": "2024-02-15", "tenure": 6, "emiAmount": 2000
        })
        assert r.status_code == 200
        data = r.json()
        assert len(data["emis"]) == 6
        assert data["emis"][0]["dueDate"] == "2024-02-15"
        assert all(e["emiAmount"] == 2000 for e in data["emis"])

    def test_update_without_schedule_change_keeps_emis(self, client):
        """Test scalar edits leave the EMI rows alone"""
        loan = create_loan(client)
        r = client.put(f"/loans/{loan['id']}", json={**LOAN, "institution": "Canara"})
        assert r.status_code == 200
        data = r.json()
        assert data["institution"] == "Canara"
        assert [e["id"] for e in data["emis"]] == [e["id"] for e in loan["emis"]]

    def test_delete_loan(self, client):
        """Test deleting a loan"""
        loan = create_loan(client)
        r = client.delete(f"/loans/{loan['id']}")
        assert r.status_code == 200
        assert r.json() == {"message": "Loan deleted successfully"}
        assert client.get(f"/loans/{loan['id']}").status_code == 404

    def test_upcoming(self, client):
        """Test upcoming EMIs honour the limit"""
        create_loan(client)
        r = client.get("/loans/upcoming", params={"limit": 2})
        assert r.status_code == 200
        data = r.json()
        assert [e["installmentNumber"] for e in data] == [1, 2]
        assert data[0]["loan"]["institution"] == "Canara Bank"

    def test_upcoming_rejects_negative_limit(self, client):
        """Test a negative upcoming limit is a validation error, not a silent trim"""
        create_loan(client)
        r = client.get("/loans/upcoming", params={"limit": -1})
        assert r.status_code == 400
        assert r.json()["error"].startswith("query.limit:")


class TestPaymentFlow:
    """Paying, editing and reversing EMIs"""

    def test_pay_then_reverse(self, client):
        """Test paying an EMI and deleting the payment again"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]

        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json=PAYMENT)
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Payment recorded successfully!"
        assert data["emi"]["isPaid"]
        assert data["loan"]["currentOutstanding"] == 11000
        assert data["loan"]["totalPaid"] == 1000

        r = client.delete(f"/loans/{loan['id']}/emis/{emi_id}")
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Payment deleted successfully. EMI marked as unpaid."
        assert not data["emi"]["isPaid"]
        assert data["emi"]["paidAmount"] is None
        assert data["loan"]["currentOutstanding"] == 12000
        assert data["loan"]["totalPaid"] == 0

    def test_pay_twice_rejected(self, client):
        """Test paying an already paid EMI is rejected"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]
        client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json=PAYMENT)

        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json=PAYMENT)
        assert r.status_code == 400
        assert r.json() == {"error": "EMI already paid"}

    def test_edit_payment(self, client):
        """Test editing a recorded payment"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]
        client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json=PAYMENT)

        r = client.patch(f"/loans/{loan['id']}/emis/{emi_id}/edit", json={
            **PAYMENT, "paidAmount": 1200, "principalPaid": 1000, "interestPaid": 200
        })
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Payment updated successfully"
        assert data["loan"]["totalPaid"] == 1200
        assert data["loan"]["currentOutstanding"] == 10800

    def test_edit_unpaid_rejected(self, client):
        """Test editing an unpaid EMI is rejected"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]
        r = client.patch(f"/loans/{loan['id']}/emis/{emi_id}/edit", json=PAYMENT)
        assert r.status_code == 400
        assert r.json() == {"error": "Cannot edit unpaid EMI. Use the pay EMI feature instead."}

    def test_paying_every_emi_closes_loan(self, client):
        """Test paying the last EMI closes the loan"""
        loan = create_loan(client, principalAmount=2000, tenure=2, emiAmount=1000)
        messages = []
        for emi in loan["emis"]:
            r = client.post(f"/loans/{loan['id']}/emis/{emi['id']}/pay", json=PAYMENT)
            assert r.status_code == 200
            messages.append(r.json()["message"])
        assert messages[-1] == "Payment recorded and loan closed successfully!"

    def test_validation_error_shape(self, client):
        """Test field validation errors name the field"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]
        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json={**PAYMENT, "paidAmount": -5})
        assert r.status_code == 400
        assert r.json()["error"].startswith("paidAmount:")

    def test_missing_field(self, client):
        """Test a missing required field is reported"""
        body = dict(LOAN)
        del body["institution"]
        r = client.post("/loans", json=body)
        assert r.status_code == 400
        assert r.json() == {"error": "institution: Field required"}


class TestEarlyClosure:
    """Closing a loan before its last EMI"""

    def test_close_once(self, client):
        """Test early closure succeeds once and is then rejected"""
        loan = create_loan(client, principalAmount=3000, tenure=3, emiAmount=1000)
        closure = {**PAYMENT, "paidAmount": 3000, "preclosureCharges": 50}

        r = client.post(f"/loans/{loan['id']}/close", json=closure)
        assert r.status_code == 200
        data = r.json()
        assert data["message"] == "Loan closed successfully!"
        assert data["loan"]["isClosed"]
        assert data["loan"]["currentOutstanding"] == 0
        assert data["loan"]["preclosureCharges"] == 50

        detail = client.get(f"/loans/{loan['id']}").json()
        assert all(e["isPaid"] for e in detail["emis"])

        r = client.post(f"/loans/{loan['id']}/close", json=closure)
        assert r.status_code == 400
        assert r.json() == {"error": "Loan is already closed"}


class TestMonthlySnapshots:
    """Closing and reopening months"""

    def test_closed_month_blocks_payment(self, client):
        """Test payments dated in a closed month are rejected"""
        loan = create_loan(client)
        r = client.post("/monthly-snapshot", json={"year": 2024, "month": 1})
        assert r.status_code == 200
        assert r.json()["isClosed"]

        emi_id = loan["emis"][0]["id"]
        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json={**PAYMENT, "paidDate": "2024-01-20"})
        assert r.status_code == 400
        assert r.json() == {
            "error": "Cannot record this EMI payment in January 2024 - this month has been closed. "
                     "Please select a future month."
        }

        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json={**PAYMENT, "paidDate": "2024-02-01"})
        assert r.status_code == 200

    def test_offset_timestamp_keeps_local_date(self, client):
        """Test a paid timestamp with an offset is read as the date in that offset"""
        loan = create_loan(client)
        client.post("/monthly-snapshot", json={"year": 2024, "month": 1})
        emi_id = loan["emis"][0]["id"]

        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json={
            **PAYMENT, "paidDate": "2024-02-01T01:00:00+05:30"
        })
        assert r.status_code == 200
        assert r.json()["emi"]["paidDate"] == "2024-02-01"

    def test_utc_timestamp_uses_utc_date(self, client):
        """Test a Z timestamp is taken as its UTC calendar date"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]
        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json={
            **PAYMENT, "paidDate": "2024-03-31T18:30:00Z"
        })
        assert r.status_code == 200
        assert r.json()["emi"]["paidDate"] == "2024-03-31"

    def test_malformed_timestamp_rejected(self, client):
        """Test an unparseable timestamp is a validation error"""
        loan = create_loan(client)
        emi_id = loan["emis"][0]["id"]
        r = client.post(f"/loans/{loan['id']}/emis/{emi_id}/pay", json={
            **PAYMENT, "paidDate": "2024-02-01Tnoon-ish"
        })
        assert r.status_code == 400
        assert r.json() == {"error": "paidDate: Invalid date or timestamp"}

    def test_close_month_twice(self, client):
        """Test closing the same month twice"""
        client.post("/monthly-snapshot", json={"year": 2024, "month": 1})
        r = client.post("/monthly-snapshot", json={"year": 2024, "month": 1})
        assert r.status_code == 400
        assert r.json() == {"error": "Month already closed"}

    def test_list_and_current(self, client):
        """Test listing stored snapshots and reading an open month"""
        client.post("/monthly-snapshot", json={"year": 2024, "month": 1})
        r = client.get("/monthly-snapshot")
        assert r.status_code == 200
        assert [(s["year"], s["month"]) for s in r.json()] == [(2024, 1)]

        r = client.get("/monthly-snapshot", params={"year": 2024, "month": 2})
        assert r.status_code == 200
        assert not r.json()["isClosed"]

    def test_reopen_needs_super_admin(self, client):
        """Test customers cannot reopen a month"""
        client.post("/monthly-snapshot", json={"year": 2024, "month": 1})
        r = client.post("/monthly-snapshot/reopen", json={"userId": "dev_user", "year": 2024, "month": 1})
        assert r.status_code == 403


class TestCalculator:
    """EMI calculator endpoint"""

    def test_emi_from_tenure(self, client):
        """Test EMI calculation from a tenure"""
        r = client.post("/calculator/emi", json={
            "principalAmount": 100000, "interestRate": 12, "tenure": 12
        })
        assert r.status_code == 200
        data = r.json()
        assert data["emiAmount"] == 8884.88
        assert data["tenure"] == 12

    def test_needs_tenure_or_emi(self, client):
        """Test the calculator needs a tenure or an EMI"""
        r = client.post("/calculator/emi", json={"principalAmount": 100000, "interestRate": 12})
        assert r.status_code == 400
        assert r.json() == {"error": "Either tenure or EMI amount is required"}


class TestAuthentication:
    """Bearer token handling and ownership"""

    def test_missing_token(self, auth_client):
        """Test requests without a token are unauthorized"""
        r = auth_client.get("/loans")
        assert r.status_code == 401
        assert r.json() == {"error": "Unauthorized"}

    def test_invalid_token(self, auth_client):
        """Test a malformed token is rejected"""
        r = auth_client.get("/loans", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401
        assert r.json() == {"error": "Invalid token"}

    def test_expired_token(self, auth_client):
        """Test an expired token is rejected"""
        token = create_access_token("asha", expires_in_hours=-1)
        r = auth_client.get("/loans", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json() == {"error": "Token expired"}

    def test_other_users_loan_is_not_found(self, auth_client):
        """Test another user's loan is hidden behind 404"""
        loan = create_loan(auth_client, headers=bearer("asha"))
        assert loan["userId"] == "asha"

        r = auth_client.get(f"/loans/{loan['id']}", headers=bearer("ravi"))
        assert r.status_code == 404
        assert auth_client.get("/loans", headers=bearer("ravi")).json() == []

        r = auth_client.get(f"/loans/{loan['id']}", headers=bearer("root", Role.SUPER_ADMIN))
        assert r.status_code == 200

    def test_super_admin_reopens_month(self, auth_client):
        """Test a super admin reopens a user's month"""
        auth_client.post("/monthly-snapshot", json={"year": 2024, "month": 1}, headers=bearer("asha"))

        r = auth_client.post(
            "/monthly-snapshot/reopen",
            json={"userId": "asha", "year": 2024, "month": 1},
            headers=bearer("root", Role.SUPER_ADMIN)
        )
        assert r.status_code == 200
        assert not r.json()["isClosed"]

    def test_audit_integrity(self, auth_client):
        """Test the audit integrity check is admin only"""
        create_loan(auth_client, headers=bearer("asha"))
        assert auth_client.get("/audit/integrity", headers=bearer("asha")).status_code == 403

        r = auth_client.get("/audit/integrity", headers=bearer("root", Role.SUPER_ADMIN))
        assert r.status_code == 200
        data = r.json()
        assert data["valid"]
        assert data["totalEvents"] >= 1
