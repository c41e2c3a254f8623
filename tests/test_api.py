import pytest
from fastapi.testclient import TestClient

from perkcycle.config import Settings
from perkcycle.main import create_app

CRON_SECRET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ-_"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def client(database_url, engine):
    app = create_app(Settings(database_url=database_url, cron_secret=CRON_SECRET, smtp_host=None))
    with TestClient(app) as client:
        yield client


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "app": "Perkcycle"}


def test_cron_endpoints_require_secret(client):
    assert client.post("/api/cron/materialize").status_code == 401
    assert client.get(
        "/api/cron/benefit-integrity",
        headers={"Authorization": "Bearer not-the-secret"},
    ).status_code == 401


def test_materialize_endpoint(client, seed_account, read_benefits):
    account_id = seed_account("alice@example.com", benefits=[{"description": "Dining credit", "frequency": "MONTHLY"}])

    response = client.post(
        "/api/cron/materialize",
        params={"at": "2025-09-26T00:00:00Z", "notify": "false"},
        headers=AUTH,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["accounts_processed"] == 1
    assert data["statuses_ok"] == 1
    assert data["errors"] == []
    [status] = read_benefits(account_id)["Dining credit"]
    assert status["cycle_start_date"] == "2025-09-01T00:00:00.000Z"


def test_integrity_endpoint_reports_bad_windows(client, seed_account):
    assert client.get("/api/cron/benefit-integrity", headers=AUTH).json()["status"] == "healthy"

    seed_account("bob@example.com", benefits=[{
        "description": "Q3: Jul-Sep - Exclusive Tables",
        "frequency": "QUARTERLY",
        "statuses": [{
            "cycle_start_date": "2025-01-01T00:00:00.000Z",
            "cycle_end_date": "2025-03-31T23:59:59.999Z",
        }],
    }])

    data = client.get("/api/cron/benefit-integrity", headers=AUTH).json()

    assert data["status"] == "issues_found"
    assert data["issue_count"] == 1
    assert data["issues"][0]["type"] == "QUARTERLY_MISMATCH"
