"""Mailbox credential and reconciliation endpoints."""
import threading
from datetime import datetime, timezone

from formrelay.core.deps import get_credential_vault, get_reconciliation_scheduler
from formrelay.main import app
from formrelay.services import oauth_service
from formrelay.services.oauth_service import CredentialVault
from formrelay.services.reconciliation_service import CycleReport


class StubScheduler:
    def __init__(self, busy: bool = False):
        self.busy = busy
        self.calls: list = []

    def _report(self, case_id=None):
        now = datetime(2026, 3, 1, tzinfo=timezone.utc)
        return CycleReport(cycle_id="abc123", started_at=now, finished_at=now, case_id=case_id)

    def run_cycle(self):
        self.calls.append(None)
        return None if self.busy else self._report()

    def reconcile_case(self, case_id):
        self.calls.append(case_id)
        return None if self.busy else self._report(case_id)


async def test_store_list_revoke_credential(client):
    res = await client.post(
        "/integrations",
        json={
            "identity": "Recruiter@Agency.com",
            "provider": "google",
            "access_token": "secret-access",
            "refresh_token": "secret-refresh",
            "expires_in": 3600,
        },
    )
    assert res.status_code == 201
    assert "access_token" not in res.json()
    assert res.json()["identity"] == "recruiter@agency.com"

    res = await client.get("/integrations")
    assert [item["identity"] for item in res.json()] == ["recruiter@agency.com"]
    assert "secret" not in res.text

    res = await client.delete("/integrations/google/recruiter@agency.com")
    assert res.status_code == 204
    res = await client.delete("/integrations/google/recruiter@agency.com")
    assert res.status_code == 404


async def test_connect_sets_state_cookie(client):
    res = await client.get("/integrations/microsoft/connect")

    assert res.status_code == 200
    assert res.json()["auth_url"].startswith("https://login.microsoftonline.com/")
    assert "formrelay_oauth_state=" in res.headers["set-cookie"]


async def test_callback_rejects_mismatched_state(client):
    client.cookies.set("formrelay_oauth_state", "expected")
    res = await client.get(
        "/integrations/google/callback", params={"code": "abc", "state": "forged"}
    )

    assert res.status_code == 400


async def test_manual_reconciliation_run(client):
    stub = StubScheduler()
    app.dependency_overrides[get_reconciliation_scheduler] = lambda: stub

    res = await client.post("/internal/reconciliation/run")
    assert res.status_code == 200
    assert res.json()["cycle_id"] == "abc123"
    assert res.json()["completed"] == 0

    res = await client.post("/internal/reconciliation/cases/00000000-0000-0000-0000-000000000001")
    assert res.status_code == 200
    assert res.json()["case_id"] == "00000000-0000-0000-0000-000000000001"


async def test_manual_reconciliation_busy(client):
    app.dependency_overrides[get_reconciliation_scheduler] = lambda: StubScheduler(busy=True)

    res = await client.post("/internal/reconciliation/run")

    assert res.status_code == 409


class RecordingVault(CredentialVault):
    def __init__(self):
        super().__init__()
        self.store_threads: list[threading.Thread] = []

    def store(self, db, identity, provider, **kwargs):
        self.store_threads.append(threading.current_thread())
        return super().store(db, identity, provider, **kwargs)


async def test_callback_stores_credential_off_the_event_loop(client, monkeypatch):
    async def _exchange(provider, code, redirect_uri=None):
        assert code == "auth-code"
        return {"access_token": "a", "refresh_token": "r", "expires_in": 3600}, "Boss@Agency.com"

    monkeypatch.setattr(oauth_service, "exchange_code", _exchange)
    vault = RecordingVault()
    app.dependency_overrides[get_credential_vault] = lambda: vault
    client.cookies.set("formrelay_oauth_state", "state-1")

    res = await client.get(
        "/integrations/google/callback", params={"code": "auth-code", "state": "state-1"}
    )

    assert res.status_code == 200
    assert res.json()["identity"] == "boss@agency.com"
    assert res.json()["expires_at"] is not None
    assert len(vault.store_threads) == 1
    assert vault.store_threads[0] is not threading.current_thread()
