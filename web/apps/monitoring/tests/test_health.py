import pytest
from django.db import DatabaseError


@pytest.mark.django_db
def test_health_ok(client):
    r = client.get("/health/")
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["reconciliation"] == {"unknown_payments": 0, "pending_cart_clears": 0}


@pytest.mark.django_db
def test_health_reports_database_down(client, monkeypatch):
    from apps.checkout.idempotency import DjangoAttemptStore

    def boom(self):
        raise DatabaseError("gone")

    monkeypatch.setattr(DjangoAttemptStore, "backlog", boom)
    r = client.get("/health/")
    assert r.status_code == 503
    assert r.json()["components"]["db"]["ok"] is False


def test_request_id_is_echoed(client):
    r = client.get("/api/orders/", HTTP_X_REQUEST_ID="abc-123")
    assert r["X-Request-ID"] == "abc-123"
