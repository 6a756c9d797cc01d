from prometheus_client.parser import text_string_to_metric_families

from flag_service.main import app
from flag_service.settings import settings


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_readyz_reports_db_and_cache(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert [check["name"] for check in body["checks"]] == ["db", "cache"]
    assert body["checks"][1]["detail"]["backend"] == "InMemoryResultCache"


def test_readyz_fails_without_session_factory(client):
    original = app.state.db_session_factory
    app.state.db_session_factory = None
    try:
        response = client.get("/readyz")
    finally:
        app.state.db_session_factory = original

    assert response.status_code == 503
    assert response.json()["checks"][0]["ok"] is False


def test_metrics_expose_evaluation_counters(client):
    flag = client.post("/api/v1/feature_flags", json={"name": "checkout"}).json()
    client.post(f"/api/v1/feature_flags/{flag['id']}/evaluate", json={"user_id": "u1"})
    client.post(f"/api/v1/feature_flags/{flag['id']}/evaluate", json={"user_id": "u1"})

    response = client.get("/metrics")

    assert response.status_code == 200
    samples = [
        sample
        for family in text_string_to_metric_families(response.text)
        for sample in family.samples
    ]
    hits = [
        sample
        for sample in samples
        if sample.name == "feature_flag_evaluations_total" and sample.labels.get("cache") == "hit"
    ]
    assert [(sample.labels["source"], sample.value) for sample in hits] == [("cached", 1.0)]
    evaluate_requests = [
        sample
        for sample in samples
        if sample.name == "http_requests_total"
        and sample.labels["method"] == "POST"
        and sample.labels["path"].endswith("/feature_flags/{flag_id}/evaluate")
    ]
    assert [(sample.labels["status_code"], sample.value) for sample in evaluate_requests] == [("200", 2.0)]


def test_metrics_token_is_enforced_when_configured(client):
    settings.metrics_token = "secret"

    assert client.get("/metrics").status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/metrics", headers={"Authorization": "Bearer secret"}).status_code == 200
    assert client.get("/metrics", params={"token": "secret"}).status_code == 200


def test_unauthorized_metrics_use_error_envelope(client):
    settings.metrics_token = "secret"

    response = client.get("/metrics")

    assert response.json() == {"error": {"type": "http_error", "message": "Unauthorized"}}
