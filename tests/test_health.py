def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_healthz_reports_store_backend(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "store_backend": "remote"}


def test_metrics_endpoint_exposes_catalog_counters(client, auth_headers):
    client.post(
        "/documents",
        json={"name": "Metrics", "records": [{"fields": {"Name": "Lamp"}}]},
        headers=auth_headers,
    )

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "qr_documents_created_total" in response.text


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"x-request-id": "req-123"})
    assert response.headers["x-request-id"] == "req-123"
    assert client.get("/health").headers["x-request-id"]
