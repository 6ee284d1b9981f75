"""Tests for the Prometheus metrics endpoint."""


class TestMetricsEndpoint:
    """Tests for GET /metrics."""

    async def test_metrics_returns_200(self, client):
        resp = await client.get("/metrics")
        assert resp.status_code == 200

    async def test_metrics_content_type(self, client):
        """GET /metrics returns Prometheus text format content type."""
        resp = await client.get("/metrics")
        ct = resp.headers.get("content-type", "")
        assert "text/plain" in ct or "openmetrics" in ct.lower()

    async def test_metrics_has_operations_total(self, client):
        await client.get("/api")
        resp = await client.get("/metrics")
        assert 's3drive_operations_total{operation="list_users",status="ok"}' in resp.text

    async def test_metrics_has_byte_counters(self, client):
        resp = await client.get("/metrics")
        assert "s3drive_bytes_uploaded_total" in resp.text
        assert "s3drive_bytes_downloaded_total" in resp.text

    async def test_metrics_has_http_duration_histogram(self, client):
        """The instrumentator's HTTP metrics carry the s3drive namespace."""
        await client.get("/api")
        resp = await client.get("/metrics")
        assert "s3drive_http_request_duration_seconds" in resp.text

    async def test_failed_operation_is_counted(self, client):
        await client.get("/api/alice/missing.txt")
        resp = await client.get("/metrics")
        assert 's3drive_operations_total{operation="download_file",status="error"}' in resp.text

    async def test_health_still_works_with_metrics(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
