"""
PII masking and in-process metrics
"""

from docket_lite.metrics import MetricsService, TransactionMonitor
from docket_lite.pii import mask_email, mask_phone, mask_token, sanitize_for_log


class TestMasking:

    def test_mask_email(self):
        assert mask_email("john@x.com") == "j***@x.com"
        assert mask_email("") == ""

    def test_mask_phone_keeps_last_four(self):
        masked = mask_phone("+1 (555) 123-4567")
        assert masked.endswith("4567")
        assert "555" not in masked

    def test_mask_token(self):
        assert mask_token("short") == "***"
        assert mask_token("abcdefghijklmnop") == "abcd...mnop"

    def test_sanitize_nested_payload(self):
        payload = {
            "email": "jane@firm.example.com",
            "password": "hunter22",
            "nested": {"refresh_token": "abc", "phone": "0501234567"},
            "notes": ["contact jane@firm.example.com today"],
            "title": "Contract dispute",
        }
        clean = sanitize_for_log(payload)

        assert clean["password"] == "***"
        assert clean["nested"]["refresh_token"] == "***"
        assert clean["nested"]["phone"].endswith("4567")
        assert clean["email"] == "j***@firm.example.com"
        assert "jane@" not in clean["notes"][0]
        assert clean["title"] == "Contract dispute"
        # input untouched
        assert payload["password"] == "hunter22"


class TestMetricsService:

    def test_snapshot(self):
        service = MetricsService()
        for duration in (10, 20, 30, 40):
            service.record_request("GET /api/cases", duration)
        service.record_error(404)
        service.record_auth_failure()

        snapshot = service.snapshot()
        assert snapshot["requests_total"] == 4
        assert snapshot["requests_by_route"] == {"GET /api/cases": 4}
        assert snapshot["errors_by_status"] == {"404": 1}
        assert snapshot["auth_failures"] == 1
        assert snapshot["latency_ms"] == {"samples": 4, "p50": 20, "p95": 40}

    def test_empty_percentiles(self):
        snapshot = MetricsService().snapshot()
        assert snapshot["latency_ms"]["p50"] is None

    def test_reset(self):
        service = MetricsService()
        service.record_request("GET /", 1)
        service.reset()
        assert service.snapshot()["requests_total"] == 0


class TestTransactionMonitor:

    def test_counts(self):
        monitor = TransactionMonitor()
        monitor.record_start()
        monitor.record_commit()
        monitor.record_start()
        monitor.record_rollback()
        assert monitor.snapshot() == {
            "started": 2,
            "committed": 1,
            "rolled_back": 1,
            "start_failures": 0,
            "unavailable_responses": 0,
        }
