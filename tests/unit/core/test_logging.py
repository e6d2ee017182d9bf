"""
Tests for logging middleware.
Tests PII masking, request logging and log formatting.
"""

import json
import sys
import logging

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from core.middleware.logging import (
    StructuredFormatter,
    StructuredLoggingMiddleware,
    is_sensitive_field,
    mask_sensitive_data,
    setup_logging,
    should_log_request,
)


class TestSensitiveFieldDetection:
    @pytest.mark.parametrize("field_name,expected", [
        ("password", True),
        ("PASSWORD", True),
        ("access_token", True),
        ("api_key", True),
        ("apiKey", True),
        ("client_secret", True),
        ("Authorization", True),
        ("cookie", True),
        ("session_id", True),
        ("stageName", False),
        ("jobId", False),
        ("email", False),
        ("startDate", False),
    ])
    def test_sensitive_field_patterns(self, field_name, expected):
        assert is_sensitive_field(field_name) == expected


class TestPIIMasking:
    def test_email_masking(self):
        masked = mask_sensitive_data("Contact casey@example.com about the offer")
        assert masked == "Contact [EMAIL] about the offer"

    @pytest.mark.parametrize("text", ["Call 555-123-4567", "Phone: 555.123.4567", "5551234567"])
    def test_phone_masking(self, text):
        assert "[PHONE]" in mask_sensitive_data(text)

    def test_dict_masking(self):
        masked = mask_sensitive_data({
            "jobId": "42",
            "token": "abc123xyz",
            "candidate": {"email": "casey@example.com", "name": "Casey"},
            "tags": ["call 555-123-4567", "ok"],
        })

        assert masked["jobId"] == "42"
        assert masked["token"] == "[REDACTED]"
        assert masked["candidate"] == {"email": "[EMAIL]", "name": "Casey"}
        assert masked["tags"] == ["call [PHONE]", "ok"]

    def test_non_string_values_pass_through(self):
        assert mask_sensitive_data({"count": 3, "ratio": 0.5, "flag": None}) == {
            "count": 3, "ratio": 0.5, "flag": None,
        }

    def test_max_depth(self):
        nested = current = {}
        for _ in range(15):
            current["child"] = {}
            current = current["child"]

        masked = mask_sensitive_data(nested, max_depth=3)

        assert masked["child"]["child"]["child"]["child"] == "[MAX_DEPTH_EXCEEDED]"


class TestRequestFiltering:
    @pytest.mark.parametrize("path,expected", [
        ("/health", False),
        ("/ready", False),
        ("/api/v1/analytics/kpis", True),
        ("/api/v1/sla/breaches", True),
    ])
    def test_should_log_request(self, path, expected):
        assert should_log_request(path) == expected


class TestStructuredLoggingMiddleware:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(StructuredLoggingMiddleware)

        @app.get("/api/v1/analytics/kpis")
        async def kpis():
            return {"activeRoles": 1}

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        return TestClient(app)

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/v1/analytics/kpis", headers={"X-Request-ID": "req-123"})
        assert response.headers["x-request-id"] == "req-123"

    def test_request_id_is_generated(self, client):
        response = client.get("/api/v1/analytics/kpis")
        assert len(response.headers["x-request-id"]) == 36

    def test_completed_request_is_logged_with_masked_query(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="core.middleware.logging"):
            client.get("/api/v1/analytics/kpis", params={"jobId": "7", "email": "casey@example.com"})

        lines = [
            json.loads(record.getMessage())
            for record in caplog.records
            if record.name == "core.middleware.logging"
        ]
        assert len(lines) == 1
        line = lines[0]
        assert line["event"] == "request_completed"
        assert line["status_code"] == 200
        assert line["query_params"] == {"jobId": "7", "email": "[EMAIL]"}

    def test_health_checks_are_not_logged(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="core.middleware.logging"):
            client.get("/health")

        assert not [r for r in caplog.records if r.name == "core.middleware.logging"]


class TestStructuredFormatter:
    def test_formats_json_with_extras(self):
        record = logging.LogRecord(
            name="api.services.sla",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Company %s has %s SLA breaches",
            args=(3, 2),
            exc_info=None,
        )
        record.company_id = 3

        data = json.loads(StructuredFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "api.services.sla"
        assert data["message"] == "Company 3 has 2 SLA breaches"
        assert data["company_id"] == 3
        assert "exception" not in data

    def test_includes_exception(self):
        try:
            raise ValueError("bad threshold")
        except ValueError:
            record = logging.LogRecord(
                "x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        data = json.loads(StructuredFormatter().format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad threshold"


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_handler(self):
        setup_logging(log_level="DEBUG", json_logs=True)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)

    def test_plain_handler(self):
        setup_logging(log_level="WARNING", json_logs=False)

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
