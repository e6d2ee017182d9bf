"""
Tests for error handling middleware.
Covers domain error mapping, database errors and message sanitization.
"""

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from core.errors import ATSError, NotFoundError, ValidationError
from core.middleware.error_handling import (
    ErrorHandlingMiddleware,
    classify_exception,
    get_safe_error_details,
    sanitize_error_message,
    setup_error_handlers,
)


class TestSensitiveDataSanitization:
    """Credentials never reach an error response."""

    @pytest.mark.parametrize("sensitive_input", [
        'password="secret123"',
        "password: hunter22",
        'token="abc123xyz"',
        "access_token=jwt.token.here",
        'client_secret:abc123',
        "authorization: Bearer123",
    ])
    def test_sanitize_sensitive_patterns(self, sensitive_input):
        sanitized = sanitize_error_message(sensitive_input)
        assert "[REDACTED]" in sanitized

    def test_database_url_credentials(self):
        message = "could not connect to postgresql+asyncpg://ats:hunter2@db:5432/ats_db"
        sanitized = sanitize_error_message(message)

        assert "hunter2" not in sanitized
        assert "postgresql+asyncpg://[REDACTED]@db:5432/ats_db" in sanitized

    @pytest.mark.parametrize("safe_input", [
        "Job candidate not found",
        "Threshold days must be at least 1",
        "Moved from Queue to Screening",
    ])
    def test_safe_messages_untouched(self, safe_input):
        assert sanitize_error_message(safe_input) == safe_input

    def test_non_string_input(self):
        assert sanitize_error_message(404) == "404"


class TestSafeErrorDetails:
    def test_basic_exception_details(self):
        details = get_safe_error_details(ValueError("Test error message"))

        assert details == {"type": "ValueError", "message": "Test error message"}

    def test_details_with_debug_mode(self):
        details = get_safe_error_details(ValueError("Test error"), include_details=True)
        assert isinstance(details["traceback"], str)

    def test_sanitization_in_error_details(self):
        details = get_safe_error_details(ValueError("Error with password=secret123"))
        assert "secret123" not in details["message"]


class TestExceptionClassification:
    @pytest.mark.parametrize("exc,status_code,code", [
        (NotFoundError("Job"), 404, "NOT_FOUND"),
        (ValidationError({"stageName": ["Stage name is required"]}), 422, "VALIDATION_ERROR"),
        (ATSError("Something odd"), 400, "ATS_ERROR"),
        (IntegrityError("INSERT", {}, Exception("duplicate")), 409, "INTEGRITY_ERROR"),
        (OperationalError("SELECT", {}, Exception("gone")), 503, "DATABASE_ERROR"),
        (SQLAlchemyError("boom"), 500, "DATABASE_ERROR"),
        (RuntimeError("boom"), 500, "INTERNAL_SERVER_ERROR"),
    ])
    def test_status_and_code(self, exc, status_code, code):
        classified_status, classified_code, _, _ = classify_exception(exc)
        assert (classified_status, classified_code) == (status_code, code)

    def test_domain_error_keeps_message_and_details(self):
        _, _, message, details = classify_exception(
            ValidationError({"thresholdDays": ["Threshold days is required"]})
        )
        assert message == "Validation failed"
        assert details == {"thresholdDays": ["Threshold days is required"]}

    def test_internal_details_only_in_debug(self):
        assert classify_exception(RuntimeError("boom"))[3] is None
        assert classify_exception(RuntimeError("boom"), debug=True)[3]["type"] == "RuntimeError"


class TestErrorHandlingMiddleware:
    """Errors raised from routes come back as structured JSON."""

    @pytest.fixture
    def app(self):
        app = FastAPI()
        setup_error_handlers(app)
        app.add_middleware(ErrorHandlingMiddleware, debug=False)

        @app.get("/success")
        async def success():
            return {"message": "success"}

        @app.get("/missing")
        async def missing():
            raise NotFoundError("Job candidate")

        @app.get("/invalid")
        async def invalid():
            raise ValidationError({"rejectionReason": ["Rejection reason is required"]})

        @app.get("/forbidden")
        async def forbidden():
            raise HTTPException(status_code=403, detail="Admin access required")

        @app.get("/integrity")
        async def integrity():
            raise IntegrityError("INSERT INTO sla_configs", {}, Exception("duplicate key"))

        @app.get("/crash")
        async def crash():
            raise RuntimeError("connection to postgresql://ats:hunter2@db failed")

        @app.get("/typed")
        async def typed(limit: int):
            return {"limit": limit}

        return app

    @pytest.fixture
    def client(self, app):
        return TestClient(app, raise_server_exceptions=False)

    def test_success_passes_through(self, client):
        response = client.get("/success")
        assert response.status_code == 200
        assert response.json() == {"message": "success"}

    def test_not_found(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": {
                "code": "NOT_FOUND",
                "message": "Job candidate not found",
                "path": "/missing",
                "method": "GET",
            }
        }

    def test_validation_error_details(self, client):
        response = client.get("/invalid")

        assert response.status_code == 422
        assert response.json()["error"]["details"] == {
            "rejectionReason": ["Rejection reason is required"]
        }

    def test_http_exception(self, client):
        response = client.get("/forbidden")

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "HTTP_EXCEPTION"
        assert response.json()["error"]["message"] == "Admin access required"

    def test_request_validation(self, client):
        response = client.get("/typed", params={"limit": "many"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["message"] == "Request validation failed"
        assert error["details"][0]["field"] == "query.limit"

    def test_integrity_error(self, client):
        response = client.get("/integrity")

        assert response.status_code == 409
        assert "duplicate" not in response.text

    def test_unexpected_error_hides_internals(self, client):
        response = client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "An unexpected error occurred"
        assert "hunter2" not in response.text
        assert "details" not in response.json()["error"]
