"""Tests for redshift_sink/errors.py - structured exception hierarchy."""

import psycopg2

from redshift_sink.errors import (
    ConfigurationError,
    RecordDecodeError,
    SinkError,
    StorageError,
    WarehouseError,
)


class TestSinkError:
    """Tests for base SinkError class."""

    def test_basic_message(self):
        error = SinkError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"

    def test_with_details_and_suggestion(self):
        error = SinkError(
            "Upload failed",
            details={"bucket": "logs", "key": "a.gz"},
            suggestion="Check the bucket policy",
        )
        assert "bucket: logs" in str(error)
        assert "key: a.gz" in str(error)
        assert "Suggestion: Check the bucket policy" in str(error)

    def test_to_dict(self):
        error = SinkError("Test error", details={"k": "v"}, suggestion="Fix it")
        assert error.to_dict() == {
            "error_type": "SinkError",
            "message": "Test error",
            "details": {"k": "v"},
            "suggestion": "Fix it",
        }

    def test_subclasses(self):
        for cls in (ConfigurationError, WarehouseError, StorageError, RecordDecodeError):
            assert issubclass(cls, SinkError)


class TestConfigurationError:
    def test_field_and_value(self):
        error = ConfigurationError("bad port", field="redshift_port", value="abc")
        assert error.details == {"field": "redshift_port", "value": "abc"}


class TestWarehouseError:
    def test_cause_details(self):
        cause = psycopg2.OperationalError("could not connect\n")
        error = WarehouseError(
            "failed to connect", host="cluster", operation="connect", cause=cause
        )
        assert error.details["host"] == "cluster"
        assert error.details["operation"] == "connect"
        assert error.details["cause"] == "could not connect"
        assert error.details["cause_type"] == "OperationalError"
        assert error.suggestion

    def test_custom_suggestion(self):
        error = WarehouseError("x", suggestion="Grant USAGE on the schema")
        assert error.suggestion == "Grant USAGE on the schema"


class TestStorageError:
    def test_bucket_and_key(self):
        error = StorageError("upload failed", bucket="b", key="k")
        assert error.to_dict()["details"] == {"bucket": "b", "key": "k"}


class TestRecordDecodeError:
    def test_payload_truncated(self):
        error = RecordDecodeError("bad", payload="x" * 500)
        assert len(error.details["payload"]) == 200
