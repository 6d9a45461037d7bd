"""Unit tests for the S3 uploader with moto mocking."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from redshift_sink.errors import StorageError
from redshift_sink.storage.s3 import OBJECT_ACL, S3Uploader, normalize_endpoint

BUCKET = "test-log-bucket"
KEY_BASE = "logs/year=2025/month=01/day=15/hour=10/20250115-1030"


def client_error(code, operation="HeadObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def archive_file(tmp_path):
    path = tmp_path / "s3-test.gz"
    path.write_bytes(b"\x1f\x8bpayload")
    return str(path)


@pytest.fixture
def uploader(s3_client, fixed_clock):
    return S3Uploader(
        BUCKET,
        path_prefix="logs/",
        client=s3_client,
        clock=fixed_clock,
        retry_attempts=1,
    )


class TestNormalizeEndpoint:
    def test_bare_host(self):
        assert normalize_endpoint("s3.example.com") == "https://s3.example.com"

    def test_url_kept(self):
        assert normalize_endpoint("http://localhost:9000") == "http://localhost:9000"

    def test_empty(self):
        assert normalize_endpoint(None) is None
        assert normalize_endpoint("") is None


class TestKeyBuilding:
    """Tests for time-bucketed key bases."""

    def test_default_format(self, uploader):
        assert uploader.build_key_base() == KEY_BASE

    def test_custom_format(self, fixed_clock):
        uploader = S3Uploader(
            BUCKET, timestamp_key_format="%Y/%m/%d", clock=fixed_clock, client=MagicMock()
        )
        assert uploader.build_key_base() == "2025/01/15"

    def test_utc_conversion(self):
        tz = timezone(timedelta(hours=9))
        uploader = S3Uploader(
            BUCKET,
            timestamp_key_format="%Y%m%d-%H%M",
            utc=True,
            clock=lambda: datetime(2025, 1, 15, 3, 0, tzinfo=tz),
            client=MagicMock(),
        )
        assert uploader.build_key_base() == "20250114-1800"


class TestUpload:
    """Tests for uploads against a moto bucket."""

    def test_first_key_is_00(self, uploader, s3_client, archive_file):
        result = uploader.upload(archive_file, size=10)

        assert result.key == f"{KEY_BASE}_00.gz"
        assert result.uri == f"s3://{BUCKET}/{KEY_BASE}_00.gz"
        assert result.size == 10
        body = s3_client.get_object(Bucket=BUCKET, Key=result.key)["Body"].read()
        assert body == b"\x1f\x8bpayload"

    def test_probes_past_existing_keys(self, uploader, s3_client, archive_file):
        for i in range(5):
            s3_client.put_object(Bucket=BUCKET, Key=f"{KEY_BASE}_{i:02d}.gz", Body=b"x")

        result = uploader.upload(archive_file)

        assert result.key == f"{KEY_BASE}_05.gz"

    def test_consecutive_uploads_do_not_collide(self, uploader, archive_file):
        first = uploader.upload(archive_file)
        second = uploader.upload(archive_file)
        assert first.key != second.key
        assert second.key == f"{KEY_BASE}_01.gz"

    def test_object_acl(self, uploader, s3_client, archive_file):
        result = uploader.upload(archive_file)
        acl = s3_client.get_object_acl(Bucket=BUCKET, Key=result.key)
        permissions = {grant["Permission"] for grant in acl["Grants"]}
        assert "FULL_CONTROL" in permissions


class TestUploadFailures:
    """Tests for failure handling with a mocked client."""

    def test_put_failure_raises_storage_error(self, archive_file, fixed_clock):
        client = MagicMock()
        client.head_object.side_effect = client_error("404")
        client.put_object.side_effect = client_error("AccessDenied", "PutObject")
        uploader = S3Uploader(BUCKET, client=client, clock=fixed_clock, retry_attempts=1)

        with pytest.raises(StorageError, match="failed to upload archive to s3") as exc_info:
            uploader.upload(archive_file)

        assert exc_info.value.bucket == BUCKET
        assert client.put_object.call_count == 1

    def test_put_is_retried(self, archive_file, fixed_clock, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda seconds: None)
        client = MagicMock()
        client.head_object.side_effect = client_error("404")
        client.put_object.side_effect = [client_error("SlowDown", "PutObject"), {}]
        uploader = S3Uploader(BUCKET, client=client, clock=fixed_clock, retry_attempts=2)

        result = uploader.upload(archive_file)

        assert client.put_object.call_count == 2
        assert result.key.endswith("_00.gz")
        assert client.put_object.call_args.kwargs["ACL"] == OBJECT_ACL

    def test_head_object_error_is_not_treated_as_missing(self, archive_file, fixed_clock):
        client = MagicMock()
        client.head_object.side_effect = client_error("403")
        uploader = S3Uploader(BUCKET, client=client, clock=fixed_clock, retry_attempts=1)

        with pytest.raises(StorageError, match="existence"):
            uploader.upload(archive_file)
        client.put_object.assert_not_called()

    def test_key_exists_for_missing_codes(self, fixed_clock):
        client = MagicMock()
        uploader = S3Uploader(BUCKET, client=client, clock=fixed_clock)
        for code in ("404", "NoSuchKey", "NotFound"):
            client.head_object.side_effect = client_error(code)
            assert uploader.key_exists("k") is False
        client.head_object.side_effect = None
        assert uploader.key_exists("k") is True


class TestFromConfig:
    def test_client_options(self, make_config):
        uploader = S3Uploader.from_config(make_config(s3_endpoint="s3.example.com"))
        assert uploader.bucket == BUCKET
        assert uploader.path_prefix == "logs/"
        assert uploader.retry_attempts == 1
        assert uploader._client_options == {
            "aws_access_key_id": "AKIAEXAMPLE",
            "aws_secret_access_key": "super-secret",
            "endpoint_url": "https://s3.example.com",
        }
