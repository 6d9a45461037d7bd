"""S3 upload of delivery archives.

Keys are time bucketed and made unique by probing a two digit suffix:

    logs/year=2025/month=01/day=15/hour=10/20250115-1030_00.gz
    logs/year=2025/month=01/day=15/hour=10/20250115-1030_01.gz
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import boto3
import tenacity
from botocore.exceptions import BotoCoreError, ClientError

from redshift_sink.config import DEFAULT_TIMESTAMP_KEY_FORMAT, SinkConfig
from redshift_sink.errors import StorageError
from redshift_sink.observability import SinkLogger, get_sink_logger

__all__ = ["S3Uploader", "UploadResult", "normalize_endpoint"]

OBJECT_ACL = "bucket-owner-full-control"
_MISSING_KEY_CODES = {"404", "NoSuchKey", "NotFound"}


def normalize_endpoint(endpoint: Optional[str]) -> Optional[str]:
    """Turn a bare S3 endpoint host into a URL boto3 accepts."""
    if not endpoint:
        return None
    if "://" in endpoint:
        return endpoint
    return f"https://{endpoint}"


@dataclass
class UploadResult:
    """Where an archive ended up."""

    bucket: str
    key: str
    size: int = 0

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


class S3Uploader:
    """Writes archives to S3 under collision-free keys.

    Args:
        bucket: Destination bucket
        path_prefix: Normalized key prefix ("" or ending in "/")
        timestamp_key_format: strftime pattern for the time bucket
        utc: Format the time in UTC instead of local time
        client: Preconfigured boto3 S3 client (built lazily when omitted)
        retry_attempts: Upload attempts before the failure is raised
        clock: Returns the current time; injectable for tests
    """

    def __init__(
        self,
        bucket: str,
        *,
        path_prefix: str = "",
        timestamp_key_format: str = DEFAULT_TIMESTAMP_KEY_FORMAT,
        utc: bool = False,
        client: Any = None,
        client_options: Optional[Dict[str, Any]] = None,
        retry_attempts: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[SinkLogger] = None,
    ):
        self.bucket = bucket
        self.path_prefix = path_prefix
        self.timestamp_key_format = timestamp_key_format
        self.utc = utc
        self.retry_attempts = retry_attempts
        self._client = client
        self._client_options = client_options or {}
        self._clock = clock
        self.logger = logger or get_sink_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: SinkConfig,
        *,
        client: Any = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[SinkLogger] = None,
    ) -> "S3Uploader":
        client_options: Dict[str, Any] = {
            "aws_access_key_id": config.aws_key_id,
            "aws_secret_access_key": config.aws_sec_key,
        }
        endpoint_url = normalize_endpoint(config.s3_endpoint)
        if endpoint_url:
            client_options["endpoint_url"] = endpoint_url

        return cls(
            config.s3_bucket,
            path_prefix=config.path,
            timestamp_key_format=config.timestamp_key_format,
            utc=config.utc,
            client=client,
            client_options=client_options,
            retry_attempts=config.upload_retry_attempts,
            clock=clock,
            logger=logger,
        )

    @property
    def client(self) -> Any:
        """Lazy-load the S3 client."""
        if self._client is None:
            self._client = boto3.client("s3", **self._client_options)
            self.logger.debug(
                "Created S3 client for bucket '%s' with endpoint: %s",
                self.bucket,
                self._client_options.get("endpoint_url") or "default",
            )
        return self._client

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        if self.utc:
            return datetime.now(timezone.utc)
        return datetime.now()

    def build_key_base(self, now: Optional[datetime] = None) -> str:
        now = now or self.now()
        if self.utc and now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return f"{self.path_prefix}{now.strftime(self.timestamp_key_format)}"

    def key_exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_KEY_CODES:
                return False
            raise StorageError(
                "failed to check s3 object existence",
                bucket=self.bucket,
                key=key,
                cause=e,
            ) from e
        except BotoCoreError as e:
            raise StorageError(
                "failed to check s3 object existence",
                bucket=self.bucket,
                key=key,
                cause=e,
            ) from e
        return True

    def next_available_key(self, key_base: str) -> str:
        """First ``<key_base>_NN.gz`` that does not exist yet."""
        i = 0
        while True:
            key = f"{key_base}_{i:02d}.gz"
            if not self.key_exists(key):
                return key
            i += 1

    def _put(self, local_path: str, key: str) -> None:
        with open(local_path, "rb") as body:
            self.client.put_object(
                Bucket=self.bucket, Key=key, Body=body, ACL=OBJECT_ACL
            )

    def upload(self, local_path: str, size: int = 0) -> UploadResult:
        """Upload a local file under the next free key.

        Raises:
            StorageError: If the upload still fails after all attempts
        """
        key = self.next_available_key(self.build_key_base())

        def before_sleep(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            self.logger.warning(
                "S3 upload attempt %d/%d failed: %s. Retrying...",
                retry_state.attempt_number,
                self.retry_attempts,
                exception,
            )

        retryer = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(self.retry_attempts),
            wait=tenacity.wait_exponential(multiplier=1, min=2, max=10),
            retry=tenacity.retry_if_exception_type((BotoCoreError, ClientError)),
            before_sleep=before_sleep,
            reraise=True,
        )

        try:
            retryer(self._put, local_path, key)
        except (BotoCoreError, ClientError) as e:
            self.logger.error("Failed to upload %s to s3://%s/%s", local_path, self.bucket, key)
            raise StorageError(
                "failed to upload archive to s3",
                bucket=self.bucket,
                key=key,
                cause=e,
            ) from e

        result = UploadResult(bucket=self.bucket, key=key, size=size)
        self.logger.debug("Uploaded %s to %s", local_path, result.uri)
        return result
