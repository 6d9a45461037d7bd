"""Object storage for delivery archives.

Usage:
    from redshift_sink.storage import S3Uploader

    uploader = S3Uploader.from_config(config)
    result = uploader.upload("/tmp/s3-abc.gz")
    print(result.uri)
"""

from redshift_sink.storage.s3 import S3Uploader, UploadResult, normalize_endpoint

__all__ = ["S3Uploader", "UploadResult", "normalize_endpoint"]
