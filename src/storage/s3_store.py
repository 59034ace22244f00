"""S3-backed object store.

This module encapsulates boto3 client creation and maps S3 client
failures onto transient and permanent storage errors.
"""

from __future__ import annotations

from typing import Any

from core.config import LakeConfig
from core.errors import LakeDependencyError, LakeStorageError, TransientStorageError
from core.s3_uri import S3Location
from core.types import ObjectInfo

_TRANSIENT_ERROR_CODES = frozenset(
    {
        "InternalError",
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "ServiceUnavailable",
        "SlowDown",
        "Throttling",
        "ThrottlingException",
    }
)


class S3ObjectStore:
    """Object store rooted at one S3 bucket prefix."""

    def __init__(self, location: S3Location, config: LakeConfig, client: Any = None) -> None:
        self._location = location
        self._client = client if client is not None else create_aws_client("s3", config)

    def list(self, prefix: str = "") -> list[ObjectInfo]:
        paginator = self._client.get_paginator("list_objects_v2")
        full_prefix = self._location.prefix + prefix
        objects: list[ObjectInfo] = []
        try:
            pages = paginator.paginate(Bucket=self._location.bucket, Prefix=full_prefix)
            for page in pages:
                for obj in page.get("Contents", []):
                    key = str(obj["Key"]).removeprefix(self._location.prefix)
                    objects.append(ObjectInfo(key=key, size=int(obj["Size"])))
        except Exception as error:
            raise _translate_error(error, "list", full_prefix) from error
        return sorted(objects, key=lambda item: item.key)

    def get(self, key: str) -> bytes:
        full_key = self._location.prefix + key
        try:
            response = self._client.get_object(Bucket=self._location.bucket, Key=full_key)
            return bytes(response["Body"].read())
        except Exception as error:
            raise _translate_error(error, "get", full_key) from error

    def put(self, key: str, data: bytes) -> None:
        full_key = self._location.prefix + key
        try:
            self._client.put_object(Bucket=self._location.bucket, Key=full_key, Body=data)
        except Exception as error:
            raise _translate_error(error, "put", full_key) from error

    def delete(self, key: str) -> None:
        full_key = self._location.prefix + key
        try:
            self._client.delete_object(Bucket=self._location.bucket, Key=full_key)
        except Exception as error:
            raise _translate_error(error, "delete", full_key) from error


def create_aws_client(service_name: str, config: LakeConfig) -> Any:
    """Create a boto3 client for S3 or SQS.

    Args:
        service_name: boto3 service name.
        config: Runtime config with optional session settings.

    Returns:
        Boto3 client.

    Raises:
        LakeDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise LakeDependencyError(
            "S3 and SQS support requires boto3, but it is not installed. "
            "Install boto3 to use s3:// zones or SQS event queues."
        ) from error
    session_kwargs: dict[str, str] = {}
    if config.s3_profile:
        session_kwargs["profile_name"] = config.s3_profile
    if config.s3_region:
        session_kwargs["region_name"] = config.s3_region
    session = boto3.session.Session(**session_kwargs)
    return session.client(service_name)


def _translate_error(error: Exception, action: str, key: str) -> LakeStorageError:
    """Map a boto3 failure to a storage error class.

    Args:
        error: Raised client exception.
        action: Storage action label.
        key: Full object key or prefix.

    Returns:
        Transient error for throttling, timeouts, and 5xx responses,
        otherwise a permanent storage error.
    """
    response = getattr(error, "response", None)
    message = f"S3 {action} failed for '{key}': {error}."
    if not isinstance(response, dict):
        return TransientStorageError(message)
    error_code = str(response.get("Error", {}).get("Code", ""))
    status_code = int(response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0))
    if error_code in _TRANSIENT_ERROR_CODES or status_code >= 500:
        return TransientStorageError(message)
    return LakeStorageError(f"{message} Check bucket permissions and the object key.")
