"""
S3 cold store for TierVault.

Archived records are stored one object per record:

    s3://<bucket>/<prefix>/year=YYYY/month=MM/day=DD/<record_id>

The object body is the record payload, byte for byte. Identity and
integrity data travel as user metadata:

    x-amz-meta-content-hash, x-amz-meta-partition-key, x-amz-meta-created-at

Invariants:
    - Payload bytes are never transformed (no compression, no envelope)
    - botocore errors are translated into the TierVault taxonomy here and
      nowhere else

How to change safely:
    - Metadata keys are read by operators; add new ones, don't rename
    - Test error translation against MinIO before changing codes
"""

from __future__ import annotations

import logging
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..config import S3Config
from ..errors import (
    PermissionDeniedError,
    RecordNotFoundError,
    ThrottledError,
    TierVaultError,
    TransientNetworkError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
_THROTTLE_CODES = {
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequests",
    "RequestThrottled",
    "503",
    "429",
}
_DENIED_CODES = {"AccessDenied", "Forbidden", "403", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
_TRANSIENT_CODES = {"RequestTimeout", "InternalError", "ServiceUnavailable", "500", "502", "504"}

_NETWORK_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
)


def translate_client_error(error: ClientError, key: str) -> TierVaultError:
    """Map a botocore ClientError to the TierVault error taxonomy."""
    code = str(error.response.get("Error", {}).get("Code", ""))
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")

    if code in _NOT_FOUND_CODES or status == 404:
        return RecordNotFoundError(f"Object not found in cold store: {key}", key=key)
    if code in _THROTTLE_CODES or status in (429, 503):
        return ThrottledError(f"Cold store throttled: {code}", key=key)
    if code in _DENIED_CODES or status == 403:
        return PermissionDeniedError(f"Cold store denied access: {code}", key=key)
    if code in _TRANSIENT_CODES or (status is not None and status >= 500):
        return TransientNetworkError(f"Cold store error: {code}", key=key, status=status)
    return TierVaultError(f"Cold store error: {code}", code="COLD_STORE_ERROR", details={"key": key})


class S3ColdStore:
    """Cold store on S3 (or an S3-compatible service such as MinIO).

    Attributes:
        s3_config: S3 configuration

    Example:
        >>> cold = S3ColdStore(S3Config(bucket="archive"))
        >>> await cold.connect()
        >>> await cold.write("records/year=2024/month=01/day=05/inv-1", b"...")
        >>> await cold.close()
    """

    def __init__(self, s3_config: S3Config, client: Any = None) -> None:
        """Initialize the store.

        Args:
            s3_config: S3 configuration
            client: Pre-built S3 client (tests); connect() creates one otherwise
        """
        self.s3_config = s3_config
        self._client = client
        self._client_ctx: Any = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the S3 client."""
        if self._client is not None:
            return

        client_kwargs: dict[str, Any] = {"region_name": self.s3_config.region}
        if self.s3_config.endpoint_url:
            client_kwargs["endpoint_url"] = self.s3_config.endpoint_url
        if self.s3_config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

        session = get_session()
        self._client_ctx = session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()
        logger.info(
            "Cold store connected",
            extra={"bucket": self.s3_config.bucket, "endpoint": self.s3_config.endpoint_url},
        )

    async def close(self) -> None:
        """Close the S3 client if this store created it."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client_ctx = None
        self._client = None

    def _require_client(self) -> Any:
        if self._client is None:
            raise TransientNetworkError("Cold store not connected")
        return self._client

    async def exists(self, key: str) -> bool:
        client = self._require_client()
        try:
            await client.head_object(Bucket=self.s3_config.bucket, Key=key)
            return True
        except ClientError as e:
            translated = translate_client_error(e, key)
            if isinstance(translated, RecordNotFoundError):
                return False
            raise translated from e
        except _NETWORK_ERRORS as e:
            raise TransientNetworkError(f"Cold store unreachable: {e}", key=key) from e

    async def read(self, key: str) -> bytes:
        client = self._require_client()
        try:
            response = await client.get_object(Bucket=self.s3_config.bucket, Key=key)
            async with response["Body"] as stream:
                return await stream.read()
        except ClientError as e:
            raise translate_client_error(e, key) from e
        except _NETWORK_ERRORS as e:
            raise TransientNetworkError(f"Cold store unreachable: {e}", key=key) from e

    async def write(
        self,
        key: str,
        data: bytes,
        metadata: dict[str, str] | None = None,
    ) -> None:
        client = self._require_client()
        try:
            await client.put_object(
                Bucket=self.s3_config.bucket,
                Key=key,
                Body=data,
                ContentType="application/octet-stream",
                Metadata=metadata or {},
            )
        except ClientError as e:
            raise translate_client_error(e, key) from e
        except _NETWORK_ERRORS as e:
            raise TransientNetworkError(f"Cold store unreachable: {e}", key=key) from e

        logger.debug("Wrote cold object", extra={"s3_key": key, "size_bytes": len(data)})
