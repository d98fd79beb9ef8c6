"""
Content-addressed blob storage.

Every backend derives the object address from the bytes themselves, so
uploading the same content twice yields the same locator.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import requests

from app.docledger.config import Settings
from app.docledger.errors import NotFoundError, UploadError
from app.docledger.modules.documents.hashing import sha256_hex

logger = logging.getLogger(__name__)

LOCAL_SCHEME = "local://sha256/"


class BlobStore:
    def put(self, data: bytes, *, filename: str | None = None, content_type: str | None = None) -> str:
        raise NotImplementedError

    def get(self, locator: str) -> bytes:
        raise NotImplementedError

    def exists(self, locator: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalBlobStore(BlobStore):
    root: Path

    def _path(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    def _digest_from(self, locator: str) -> str:
        if not locator.startswith(LOCAL_SCHEME):
            raise NotFoundError(f"Not a local locator: {locator!r}")
        digest = locator[len(LOCAL_SCHEME):]
        if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
            raise NotFoundError(f"Malformed local locator: {locator!r}")
        return digest

    def put(self, data: bytes, *, filename: str | None = None, content_type: str | None = None) -> str:
        digest = sha256_hex(data)
        p = self._path(digest)
        try:
            if not p.exists():
                p.parent.mkdir(parents=True, exist_ok=True)
                tmp = p.with_suffix(".part")
                tmp.write_bytes(data)
                tmp.replace(p)
        except OSError as e:
            raise UploadError(f"Local blob write failed: {e}") from e
        return LOCAL_SCHEME + digest

    def get(self, locator: str) -> bytes:
        p = self._path(self._digest_from(locator))
        if not p.exists():
            raise NotFoundError(f"No blob at {locator}")
        return p.read_bytes()

    def exists(self, locator: str) -> bool:
        try:
            return self._path(self._digest_from(locator)).exists()
        except NotFoundError:
            return False


@dataclass(frozen=True)
class S3BlobStore(BlobStore):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        import boto3

        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def _key_from(self, locator: str) -> str:
        u = urlparse(locator)
        if u.scheme != "s3" or u.netloc != self.bucket:
            raise NotFoundError(f"Locator {locator!r} is not in bucket {self.bucket!r}")
        return u.path.lstrip("/")

    def put(self, data: bytes, *, filename: str | None = None, content_type: str | None = None) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        key = f"blobs/sha256/{sha256_hex(data)}"
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        if filename:
            extra["Metadata"] = {"filename": filename}
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise UploadError(f"S3 upload failed: {e}") from e
        return f"s3://{self.bucket}/{key}"

    def get(self, locator: str) -> bytes:
        from botocore.exceptions import ClientError

        key = self._key_from(locator)
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            raise NotFoundError(f"No blob at {locator}: {e}") from e
        return obj["Body"].read()

    def exists(self, locator: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self._client().head_object(Bucket=self.bucket, Key=self._key_from(locator))
            return True
        except (ClientError, NotFoundError):
            return False


@dataclass(frozen=True)
class PinataBlobStore(BlobStore):
    """IPFS pinning through Pinata. Locators are gateway URLs: `<gateway>/ipfs/<cid>`."""

    jwt: str
    api_url: str = "https://api.pinata.cloud"
    gateway_url: str = "https://gateway.pinata.cloud"
    timeout_seconds: int = 60
    retries: int = 3

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.jwt}"}

    def put(self, data: bytes, *, filename: str | None = None, content_type: str | None = None) -> str:
        url = self.api_url.rstrip("/") + "/pinning/pinFileToIPFS"
        name = filename or sha256_hex(data)
        last_err: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                resp = requests.post(
                    url,
                    headers=self._headers(),
                    files={"file": (name, data, content_type or "application/octet-stream")},
                    timeout=self.timeout_seconds,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                last_err = e
                logger.warning("Pinata upload failed (attempt %s): %s", attempt + 1, e)
                time.sleep(min(1 * (attempt + 1), 5))
                continue
            if resp.status_code == 429 or resp.status_code >= 500:
                last_err = UploadError(f"HTTP {resp.status_code} from Pinata")
                time.sleep(min(2 * (attempt + 1), 10))
                continue
            if resp.status_code >= 400:
                raise UploadError(f"HTTP {resp.status_code} from Pinata: {resp.text[:300]}")
            try:
                cid = resp.json()["IpfsHash"]
            except (ValueError, KeyError) as e:
                raise UploadError("Invalid JSON from Pinata") from e
            return f"{self.gateway_url.rstrip('/')}/ipfs/{cid}"
        raise UploadError(f"Pinata upload failed after retries: {last_err}")

    def get(self, locator: str) -> bytes:
        try:
            resp = requests.get(locator, timeout=self.timeout_seconds)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise UploadError(f"Gateway unreachable: {e}") from e
        if resp.status_code == 404:
            raise NotFoundError(f"No blob at {locator}")
        if resp.status_code >= 400:
            raise UploadError(f"HTTP {resp.status_code} from gateway")
        return resp.content

    def exists(self, locator: str) -> bool:
        try:
            resp = requests.head(locator, timeout=self.timeout_seconds, allow_redirects=True)
        except (requests.ConnectionError, requests.Timeout):
            return False
        return resp.status_code < 400


def blob_store_from_settings(settings: Settings) -> BlobStore:
    backend = settings.storage_backend
    if backend == "s3":
        return S3BlobStore(
            endpoint=settings.s3_endpoint,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )
    if backend == "pinata":
        if not settings.pinata_jwt:
            raise UploadError("PINATA_JWT is required for the pinata storage backend.")
        return PinataBlobStore(
            jwt=settings.pinata_jwt,
            api_url=settings.pinata_api_url,
            gateway_url=settings.pinata_gateway_url,
            retries=settings.network_retries,
        )
    # default local
    return LocalBlobStore(root=Path(settings.storage_local_root))
