from __future__ import annotations

import mimetypes
import random
import time
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from proofs.errors import StorageFailure

PUBLIC_READ = "public-read"


def guess_content_type(name: str) -> str:
    """MIME type from the file extension, octet-stream when unknown."""

    if name.endswith(".log"):
        return "text/plain"
    content_type, _ = mimetypes.guess_type(name)
    return content_type or "application/octet-stream"


class ArtifactStorage:
    """Interface for sealed, public artifact storage."""

    def put_object(self, name: str, data: bytes, content_type: str, visibility: str = PUBLIC_READ) -> str:
        """Store one object and return its durable locator, or raise StorageFailure."""

        raise NotImplementedError

    def set_locator(self, prefix: str) -> str:
        """Locator for everything stored under `prefix`."""

        raise NotImplementedError

    def upload_set(self, prefix: str, files: Sequence[Tuple[str, bytes]]) -> str:
        """Upload files under `prefix` in filename order and return the set locator."""

        for name, data in sorted(files, key=lambda item: item[0]):
            self.put_object(f"{prefix}/{name}", data, guess_content_type(name), PUBLIC_READ)
        return self.set_locator(prefix)


class HttpArtifactStorage(ArtifactStorage):
    """Uploads objects to a bucket-style HTTP object store."""

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        token: str,
        public_url: Optional[str] = None,
        timeout_s: float = 30.0,
        max_retries: int = 2,
        initial_backoff_s: float = 0.5,
        max_backoff_s: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not token:
            raise ValueError("Storage token is required for HTTP artifact storage")
        self.endpoint = endpoint.rstrip("/")
        self.bucket = bucket
        self.token = token
        self.public_url = (public_url or endpoint).rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max(0, int(max_retries))
        self.initial_backoff_s = max(0.0, float(initial_backoff_s))
        self.max_backoff_s = max(0.0, float(max_backoff_s))
        self._transport = transport
        self._sleep = sleep

    def _object_url(self, base: str, name: str) -> str:
        return f"{base}/{quote(self.bucket)}/{quote(name)}"

    def _sleep_before_retry(self, attempt: int) -> None:
        wait_s = min(self.max_backoff_s, self.initial_backoff_s * (2**attempt))
        if wait_s <= 0:
            return
        wait_s += random.uniform(0.0, min(1.0, wait_s * 0.25))
        self._sleep(wait_s)

    def put_object(self, name: str, data: bytes, content_type: str, visibility: str = PUBLIC_READ) -> str:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": content_type,
            "X-Visibility": visibility,
        }
        url = self._object_url(self.endpoint, name)
        with httpx.Client(timeout=httpx.Timeout(self.timeout_s), transport=self._transport) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    response = client.put(url, content=data, headers=headers)
                except httpx.RequestError as exc:
                    if attempt >= self.max_retries:
                        raise StorageFailure(f"Upload of {name} failed: {exc}") from exc
                    self._sleep_before_retry(attempt)
                    continue
                if response.status_code >= 500 and attempt < self.max_retries:
                    self._sleep_before_retry(attempt)
                    continue
                if response.status_code >= 400:
                    raise StorageFailure(
                        f"Upload of {name} failed ({response.status_code}): {response.text[:500]}"
                    )
                break
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and isinstance(payload.get("url"), str):
            return payload["url"]
        return self._object_url(self.public_url, name)

    def set_locator(self, prefix: str) -> str:
        return f"{self.public_url}/{quote(self.bucket)}/{quote(prefix)}/"


class LocalArtifactStorage(ArtifactStorage):
    """Development storage: copies objects under a local root, returns file URIs."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _path(self, name: str) -> Path:
        target = (self.root / name).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageFailure(f"Object name escapes storage root: {name}")
        return target

    def put_object(self, name: str, data: bytes, content_type: str, visibility: str = PUBLIC_READ) -> str:
        target = self._path(name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise StorageFailure(f"Local store of {name} failed: {exc}") from exc
        return target.as_uri()

    def set_locator(self, prefix: str) -> str:
        return (self.root / prefix).resolve().as_uri() + "/"
