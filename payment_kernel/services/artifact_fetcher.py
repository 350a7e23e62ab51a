"""
Artifact content fetchers.

The artifact store never talks to the network directly: it is handed an
ArtifactFetcher.  HttpArtifactFetcher reads http(s) locators with httpx under
bounded timeouts; every failure degrades to "no content" / "unreachable" so
that missing evidence bytes never block recording a payment.
"""

from abc import ABC, abstractmethod
from urllib.parse import urlsplit

import httpx

from payment_kernel.exceptions import FetchTimeoutError
from payment_kernel.logging_config import get_logger

logger = get_logger("services.artifact_fetcher")


def locator_scheme(locator: str) -> str:
    return urlsplit(locator).scheme.lower()


class ArtifactFetcher(ABC):
    """Reads artifact bytes for a locator."""

    @abstractmethod
    def can_fetch(self, locator: str) -> bool:
        """True if this fetcher can attempt to read ``locator``."""

    @abstractmethod
    def fetch(self, locator: str) -> bytes | None:
        """Return the content, or None if it could not be read."""

    @abstractmethod
    def is_reachable(self, locator: str) -> bool:
        """Cheap reachability probe."""


class HttpArtifactFetcher(ArtifactFetcher):
    """
    httpx-backed fetcher for http and https locators.

    Contract:
        fetch(): GET with ``get_timeout`` seconds; non-2xx, timeouts and
        request errors return None.
        is_reachable(): HEAD with ``head_timeout`` seconds.

    Non-goals:
        - Does NOT retry.  A failed fetch falls back to a locator hash upstream.
    """

    SCHEMES = ("http", "https")

    def __init__(
        self,
        get_timeout: float = 5.0,
        head_timeout: float = 3.0,
        client: httpx.Client | None = None,
    ):
        self._get_timeout = get_timeout
        self._head_timeout = head_timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(follow_redirects=True)
        return self._client

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def can_fetch(self, locator: str) -> bool:
        return locator_scheme(locator) in self.SCHEMES

    def fetch(self, locator: str) -> bytes | None:
        if not self.can_fetch(locator):
            return None
        try:
            response = self._get_client().get(locator, timeout=self._get_timeout)
        except httpx.TimeoutException:
            logger.warning(
                "artifact_fetch_timeout",
                exc_info=FetchTimeoutError("GET", locator, f"no response within {self._get_timeout}s"),
                extra={"locator": locator, "timeout_seconds": self._get_timeout},
            )
            return None
        except httpx.RequestError as exc:
            logger.warning(
                "artifact_fetch_failed",
                extra={"locator": locator, "error": str(exc)},
            )
            return None

        if not response.is_success:
            logger.warning(
                "artifact_fetch_http_error",
                extra={"locator": locator, "status_code": response.status_code},
            )
            return None
        return response.content

    def is_reachable(self, locator: str) -> bool:
        if not self.can_fetch(locator):
            return False
        try:
            response = self._get_client().head(locator, timeout=self._head_timeout)
        except httpx.RequestError as exc:
            logger.warning(
                "artifact_probe_failed",
                extra={"locator": locator, "error": str(exc)},
            )
            return False
        return response.is_success
