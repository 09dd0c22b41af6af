"""Pebble DNS provider for pebble-challtestsrv."""

import httpx

from certwright._logging import get_logger
from certwright.challenges.dns01 import record_name
from certwright.exceptions import ProviderError
from certwright.providers.base import DnsProvider

logger = get_logger(__name__)


class PebbleProvider(DnsProvider):
    """DNS provider for pebble-challtestsrv.

    Used for testing against the Pebble ACME server. pebble-challtestsrv
    serves the DNS answers Pebble queries during validation, so records are
    visible immediately.

    Args:
        challtestsrv_url: Base URL of the pebble-challtestsrv management API.
        timeout: HTTP request timeout in seconds.
    """

    def __init__(self, challtestsrv_url: str, timeout: float = 10.0):
        self.challtestsrv_url = challtestsrv_url.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, body: dict) -> None:
        try:
            response = httpx.post(f"{self.challtestsrv_url}{path}", json=body, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ProviderError(f"challtestsrv {path} failed: {e}") from e

    def add_text_record(self, domain: str, token: str) -> None:
        """Create a TXT record via the pebble-challtestsrv API."""
        host = f"{record_name(domain)}."
        self._post("/set-txt", {"host": host, "value": token})
        logger.debug("TXT record set", extra={"record_name": host})

    def remove_text_record(self, domain: str, token: str) -> None:
        """Clear the TXT record via the pebble-challtestsrv API."""
        host = f"{record_name(domain)}."
        self._post("/clear-txt", {"host": host})
        logger.debug("TXT record cleared", extra={"record_name": host})
