"""Abstract base class for DNS providers."""

from abc import ABC, abstractmethod


class DnsProvider(ABC):
    """Abstract interface for DNS providers.

    DNS providers publish and remove the TXT records used for ACME DNS-01
    challenge validation. Both operations must tolerate repeated calls for
    the same domain: removal is always attempted, even after a failed add.
    """

    @abstractmethod
    def add_text_record(self, domain: str, token: str) -> None:
        """Publish a TXT record for ACME challenge.

        Creates a TXT record at _acme-challenge.{domain} with the provided
        value. A leading ``*.`` label in ``domain`` is stripped.

        Args:
            domain: The domain name (without _acme-challenge prefix).
            token: The value to publish.

        Raises:
            ProviderError: If record creation fails.
        """
        ...

    @abstractmethod
    def remove_text_record(self, domain: str, token: str) -> None:
        """Remove the TXT record published by add_text_record().

        Args:
            domain: The domain name (without _acme-challenge prefix).
            token: The published value (for providers that need it).

        Raises:
            ProviderError: If record deletion fails.
        """
        ...

    def wait_for_propagation(self, domain: str, token: str, timeout: int = 120) -> bool:
        """Wait until the TXT record is visible to the ACME server.

        The default assumes records are visible as soon as they are written.

        Args:
            domain: The domain name.
            token: The expected token value.
            timeout: Maximum time to wait in seconds.

        Returns:
            True if the record propagated, False on timeout.
        """
        return True
