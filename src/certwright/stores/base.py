"""Abstract base class for certificate stores."""

from abc import ABC, abstractmethod


class CertStore(ABC):
    """Persists issued keys and certificates, keyed by primary domain."""

    @abstractmethod
    def store(self, key_pem: str, cert_pem: str, domain: str) -> None:
        """Persist the private key and certificate chain for ``domain``.

        Raises:
            StoreError: If either item cannot be written.
        """
        ...

    @abstractmethod
    def retrieve(self, domain: str) -> tuple[str, str]:
        """Return ``(key_pem, cert_pem)`` previously stored for ``domain``.

        Returns ``("", "")`` when nothing is stored yet; that is not an error.

        Raises:
            StoreError: If the backend cannot be read.
        """
        ...
