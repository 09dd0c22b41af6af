"""In-process certificate store."""

from certwright.stores.base import CertStore


class MemoryCertStore(CertStore):
    """Keeps key and certificate PEMs in a dict. Lost when the process exits."""

    def __init__(self) -> None:
        self.items: dict[str, tuple[str, str]] = {}

    def store(self, key_pem: str, cert_pem: str, domain: str) -> None:
        self.items[domain] = (key_pem, cert_pem)

    def retrieve(self, domain: str) -> tuple[str, str]:
        return self.items.get(domain, ("", ""))
