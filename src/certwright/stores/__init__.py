"""Certificate stores for issued keys and certificates."""

from certwright.stores.base import CertStore
from certwright.stores.memory import MemoryCertStore
from certwright.stores.secretsmanager import SecretsManagerStore

__all__ = ["CertStore", "MemoryCertStore", "SecretsManagerStore"]
