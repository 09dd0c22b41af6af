"""Session configuration."""

import os
from typing import Any

from pydantic import BaseModel, Field, field_validator

LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"
PEBBLE_DIRECTORY = "https://localhost:14000/dir"

DIRECTORY_ALIASES = {
    "production": LETS_ENCRYPT_DIRECTORY,
    "staging": LETS_ENCRYPT_STAGING_DIRECTORY,
    "local": PEBBLE_DIRECTORY,
}

ENV_PREFIX = "CERTWRIGHT_"


class SessionConfig(BaseModel):
    """Everything a Session needs besides its key and collaborators.

    Polling starts at ``poll_interval`` seconds and multiplies by
    ``poll_backoff`` after every non-terminal answer, never exceeding
    ``poll_max_interval``; it gives up after ``poll_max_attempts`` polls.
    """

    directory_url: str = LETS_ENCRYPT_STAGING_DIRECTORY
    contacts: list[str] = Field(default_factory=list)
    # Path to a CA bundle, False to disable verification, None for default
    ca_cert: str | bool | None = None
    http_timeout: float = 30.0

    poll_interval: float = Field(default=2.0, gt=0)
    poll_backoff: float = Field(default=1.5, ge=1.0)
    poll_max_interval: float = Field(default=30.0, gt=0)
    poll_max_attempts: int = Field(default=30, ge=1)

    propagation_timeout: int = 120
    propagation_delay: float = Field(default=0.0, ge=0)

    bad_nonce_retries: int = Field(default=1, ge=0)
    rate_limit_retries: int = Field(default=0, ge=0)
    rate_limit_max_wait: int = Field(default=60, ge=0)

    cert_key_size: int = 2048

    @field_validator("directory_url")
    @classmethod
    def _resolve_alias(cls, value: str) -> str:
        return DIRECTORY_ALIASES.get(value, value)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> "SessionConfig":
        """Build a config from ``CERTWRIGHT_*`` environment variables.

        ``CERTWRIGHT_CONTACTS`` is comma separated; ``CERTWRIGHT_CA_CERT`` may
        be ``false`` to disable TLS verification. Keyword overrides win over
        the environment.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if name == "contacts":
                values[name] = [c.strip() for c in raw.split(",") if c.strip()]
            elif name == "ca_cert" and raw.lower() in ("false", "0", "no"):
                values[name] = False
            else:
                values[name] = raw
        values.update(overrides)
        return cls.model_validate(values)
