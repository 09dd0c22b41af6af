"""ACME challenge handling."""

from certwright.challenges.dns01 import (
    acme_auth_hash,
    compute_dns_txt_value,
    compute_key_authorization,
    record_name,
    select_dns_challenge,
)

__all__ = [
    "acme_auth_hash",
    "compute_key_authorization",
    "compute_dns_txt_value",
    "record_name",
    "select_dns_challenge",
]
