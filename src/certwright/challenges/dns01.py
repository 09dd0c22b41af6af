"""DNS-01 key authorization (RFC 8555 Section 8.1 and 8.4)."""

import base64
import hashlib

from certwright.crypto import PrivateKey, jwk_thumbprint
from certwright.exceptions import ChallengeError
from certwright.models import Authorization, Challenge, ChallengeType

RECORD_PREFIX = "_acme-challenge"


def compute_key_authorization(token: str, thumbprint: str) -> str:
    """Compute the key authorization string.

    The key authorization is the token concatenated with the account
    key thumbprint, separated by a period.

    Args:
        token: The challenge token from the ACME server.
        thumbprint: The base64url-encoded SHA-256 thumbprint of the account key.

    Returns:
        The key authorization string (token.thumbprint).
    """
    return f"{token}.{thumbprint}"


def compute_dns_txt_value(key_authorization: str) -> str:
    """Compute the DNS TXT record value for DNS-01 challenge.

    The TXT record value is the base64url-encoded SHA-256 digest
    of the key authorization string.

    Args:
        key_authorization: The key authorization string.

    Returns:
        The base64url-encoded SHA-256 digest (without padding).
    """
    digest = hashlib.sha256(key_authorization.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def acme_auth_hash(key: PrivateKey, token: str) -> str:
    """TXT record value proving control of a domain for ``token``.

    Depends only on the account key and the token.
    """
    return compute_dns_txt_value(compute_key_authorization(token, jwk_thumbprint(key)))


def record_name(domain: str) -> str:
    """Name of the TXT record for ``domain``, without a trailing dot.

    A leading wildcard label is stripped: ``*.example.org`` and
    ``example.org`` are validated through the same record.
    """
    domain = domain.rstrip(".")
    if domain.startswith("*."):
        domain = domain[2:]
    return f"{RECORD_PREFIX}.{domain}"


def select_dns_challenge(authorization: Authorization) -> Challenge:
    """Pick the dns-01 challenge offered by ``authorization``.

    Raises:
        ChallengeError: If no dns-01 challenge is offered.
    """
    for challenge in authorization.challenges:
        if challenge.type == ChallengeType.DNS_01:
            if not challenge.token:
                raise ChallengeError(
                    f"dns-01 challenge for {authorization.domain} has no token",
                    domain=authorization.domain,
                )
            return challenge
    offered = ", ".join(c.type for c in authorization.challenges) or "none"
    raise ChallengeError(
        f"No dns-01 challenge offered for {authorization.domain} (offered: {offered})",
        domain=authorization.domain,
    )
