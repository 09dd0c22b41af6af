"""Signed request envelopes (RFC 8555 Section 6.2).

Every request to an ACME server, except the directory fetch and newNonce, is a
JWS in flattened JSON serialization::

    {"protected": b64url(header), "payload": b64url(body), "signature": b64url(sig)}

The protected header names the algorithm, the nonce, the exact target URL and
either the account's public key (``jwk``) or its account URL (``kid``).
"""

import json
import threading
from typing import Any

from certwright.crypto import (
    PrivateKey,
    base64url_encode,
    get_jwk,
    jws_algorithm,
    jwk_thumbprint,
    sign,
)
from certwright.exceptions import ConfigurationError
from certwright.nonce import NonceTracker


def _encode_json(value: Any) -> str:
    return base64url_encode(json.dumps(value, separators=(",", ":")).encode("utf-8"))


def build_envelope(
    key: PrivateKey,
    payload: Any | None,
    url: str,
    nonce: str,
    kid: str | None = None,
) -> dict[str, str]:
    """Sign a payload as a flattened JWS for ACME.

    Args:
        key: Account private key.
        payload: JSON-serializable payload, or None for POST-as-GET.
        url: Exact target URL of the request.
        nonce: Replay nonce to embed.
        kid: Account URL. If None, the public JWK is embedded instead.

    Returns:
        Dict with ``protected``, ``payload`` and ``signature`` members.
    """
    protected: dict[str, Any] = {
        "alg": jws_algorithm(key),
        "nonce": nonce,
        "url": url,
    }
    if kid:
        protected["kid"] = kid
    else:
        protected["jwk"] = get_jwk(key)

    protected_b64 = _encode_json(protected)
    # POST-as-GET carries an empty payload, not an encoded empty string
    payload_b64 = "" if payload is None else _encode_json(payload)

    signature = sign(key, f"{protected_b64}.{payload_b64}".encode("ascii"))

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }


class RequestSigner:
    """Builds envelopes for one account key, spending one nonce per envelope.

    Args:
        key: Account private key.
        nonces: The session's nonce tracker.
    """

    def __init__(self, key: PrivateKey, nonces: NonceTracker) -> None:
        self.key = key
        self.nonces = nonces
        self.kid: str | None = None
        self._lock = threading.Lock()

    @property
    def thumbprint(self) -> str:
        return jwk_thumbprint(self.key)

    def sign(self, payload: Any | None, url: str, use_kid: bool = True) -> dict[str, str]:
        """Consume the held nonce and sign ``payload`` for ``url``.

        Raises:
            NoNonceError: If no nonce is held.
            ConfigurationError: If ``use_kid`` is set before an account exists.
            SigningError: If the key material cannot sign.
        """
        if use_kid and not self.kid:
            raise ConfigurationError("no account key ID yet; register the account first")
        with self._lock:
            nonce = self.nonces.consume()
            return build_envelope(
                self.key,
                payload,
                url,
                nonce,
                kid=self.kid if use_kid else None,
            )
