"""Cryptographic primitives for ACME protocol operations."""

import base64
import hashlib
import json

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from certwright.exceptions import SigningError

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey
PublicKey = rsa.RSAPublicKey | ec.EllipticCurvePublicKey

# curve name -> (JWK crv, coordinate size in bytes, JWS alg, hash)
_CURVES: dict[str, tuple[str, int, str, type[hashes.HashAlgorithm]]] = {
    "secp256r1": ("P-256", 32, "ES256", hashes.SHA256),
    "secp384r1": ("P-384", 48, "ES384", hashes.SHA384),
}


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: Key size in bits (2048 or 4096 recommended).

    Returns:
        RSA private key.
    """
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def generate_ecdsa_key(curve: str = "P-256") -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA private key.

    Args:
        curve: Curve name ("P-256" or "P-384").

    Returns:
        ECDSA private key.

    Raises:
        ValueError: If curve is not supported.
    """
    curves = {
        "P-256": ec.SECP256R1(),
        "P-384": ec.SECP384R1(),
    }
    if curve not in curves:
        raise ValueError(f"Unsupported curve: {curve}. Supported: {list(curves.keys())}")

    return ec.generate_private_key(curves[curve])


def load_private_key_pem(pem_data: str, password: bytes | None = None) -> PrivateKey:
    """Load a private key from PEM-encoded data.

    Args:
        pem_data: PEM-encoded private key string.
        password: Optional password for encrypted keys.

    Returns:
        RSA or ECDSA private key.

    Raises:
        ValueError: If PEM data is invalid or password is incorrect.
    """
    try:
        key = serialization.load_pem_private_key(
            pem_data.encode("utf-8"),
            password=password,
        )
    except ValueError as e:
        error_msg = str(e).lower()
        if "password" in error_msg or "decrypt" in error_msg:
            raise ValueError("Invalid password or encrypted key requires password") from e
        raise ValueError(f"Invalid PEM data: {e}") from e
    except TypeError as e:
        # encrypted key loaded without password
        raise ValueError("Invalid password or encrypted key requires password") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise ValueError(f"Unsupported key type: {type(key).__name__}")

    return key


def private_key_to_pem(key: PrivateKey) -> str:
    """Serialize a private key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def create_csr(
    key: PrivateKey,
    domains: list[str],
) -> x509.CertificateSigningRequest:
    """Create a Certificate Signing Request (CSR).

    Args:
        key: Private key to sign the CSR.
        domains: List of domain names to include in the CSR.

    Returns:
        Certificate Signing Request.

    Raises:
        ValueError: If domains list is empty.
    """
    if not domains:
        raise ValueError("At least one domain is required")

    # First domain is the Common Name
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, domains[0]),
        ]
    )

    san = x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains])

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(san, critical=False)
    )
    return builder.sign(key, hashes.SHA256())


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    return csr.public_bytes(serialization.Encoding.DER)


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Decode unpadded base64url."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def _int_to_base64url(n: int, length: int) -> str:
    """Convert an integer to base64url encoding with fixed length."""
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def _public_key(key: PrivateKey | PublicKey) -> PublicKey:
    if isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        return key.public_key()
    return key


def _curve_params(curve_name: str) -> tuple[str, int, str, type[hashes.HashAlgorithm]]:
    try:
        return _CURVES[curve_name]
    except KeyError:
        raise SigningError(f"Unsupported curve: {curve_name}") from None


def get_jwk(key: PrivateKey | PublicKey) -> dict[str, str]:
    """Get the JWK (JSON Web Key) representation of a public key.

    Only the members required by RFC 7638 are included, so the result is
    also the thumbprint input.

    Args:
        key: Private or public key.

    Returns:
        JWK dictionary.

    Raises:
        SigningError: If the key type or curve is unsupported.
    """
    public_key = _public_key(key)
    if isinstance(public_key, rsa.RSAPublicKey):
        numbers = public_key.public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(numbers.n, (numbers.n.bit_length() + 7) // 8),
            "e": _int_to_base64url(numbers.e, (numbers.e.bit_length() + 7) // 8),
        }
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        crv, coord_size, _, _ = _curve_params(public_key.curve.name)
        numbers = public_key.public_numbers()
        return {
            "kty": "EC",
            "crv": crv,
            "x": _int_to_base64url(numbers.x, coord_size),
            "y": _int_to_base64url(numbers.y, coord_size),
        }
    raise SigningError(f"Unsupported key type: {type(key).__name__}")


def jwk_thumbprint(key: PrivateKey | PublicKey) -> str:
    """Compute the JWK thumbprint of a key (RFC 7638).

    Args:
        key: Key to compute thumbprint for.

    Returns:
        Base64url-encoded SHA-256 thumbprint.
    """
    # Lexicographic member order, no whitespace
    canonical = json.dumps(get_jwk(key), sort_keys=True, separators=(",", ":"))
    return base64url_encode(hashlib.sha256(canonical.encode("utf-8")).digest())


def jws_algorithm(key: PrivateKey) -> str:
    """Name of the JWS algorithm used with this key."""
    if isinstance(key, rsa.RSAPrivateKey):
        return "RS256"
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return _curve_params(key.curve.name)[2]
    raise SigningError(f"Unsupported key type: {type(key).__name__}")


def sign(key: PrivateKey, data: bytes) -> bytes:
    """Sign ``data`` the way JWS expects for the key's algorithm.

    ECDSA signatures are returned as fixed-size ``r || s`` rather than DER.

    Raises:
        SigningError: If the key cannot sign.
    """
    if isinstance(key, rsa.RSAPrivateKey):
        return key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    if isinstance(key, ec.EllipticCurvePrivateKey):
        _, coord_size, _, hash_cls = _curve_params(key.curve.name)
        r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_cls())))
        return r.to_bytes(coord_size, byteorder="big") + s.to_bytes(coord_size, byteorder="big")
    raise SigningError(f"Unsupported key type: {type(key).__name__}")
