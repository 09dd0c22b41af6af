"""Pydantic models for ACME protocol resources."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

# =============================================================================
# ACME Protocol Enums (RFC 8555)
# =============================================================================


class AcmeErrorType(StrEnum):
    """ACME error types (RFC 8555 Section 6.7)."""

    ACCOUNT_DOES_NOT_EXIST = "urn:ietf:params:acme:error:accountDoesNotExist"
    BAD_CSR = "urn:ietf:params:acme:error:badCSR"
    BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
    BAD_PUBLIC_KEY = "urn:ietf:params:acme:error:badPublicKey"
    BAD_SIGNATURE_ALGORITHM = "urn:ietf:params:acme:error:badSignatureAlgorithm"
    CAA = "urn:ietf:params:acme:error:caa"
    COMPOUND = "urn:ietf:params:acme:error:compound"
    CONNECTION = "urn:ietf:params:acme:error:connection"
    DNS = "urn:ietf:params:acme:error:dns"
    EXTERNAL_ACCOUNT_REQUIRED = "urn:ietf:params:acme:error:externalAccountRequired"
    INCORRECT_RESPONSE = "urn:ietf:params:acme:error:incorrectResponse"
    INVALID_CONTACT = "urn:ietf:params:acme:error:invalidContact"
    MALFORMED = "urn:ietf:params:acme:error:malformed"
    ORDER_NOT_READY = "urn:ietf:params:acme:error:orderNotReady"
    RATE_LIMITED = "urn:ietf:params:acme:error:rateLimited"
    REJECTED_IDENTIFIER = "urn:ietf:params:acme:error:rejectedIdentifier"
    SERVER_INTERNAL = "urn:ietf:params:acme:error:serverInternal"
    UNAUTHORIZED = "urn:ietf:params:acme:error:unauthorized"
    UNSUPPORTED_CONTACT = "urn:ietf:params:acme:error:unsupportedContact"
    UNSUPPORTED_IDENTIFIER = "urn:ietf:params:acme:error:unsupportedIdentifier"
    USER_ACTION_REQUIRED = "urn:ietf:params:acme:error:userActionRequired"


class ChallengeStatus(StrEnum):
    """Challenge statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    """Authorization statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(StrEnum):
    """Order statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AccountStatus(StrEnum):
    """Account statuses (RFC 8555 Section 7.1.6)."""

    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


class ChallengeType(StrEnum):
    """Challenge types this client knows by name.

    Only dns-01 is ever attempted. The others are recognised so that an
    authorization offering them still parses.
    """

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"


class IdentifierType(StrEnum):
    """Identifier types (RFC 8555 Section 9.7.7)."""

    DNS = "dns"


# Statuses after which a resource never changes again.
TERMINAL_STATUSES = frozenset({"valid", "invalid", "deactivated", "expired", "revoked"})


# =============================================================================
# Pydantic Models
# =============================================================================


class Directory(BaseModel):
    """ACME directory resource (RFC 8555 Section 7.1.1)."""

    new_nonce: str = Field(alias="newNonce")
    new_account: str = Field(alias="newAccount")
    new_order: str = Field(alias="newOrder")
    revoke_cert: str | None = Field(default=None, alias="revokeCert")
    key_change: str | None = Field(default=None, alias="keyChange")
    meta: dict[str, Any] | None = None

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def terms_of_service(self) -> str | None:
        if self.meta is None:
            return None
        return self.meta.get("termsOfService")


class Account(BaseModel):
    """ACME account resource (RFC 8555 Section 7.1.2).

    ``key_id`` is not part of the resource body; it is the account URL the
    server returns in the ``Location`` header.
    """

    status: AccountStatus = AccountStatus.VALID
    contact: list[str] | None = None
    orders: str | None = None
    terms_of_service_agreed: bool | None = Field(default=None, alias="termsOfServiceAgreed")
    key_id: str | None = None

    model_config = {"populate_by_name": True}


class Identifier(BaseModel):
    """ACME identifier (RFC 8555 Section 7.1.3)."""

    type: IdentifierType
    value: str


class Subproblem(BaseModel):
    """Per-identifier problem inside a compound problem document."""

    type: str
    detail: str | None = None
    identifier: Identifier | None = None


class Problem(BaseModel):
    """Problem document (RFC 7807, RFC 8555 Section 6.7)."""

    type: str = "about:blank"
    title: str | None = None
    detail: str | None = None
    status: int | None = None
    subproblems: list[Subproblem] | None = None


class Challenge(BaseModel):
    """ACME challenge resource (RFC 8555 Section 7.5.1).

    ``type`` stays a plain string: servers may offer types this client has
    never heard of, and those must not break parsing.
    """

    type: str
    url: str
    status: ChallengeStatus
    token: str | None = None
    validated: datetime | None = None
    error: Problem | None = None


class Authorization(BaseModel):
    """ACME authorization resource (RFC 8555 Section 7.1.4)."""

    status: AuthorizationStatus
    identifier: Identifier
    challenges: list[Challenge]
    expires: datetime | None = None
    wildcard: bool | None = None
    url: str | None = Field(default=None, exclude=True)

    @property
    def domain(self) -> str:
        """The identifier as it appears in the certificate."""
        if self.wildcard:
            return f"*.{self.identifier.value}"
        return self.identifier.value

    def failed_challenge(self) -> Challenge | None:
        """The first challenge carrying an error, if any."""
        for challenge in self.challenges:
            if challenge.error is not None:
                return challenge
        return None


class Order(BaseModel):
    """ACME order resource (RFC 8555 Section 7.1.3)."""

    status: OrderStatus
    identifiers: list[Identifier]
    authorizations: list[str]
    finalize: str
    expires: datetime | None = None
    not_before: datetime | None = Field(default=None, alias="notBefore")
    not_after: datetime | None = Field(default=None, alias="notAfter")
    certificate: str | None = None
    error: Problem | None = None
    url: str | None = Field(default=None, exclude=True)

    model_config = {"populate_by_name": True}

    @property
    def domains(self) -> list[str]:
        return [identifier.value for identifier in self.identifiers]


class CertificateResult(BaseModel):
    """Result of certificate issuance."""

    certificate_pem: str
    private_key_pem: str
    expires_at: datetime
    domains: list[str]
    key_reused: bool = False
