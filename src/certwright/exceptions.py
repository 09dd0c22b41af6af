"""Exceptions raised by the certwright session engine."""

from typing import Any


class AcmeError(Exception):
    """Base exception for everything certwright raises."""


class TransportError(AcmeError):
    """Network or HTTP-layer failure talking to the ACME server.

    These are surfaced, never retried automatically. Callers may retry.
    """

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ProtocolError(AcmeError):
    """The server answered with something that is not a valid ACME response."""


class NoNonceError(ProtocolError):
    """A nonce was needed but none is held."""


class SigningError(AcmeError):
    """Malformed or unsupported key material. Never retryable."""


class ConfigurationError(AcmeError):
    """The session cannot proceed with what the caller supplied."""


class ChallengeError(ConfigurationError):
    """An authorization offers no challenge type this client can complete."""

    def __init__(self, message: str, domain: str | None = None):
        self.domain = domain
        super().__init__(message)


class CancelledError(AcmeError):
    """The operation was cancelled or its deadline passed."""


class PollTimeoutError(AcmeError):
    """A resource did not reach a terminal status within the attempt budget."""

    def __init__(self, url: str, last_status: str, attempts: int):
        self.url = url
        self.last_status = last_status
        self.attempts = attempts
        super().__init__(f"{url} still {last_status} after {attempts} polls")


class ValidationFailedError(AcmeError):
    """An authorization or order reached the terminal ``invalid`` status.

    Carries the server's problem document when one was supplied, so callers
    can tell a missing TXT record apart from a CAA refusal.
    """

    def __init__(
        self,
        detail: str,
        url: str | None = None,
        problem: dict[str, Any] | None = None,
    ):
        self.detail = detail
        self.url = url
        self.problem = problem
        super().__init__(detail)

    @property
    def type(self) -> str | None:
        """Problem type URI, if the server gave one."""
        if self.problem is None:
            return None
        return self.problem.get("type")


class ProblemError(AcmeError):
    """A well-formed ACME problem document (RFC 7807) returned by the server."""

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        subproblems: list[dict[str, Any]] | None = None,
        retry_after: int | None = None,
        title: str | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.subproblems = subproblems
        self.retry_after = retry_after
        self.title = title
        super().__init__(f"{type}: {detail}")

    @property
    def problem(self) -> dict[str, Any]:
        """The problem document as a plain dict."""
        data: dict[str, Any] = {
            "type": self.type,
            "detail": self.detail,
            "status": self.status_code,
        }
        if self.title:
            data["title"] = self.title
        if self.subproblems:
            data["subproblems"] = self.subproblems
        return data

    def to_kwargs(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "detail": self.detail,
            "status_code": self.status_code,
            "subproblems": self.subproblems,
            "retry_after": self.retry_after,
            "title": self.title,
        }

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        headers: dict[str, str] | None = None,
    ) -> "ProblemError":
        """Create a ProblemError from a JSON problem document.

        Routes to the appropriate subclass based on the problem type.

        Args:
            data: Parsed JSON problem document.
            status_code: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            ProblemError instance (or appropriate subclass).
        """
        retry_after = None
        if headers:
            retry_after = parse_retry_after(headers.get("Retry-After") or headers.get("retry-after"))
        error_type = data.get("type", "about:blank")

        kwargs: dict[str, Any] = {
            "type": error_type,
            "detail": data.get("detail", "Unknown error"),
            "status_code": data.get("status", status_code),
            "subproblems": data.get("subproblems"),
            "retry_after": retry_after,
            "title": data.get("title"),
        }

        subclass = _PROBLEM_TYPES.get(error_type)
        if subclass is not None:
            return subclass(**kwargs)
        return cls(**kwargs)

    def get_retry_seconds(self, default: int = 3600) -> int:
        """Get retry delay, falling back to default.

        Args:
            default: Default seconds if retry_after is not set.

        Returns:
            Number of seconds to wait before retrying.
        """
        return self.retry_after if self.retry_after is not None else default


class OrderError(ProblemError):
    """The server refused to create or finalize an order."""


class BadNonceError(ProblemError):
    """Bad nonce error (urn:ietf:params:acme:error:badNonce)."""


class RateLimitError(ProblemError):
    """Rate limit exceeded (urn:ietf:params:acme:error:rateLimited)."""

    @property
    def rate_limit_type(self) -> str:
        """Parse specific rate limit type from detail message.

        Returns:
            Rate limit type identifier.
        """
        detail = self.detail.lower()
        if "exact set" in detail:
            return "duplicate_certificate"
        elif "too many certificates" in detail:
            return "certificates_per_domain"
        elif "too many new orders" in detail:
            return "orders_per_account"
        elif "failed authorizations" in detail:
            return "failed_authorizations"
        return "unknown"


class DnsValidationError(ProblemError):
    """DNS validation failed (urn:ietf:params:acme:error:dns)."""


class CAAError(ProblemError):
    """CAA record forbids issuance (urn:ietf:params:acme:error:caa)."""


class UnauthorizedError(ProblemError):
    """Proof of control was not accepted (urn:ietf:params:acme:error:unauthorized)."""


class ServerInternalError(ProblemError):
    """ACME server internal error (urn:ietf:params:acme:error:serverInternal)."""


class ProviderError(AcmeError):
    """A DNS provider could not publish or remove a challenge record."""


class StoreError(AcmeError):
    """A certificate store could not persist or load key material."""


_PROBLEM_TYPES: dict[str, type[ProblemError]] = {
    "urn:ietf:params:acme:error:badNonce": BadNonceError,
    "urn:ietf:params:acme:error:rateLimited": RateLimitError,
    "urn:ietf:params:acme:error:dns": DnsValidationError,
    "urn:ietf:params:acme:error:caa": CAAError,
    "urn:ietf:params:acme:error:unauthorized": UnauthorizedError,
    "urn:ietf:params:acme:error:serverInternal": ServerInternalError,
}


def parse_retry_after(value: str | None) -> int | None:
    """Parse a Retry-After header (seconds or HTTP-date).

    Args:
        value: Retry-After header value.

    Returns:
        Seconds to wait, or None if not parseable.
    """
    if not value:
        return None
    try:
        return max(0, int(value))
    except ValueError:
        from datetime import datetime, timezone
        from email.utils import parsedate_to_datetime

        try:
            dt = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0, int((dt - datetime.now(timezone.utc)).total_seconds()))
