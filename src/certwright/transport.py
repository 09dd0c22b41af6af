"""HTTP transport for one ACME session."""

import json
import threading
from typing import Any

import httpx

from certwright._logging import SessionLogger, Timer, get_logger
from certwright.cancel import current_scope
from certwright.exceptions import (
    BadNonceError,
    ProblemError,
    RateLimitError,
    TransportError,
    parse_retry_after,
)
from certwright.jws import RequestSigner
from certwright.nonce import NonceTracker

JOSE_CONTENT_TYPE = "application/jose+json"
PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"


class Transport:
    """Executes ACME requests one at a time for a session.

    Owns the httpx client. Every response's ``Replay-Nonce`` is handed to the
    nonce tracker before anything else looks at it, so error responses refill
    the tracker too.

    Args:
        signer: Request signer bound to the session's key and nonce tracker.
        ca_cert: Path to CA certificate file, False to disable verification,
                 or None/True for default verification.
        timeout: Per-request timeout in seconds.
        bad_nonce_retries: How often a badNonce problem is retried.
        rate_limit_retries: How often a rateLimited problem is retried.
        rate_limit_max_wait: Longest Retry-After worth waiting for, in seconds.
        http: Existing httpx client to use instead of creating one.
        log: Logger adapter to report through.
    """

    def __init__(
        self,
        signer: RequestSigner,
        ca_cert: str | bool | None = None,
        timeout: float = 30.0,
        bad_nonce_retries: int = 1,
        rate_limit_retries: int = 0,
        rate_limit_max_wait: int = 60,
        http: httpx.Client | None = None,
        log: SessionLogger | None = None,
    ):
        self.signer = signer
        self.timeout = timeout
        self.bad_nonce_retries = bad_nonce_retries
        self.rate_limit_retries = rate_limit_retries
        self.rate_limit_max_wait = rate_limit_max_wait
        self._log = log or SessionLogger(get_logger(__name__))
        self._lock = threading.Lock()
        self._new_nonce_url: str | None = None

        if http is None:
            verify = True if ca_cert is None else ca_cert
            http = httpx.Client(verify=verify, headers={"User-Agent": "certwright"})
        self._http = http

    @property
    def nonces(self) -> NonceTracker:
        return self.signer.nonces

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        scope = current_scope()
        scope.check()
        try:
            with Timer() as timer:
                response = self._http.request(
                    method, url, timeout=scope.bound_timeout(self.timeout), **kwargs
                )
        except httpx.HTTPError as e:
            self._log.warning("Request failed", extra={"method": method, "url": url, "error": str(e)})
            raise TransportError(f"{method} {url} failed: {e}", url=url) from e

        self._log.debug(
            "ACME response",
            extra={
                "method": method,
                "url": url,
                "status_code": response.status_code,
                "elapsed_ms": round(timer.elapsed_ms, 1),
            },
        )
        self.nonces.replace(response.headers.get("Replay-Nonce"))
        return response

    def get(self, url: str) -> httpx.Response:
        """Unauthenticated GET, used only for the directory.

        Raises:
            TransportError: On network failure or a non-2xx status.
        """
        response = self._send("GET", url)
        if not response.is_success:
            raise TransportError(
                f"GET {url} returned HTTP {response.status_code}",
                url=url,
                status_code=response.status_code,
            )
        return response

    def new_nonce(self, url: str | None = None) -> str:
        """Fetch a fresh nonce from the directory's newNonce URL.

        Raises:
            TransportError: On network failure or when no nonce is returned.
        """
        if url is not None:
            self._new_nonce_url = url
        if self._new_nonce_url is None:
            raise TransportError("newNonce URL unknown; resolve the directory first")
        response = self._send("HEAD", self._new_nonce_url)
        if not response.is_success or not self.nonces.held:
            raise TransportError(
                f"newNonce returned HTTP {response.status_code} without a usable Replay-Nonce",
                url=self._new_nonce_url,
                status_code=response.status_code,
            )
        return self.nonces.current()

    def post(
        self,
        url: str,
        payload: Any | None,
        use_kid: bool = True,
        accept: str | None = None,
    ) -> httpx.Response:
        """Make a JWS-signed POST request to the ACME server.

        Args:
            url: The endpoint URL.
            payload: The request payload (dict for JSON, None for POST-as-GET).
            use_kid: If True, use kid (account URL) in JWS header.
                     If False, use jwk (for new account registration).
            accept: Optional Accept header.

        Returns:
            The successful HTTP response.

        Raises:
            ProblemError: If the ACME server returns an error.
            TransportError: On network failure.
        """
        headers = {"Content-Type": JOSE_CONTENT_TYPE}
        if accept:
            headers["Accept"] = accept

        bad_nonce_left = self.bad_nonce_retries
        rate_limit_left = self.rate_limit_retries

        with self._lock:
            while True:
                if not self.nonces.held:
                    self.new_nonce()
                body = self.signer.sign(payload, url, use_kid=use_kid)
                response = self._send(
                    "POST", url, content=json.dumps(body).encode("utf-8"), headers=headers
                )
                if response.is_success:
                    return response

                error = self._problem(response)
                if isinstance(error, BadNonceError) and bad_nonce_left > 0:
                    bad_nonce_left -= 1
                    self._log.info("Retrying after badNonce", extra={"url": url})
                    continue
                if (
                    isinstance(error, RateLimitError)
                    and rate_limit_left > 0
                    and error.retry_after is not None
                    and error.retry_after <= self.rate_limit_max_wait
                ):
                    rate_limit_left -= 1
                    self._log.info(
                        "Rate limited, waiting before retry",
                        extra={"url": url, "retry_after": error.retry_after},
                    )
                    current_scope().sleep(error.retry_after)
                    continue
                raise error

    def _problem(self, response: httpx.Response) -> ProblemError:
        """Decode an error response into a ProblemError."""
        headers = dict(response.headers)
        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = None
        if not isinstance(data, dict):
            return ProblemError(
                type="about:blank",
                detail=response.text or f"HTTP {response.status_code}",
                status_code=response.status_code,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        error = ProblemError.from_response(data, response.status_code, headers=headers)
        self._log.info(
            "ACME problem",
            extra={
                "url": str(response.request.url),
                "problem_type": error.type,
                "detail": error.detail,
                "status_code": response.status_code,
            },
        )
        return error
