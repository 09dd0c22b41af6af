"""Order, authorization and challenge state machine (RFC 8555 Section 7.4-7.5).

An order moves ``pending -> ready -> processing -> valid``, or to ``invalid``
as soon as any authorization or the finalization is rejected::

    order = flow.cert_apply(["example.org"])
    for url in order.authorizations:
        authz = flow.fetch_challenges(url)
        flow.authorize(authz, select_dns_challenge(authz))
    order = flow.poll_for_status(order.url, Order, READY_TARGETS)
    order = flow.finalize(order, csr)
    pem = flow.download_certificate(order)

Every DNS record published for a challenge is removed again, whatever happens
between publishing and removal.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

import httpx
from cryptography import x509
from pydantic import BaseModel, ValidationError

from certwright._logging import SessionLogger, Timer, get_logger
from certwright.cancel import current_scope
from certwright.challenges.dns01 import acme_auth_hash, select_dns_challenge
from certwright.config import SessionConfig
from certwright.crypto import base64url_encode, csr_to_der
from certwright.exceptions import (
    ConfigurationError,
    OrderError,
    PollTimeoutError,
    ProblemError,
    ProtocolError,
    ProviderError,
    ValidationFailedError,
    parse_retry_after,
)
from certwright.models import (
    AcmeErrorType,
    Authorization,
    AuthorizationStatus,
    Challenge,
    Directory,
    Order,
    OrderStatus,
    Problem,
)
from certwright.providers.base import DnsProvider
from certwright.transport import PEM_CHAIN_CONTENT_TYPE, Transport

ResourceT = TypeVar("ResourceT", Authorization, Order, Challenge)

VALID_TARGETS = frozenset({"valid"})
READY_TARGETS = frozenset({OrderStatus.READY.value, OrderStatus.VALID.value})
# Non-terminal statuses worth waiting on
WAITING_STATUSES = frozenset({"pending", "processing", "ready"})


def _problem_dict(problem: Problem | None) -> dict[str, Any] | None:
    if problem is None:
        return None
    return problem.model_dump(exclude_none=True)


def _failure(resource: BaseModel) -> tuple[str, dict[str, Any] | None]:
    """Best available explanation for a resource that went invalid."""
    problem: Problem | None = None
    if isinstance(resource, Authorization):
        challenge = resource.failed_challenge()
        problem = challenge.error if challenge is not None else None
    elif isinstance(resource, (Order, Challenge)):
        problem = resource.error
    if problem is not None and problem.detail:
        return problem.detail, _problem_dict(problem)
    return f"{type(resource).__name__} is {getattr(resource, 'status', 'invalid')}", _problem_dict(
        problem
    )


def _as_order_error(error: ProblemError) -> ProblemError:
    # Specific problem types (rate limits, CAA, ...) pass through unchanged
    if type(error) is not ProblemError:
        return error
    return OrderError(**error.to_kwargs())


class OrderFlow:
    """Drives one domain set from new order to downloaded certificate.

    Args:
        transport: The session transport (already bound to an account Key ID).
        directory: The session directory.
        dns: DNS provider publishing challenge records.
        config: Polling and propagation settings.
        log: Logger adapter to report through.
    """

    def __init__(
        self,
        transport: Transport,
        directory: Directory,
        dns: DnsProvider,
        config: SessionConfig | None = None,
        log: SessionLogger | None = None,
    ) -> None:
        self.transport = transport
        self.directory = directory
        self.dns = dns
        self.config = config or SessionConfig()
        self._log = log or SessionLogger(get_logger(__name__))
        self._validated: set[str] = set()

    # -- parsing -------------------------------------------------------------

    @staticmethod
    def _parse(model: type[ResourceT], response: httpx.Response, url: str | None) -> ResourceT:
        try:
            resource = model.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"Unparseable {model.__name__} from {url}: {e}") from e
        if url is not None and hasattr(resource, "url"):
            resource.url = url
        return resource

    # -- operations ----------------------------------------------------------

    def cert_apply(self, domains: list[str]) -> Order:
        """Create a new order for ``domains``.

        Returns:
            The Order, with ``url`` set from the Location header.

        Raises:
            ConfigurationError: If no domain is given.
            OrderError: If the server rejects the order.
            ProtocolError: If the response is not a usable order.
        """
        if not domains:
            raise ConfigurationError("At least one domain is required")

        payload = {"identifiers": [{"type": "dns", "value": domain} for domain in domains]}
        try:
            response = self.transport.post(self.directory.new_order, payload)
        except ProblemError as e:
            raise _as_order_error(e) from e

        order_url = response.headers.get("Location")
        if not order_url:
            raise ProtocolError("newOrder response carried no Location header")
        order = self._parse(Order, response, order_url)
        if not order.authorizations:
            raise ProtocolError(f"Order {order_url} lists no authorizations")

        self._log.info(
            "Order created",
            extra={"order_url": order_url, "status": order.status, "authorizations": len(order.authorizations)},
        )
        return order

    def fetch_challenges(self, authorization_url: str) -> Authorization:
        """Fetch one authorization and the challenges it offers."""
        response = self.transport.post(authorization_url, None)
        authz = self._parse(Authorization, response, authorization_url)
        self._log.debug(
            "Authorization fetched",
            extra={
                "authorization_url": authorization_url,
                "status": authz.status,
                "challenge_types": [c.type for c in authz.challenges],
            },
        )
        if authz.status == AuthorizationStatus.VALID:
            self._validated.add(authorization_url)
        return authz

    def acme_auth_hash(self, token: str) -> str:
        """TXT value for ``token`` under the session's account key."""
        return acme_auth_hash(self.transport.signer.key, token)

    def challenge_ready(self, challenge_url: str) -> Challenge:
        """Tell the server the proof is published.

        Validation happens asynchronously on the server; this returns as soon
        as the request is accepted.
        """
        response = self.transport.post(challenge_url, {})
        challenge = self._parse(Challenge, response, None)
        self._log.info("Challenge signalled ready", extra={"challenge_url": challenge_url, "status": challenge.status})
        return challenge

    def poll_for_status(
        self,
        url: str,
        model: type[ResourceT],
        targets: frozenset[str] = VALID_TARGETS,
    ) -> ResourceT:
        """Poll ``url`` until its status is in ``targets`` or it fails.

        Waits ``poll_interval`` seconds between polls, multiplied by
        ``poll_backoff`` each time up to ``poll_max_interval``. A Retry-After
        header stretches the wait, within the same ceiling.

        Raises:
            ValidationFailedError: The resource reached a failed terminal status.
            PollTimeoutError: ``poll_max_attempts`` polls without a verdict.
            CancelledError: The current scope was cancelled or expired.
        """
        scope = current_scope()
        interval = self.config.poll_interval
        status = "unknown"

        for attempt in range(1, self.config.poll_max_attempts + 1):
            response = self.transport.post(url, None)
            resource = self._parse(model, response, url)
            status = str(resource.status)
            self._log.debug("Polled", extra={"url": url, "status": status, "attempt": attempt})

            if status in targets:
                if model is Authorization:
                    self._validated.add(url)
                return resource
            if status not in WAITING_STATUSES:
                detail, problem = _failure(resource)
                raise ValidationFailedError(detail, url=url, problem=problem)
            if attempt == self.config.poll_max_attempts:
                break

            delay = interval
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            if retry_after is not None:
                delay = max(delay, retry_after)
            scope.sleep(min(delay, self.config.poll_max_interval))
            interval = min(interval * self.config.poll_backoff, self.config.poll_max_interval)

        raise PollTimeoutError(url, status, self.config.poll_max_attempts)

    @contextmanager
    def provisioned(self, domain: str, value: str) -> Iterator[None]:
        """Publish the TXT record for the duration of the block.

        Removal runs exactly once for every add attempt, including when the
        add itself failed or the block raised or was cancelled.
        """
        try:
            self.dns.add_text_record(domain, value)
            self._log.info("Challenge record published", extra={"challenge_domain": domain})
            if not self.dns.wait_for_propagation(domain, value, timeout=self.config.propagation_timeout):
                raise ProviderError(f"TXT record for {domain} did not propagate")
            if self.config.propagation_delay:
                current_scope().sleep(self.config.propagation_delay)
            yield
        finally:
            try:
                self.dns.remove_text_record(domain, value)
            except Exception:
                self._log.warning("Failed removing challenge record", extra={"challenge_domain": domain}, exc_info=True)
            else:
                self._log.info("Challenge record removed", extra={"challenge_domain": domain})

    def authorize(self, authorization: Authorization, challenge: Challenge) -> Authorization:
        """Complete ``challenge`` and wait for ``authorization`` to become valid."""
        if authorization.url is None:
            raise ProtocolError("Authorization has no URL to poll")
        value = self.acme_auth_hash(challenge.token or "")
        with Timer() as timer, self.provisioned(authorization.domain, value):
            self.challenge_ready(challenge.url)
            authz = self.poll_for_status(authorization.url, Authorization, VALID_TARGETS)
        self._log.info(
            "Authorization valid",
            extra={"authorization_url": authorization.url, "elapsed_ms": round(timer.elapsed_ms, 1)},
        )
        return authz

    def authorize_all(self, order: Order) -> list[Authorization]:
        """Bring every authorization of ``order`` to ``valid``.

        All authorizations are fetched and a dns-01 challenge selected for
        each before any record is published, so an order that cannot be
        completed never touches DNS.
        """
        authorizations = [self.fetch_challenges(url) for url in order.authorizations]

        work: list[tuple[Authorization, Challenge]] = []
        for authz in authorizations:
            if authz.status == AuthorizationStatus.VALID:
                continue
            if authz.status != AuthorizationStatus.PENDING:
                detail, problem = _failure(authz)
                raise ValidationFailedError(detail, url=authz.url, problem=problem)
            work.append((authz, select_dns_challenge(authz)))

        return [self.authorize(authz, challenge) for authz, challenge in work] + [
            a for a in authorizations if a.status == AuthorizationStatus.VALID
        ]

    def finalize(self, order: Order, csr: x509.CertificateSigningRequest) -> Order:
        """Submit the CSR and wait for the order to become valid.

        Raises:
            OrderError: If the order is not ready or an authorization was
                never observed valid, or the server rejects the CSR.
        """
        unvalidated = [url for url in order.authorizations if url not in self._validated]
        if order.status != OrderStatus.READY or unvalidated:
            raise OrderError(
                type=AcmeErrorType.ORDER_NOT_READY,
                detail=f"Order is {order.status}; {len(unvalidated)} authorization(s) not valid",
                status_code=403,
            )

        payload = {"csr": base64url_encode(csr_to_der(csr))}
        try:
            response = self.transport.post(order.finalize, payload)
        except ProblemError as e:
            raise _as_order_error(e) from e
        finalized = self._parse(Order, response, order.url)
        self._log.info("Order finalized", extra={"order_url": order.url, "status": finalized.status})

        if finalized.status != OrderStatus.VALID:
            if order.url is None:
                raise ProtocolError("Order has no URL to poll")
            finalized = self.poll_for_status(order.url, Order, VALID_TARGETS)
        if not finalized.certificate:
            raise ProtocolError(f"Order {order.url} is valid but has no certificate URL")
        return finalized

    def download_certificate(self, order: Order) -> str:
        """Download the PEM certificate chain of a valid order."""
        if order.status != OrderStatus.VALID or not order.certificate:
            raise ProtocolError("Order has no certificate to download")
        response = self.transport.post(order.certificate, None, accept=PEM_CHAIN_CONTENT_TYPE)
        return response.text

    def issue(self, domains: list[str], csr: x509.CertificateSigningRequest) -> tuple[Order, str]:
        """Run the whole state machine for ``domains``.

        Returns:
            The valid order and the PEM certificate chain.
        """
        order = self.cert_apply(domains)
        self.authorize_all(order)
        if order.url is None:
            raise ProtocolError("Order has no URL to poll")
        order = self.poll_for_status(order.url, Order, READY_TARGETS)
        if order.status != OrderStatus.READY:
            # A reused order the server already finalized carries a
            # certificate for some earlier CSR, not for this one.
            raise ProtocolError(f"Order {order.url} is already {order.status}; it was not finalized with this CSR")
        order = self.finalize(order, csr)
        certificate_pem = self.download_certificate(order)
        return order, certificate_pem
