"""ACME session for certificate issuance and renewal."""

import threading

import httpx
from cryptography import x509

from certwright._logging import LogSink, SessionLogger, get_logger, reset_domains, set_domains
from certwright.account import AccountManager
from certwright.challenges import dns01
from certwright.config import SessionConfig
from certwright.crypto import (
    PrivateKey,
    create_csr,
    generate_ecdsa_key,
    generate_rsa_key,
    load_private_key_pem,
    private_key_to_pem,
)
from certwright.directory import fetch_directory
from certwright.exceptions import ConfigurationError, ProtocolError, StoreError
from certwright.jws import RequestSigner
from certwright.models import (
    Account,
    Authorization,
    CertificateResult,
    Challenge,
    Directory,
    Order,
)
from certwright.nonce import NonceTracker
from certwright.order import VALID_TARGETS, OrderFlow, ResourceT
from certwright.providers.base import DnsProvider
from certwright.stores.base import CertStore
from certwright.transport import Transport


class Session:
    """One issuance run against an ACME server.

    Holds the account key, the nonce, the account Key ID and the directory,
    and drives orders through the DNS provider and certificate store. Requests
    within a session are strictly sequential; the session lock serializes
    callers that share it across threads. Use separate sessions to issue in
    parallel.

    Args:
        directory_url: URL of the ACME directory endpoint (overrides config).
        account_key: Private key for the ACME account. A P-256 key is
                     generated when omitted; persist it via account_key_pem()
                     to keep using the same account.
        dns: DNS provider for DNS-01 challenge validation.
        store: Certificate store for issued keys and certificates.
        contacts: Contact e-mail addresses (overrides config).
        config: Session configuration.
        sink: Optional sink receiving diagnostic messages.
        http: Existing httpx client to use.
    """

    def __init__(
        self,
        directory_url: str | None = None,
        account_key: PrivateKey | None = None,
        dns: DnsProvider | None = None,
        store: CertStore | None = None,
        contacts: list[str] | None = None,
        config: SessionConfig | None = None,
        sink: LogSink | None = None,
        http: httpx.Client | None = None,
    ):
        config = config or SessionConfig()
        updates: dict = {}
        if directory_url is not None:
            updates["directory_url"] = directory_url
        if contacts is not None:
            updates["contacts"] = contacts
        self.config = SessionConfig.model_validate({**config.model_dump(), **updates})

        self.key_generated = account_key is None
        self.account_key = account_key if account_key is not None else generate_ecdsa_key("P-256")
        self.dns = dns
        self.store = store

        self.log = SessionLogger(get_logger(__name__), sink)
        self.nonces = NonceTracker(log=self.log.child("nonce"))
        self.signer = RequestSigner(self.account_key, self.nonces)
        self.transport = Transport(
            self.signer,
            ca_cert=self.config.ca_cert,
            timeout=self.config.http_timeout,
            bad_nonce_retries=self.config.bad_nonce_retries,
            rate_limit_retries=self.config.rate_limit_retries,
            rate_limit_max_wait=self.config.rate_limit_max_wait,
            http=http,
            log=self.log.child("transport"),
        )

        self._lock = threading.RLock()
        self._directory: Directory | None = None
        self._accounts: AccountManager | None = None
        self._flow: OrderFlow | None = None
        self.account: Account | None = None

    def close(self) -> None:
        """Close the HTTP client."""
        self.transport.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # -- session state -------------------------------------------------------

    @property
    def directory(self) -> Directory:
        """The ACME directory, fetched on first use together with a nonce."""
        with self._lock:
            if self._directory is None:
                directory = fetch_directory(self.transport, self.config.directory_url)
                self.transport.new_nonce(directory.new_nonce)
                self._directory = directory
            return self._directory

    @property
    def key_id(self) -> str | None:
        """The account URL (set after ensure_account())."""
        return self.signer.kid

    @property
    def orders(self) -> OrderFlow:
        with self._lock:
            if self._flow is None:
                if self.dns is None:
                    raise ConfigurationError("No DNS provider configured")
                self._flow = OrderFlow(
                    self.transport,
                    self.directory,
                    self.dns,
                    config=self.config,
                    log=self.log.child("order"),
                )
            return self._flow

    def account_key_pem(self) -> str:
        """The account key as PEM, for the caller to persist."""
        return private_key_to_pem(self.account_key)

    # -- protocol operations -------------------------------------------------

    def ensure_account(self, contacts: list[str] | None = None) -> Account:
        """Register the account for this key, or resolve the existing one.

        Safe to call repeatedly: the server maps the same key to the same
        Key ID every time.
        """
        with self._lock:
            if self._accounts is None:
                self._accounts = AccountManager(self.transport, self.directory, log=self.log.child("account"))
            self.account = self._accounts.ensure_account(
                contacts if contacts is not None else self.config.contacts
            )
            return self.account

    def _require_account(self) -> None:
        if self.key_id is None:
            self.ensure_account()

    def cert_apply(self, domains: list[str]) -> Order:
        with self._lock:
            self._require_account()
            return self.orders.cert_apply(domains)

    def fetch_challenges(self, authorization_url: str) -> Authorization:
        with self._lock:
            self._require_account()
            return self.orders.fetch_challenges(authorization_url)

    def acme_auth_hash(self, token: str) -> str:
        """TXT record value for ``token`` (pure; no server round trip)."""
        return dns01.acme_auth_hash(self.account_key, token)

    def challenge_ready(self, challenge_url: str) -> Challenge:
        with self._lock:
            self._require_account()
            return self.orders.challenge_ready(challenge_url)

    def poll_for_status(
        self,
        url: str,
        model: type[ResourceT] = Authorization,
        targets: frozenset[str] = VALID_TARGETS,
    ) -> ResourceT:
        with self._lock:
            self._require_account()
            return self.orders.poll_for_status(url, model, targets)

    def finalize(self, order: Order, csr: x509.CertificateSigningRequest) -> Order:
        with self._lock:
            self._require_account()
            return self.orders.finalize(order, csr)

    def download_certificate(self, order: Order) -> str:
        with self._lock:
            self._require_account()
            return self.orders.download_certificate(order)

    # -- high-level flows ----------------------------------------------------

    def obtain_certificate(
        self,
        domains: list[str],
        cert_key: PrivateKey | None = None,
    ) -> CertificateResult:
        """Obtain a certificate for the given domains.

        This is the main high-level method that:
        1. Registers or resolves the account
        2. Creates an order
        3. Completes all authorizations via DNS-01
        4. Finalizes the order with a CSR for ``cert_key``
        5. Downloads the certificate

        Args:
            domains: Domain names; the first becomes the Common Name.
            cert_key: Certificate key. An RSA key is generated if omitted.

        Returns:
            CertificateResult with certificate_pem, private_key_pem, and expires_at.
        """
        domains = [d.strip() for d in domains if d and d.strip()]
        if not domains:
            raise ConfigurationError("No domain passed in")

        key_reused = cert_key is not None
        if cert_key is None:
            cert_key = generate_rsa_key(self.config.cert_key_size)

        with self._lock:
            token = set_domains(domains)
            try:
                self._require_account()
                csr = create_csr(cert_key, domains)
                order, certificate_pem = self.orders.issue(domains, csr)

                try:
                    cert = x509.load_pem_x509_certificate(certificate_pem.encode())
                except ValueError as e:
                    raise ProtocolError(f"Downloaded certificate is not PEM: {e}") from e

                self.log.info(
                    "Certificate issued",
                    extra={"order_url": order.url, "expires_at": cert.not_valid_after_utc.isoformat()},
                )
                return CertificateResult(
                    certificate_pem=certificate_pem,
                    private_key_pem=private_key_to_pem(cert_key),
                    expires_at=cert.not_valid_after_utc,
                    domains=domains,
                    key_reused=key_reused,
                )
            finally:
                reset_domains(token)

    def fetch_or_renew_cert(self, domain: str | list[str]) -> CertificateResult:
        """Issue or renew the certificate for ``domain`` and store it.

        If the store already holds a key for the primary domain, that key is
        reused for the renewal; otherwise a new certificate key is generated.
        Not meant to run in parallel on one session.

        Args:
            domain: One domain, or a domain set whose first entry is primary.
        """
        domains = [domain] if isinstance(domain, str) else list(domain)
        domains = [d.strip() for d in domains if d and d.strip()]
        if not domains:
            raise ConfigurationError("No domain passed in")
        if self.store is None:
            raise ConfigurationError("No certificate store configured")
        primary = domains[0]

        key_pem, _ = self.store.retrieve(primary)
        cert_key: PrivateKey | None = None
        if key_pem:
            try:
                cert_key = load_private_key_pem(key_pem)
            except ValueError as e:
                raise StoreError(f"Stored key for {primary} is unusable: {e}") from e

        result = self.obtain_certificate(domains, cert_key)
        self.store.store(result.private_key_pem, result.certificate_pem, primary)
        self.log.info("Certificate stored", extra={"domain": primary, "key_reused": result.key_reused})
        return result
