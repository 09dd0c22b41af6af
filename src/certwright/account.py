"""Account registration (RFC 8555 Section 7.3)."""

from pydantic import ValidationError

from certwright._logging import SessionLogger, get_logger
from certwright.exceptions import ProtocolError
from certwright.models import Account, Directory
from certwright.transport import Transport


def normalize_contacts(contacts: list[str] | None) -> list[str]:
    """Turn bare e-mail addresses into ``mailto:`` URIs.

    Blank entries are dropped; entries already carrying ``mailto:`` are kept.
    """
    normalized = []
    for contact in contacts or []:
        contact = contact.strip()
        if not contact:
            continue
        if not contact.startswith("mailto:"):
            contact = f"mailto:{contact}"
        normalized.append(contact)
    return normalized


class AccountManager:
    """Registers or looks up the account bound to the session key."""

    def __init__(
        self,
        transport: Transport,
        directory: Directory,
        log: SessionLogger | None = None,
    ) -> None:
        self.transport = transport
        self.directory = directory
        self._log = log or SessionLogger(get_logger(__name__))
        self.account: Account | None = None

    @property
    def key_id(self) -> str | None:
        return self.transport.signer.kid

    def ensure_account(self, contacts: list[str] | None = None) -> Account:
        """Register a new account or find the existing one for this key.

        The server answers 201 for a new account and 200 for a known key;
        either way the ``Location`` header is the Key ID used for every later
        request.

        Args:
            contacts: Contact e-mail addresses or mailto URIs.

        Returns:
            The Account resource with ``key_id`` set.

        Raises:
            ProtocolError: If the response lacks a Location header.
        """
        payload: dict = {"termsOfServiceAgreed": True}
        contact = normalize_contacts(contacts)
        if contact:
            payload["contact"] = contact

        response = self.transport.post(self.directory.new_account, payload, use_kid=False)

        key_id = response.headers.get("Location")
        if not key_id:
            raise ProtocolError("newAccount response carried no Location header")

        try:
            body = response.json() if response.content else {}
            account = Account.model_validate(body)
        except (ValueError, ValidationError) as e:
            raise ProtocolError(f"Unparseable account resource: {e}") from e

        account.key_id = key_id
        self.transport.signer.kid = key_id
        self.account = account

        self._log.info(
            "Account ready",
            extra={"key_id": key_id, "account_created": response.status_code == 201},
        )
        return account
