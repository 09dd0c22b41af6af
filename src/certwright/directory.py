"""Directory discovery (RFC 8555 Section 7.1.1)."""

from pydantic import ValidationError

from certwright._logging import get_logger
from certwright.exceptions import ProtocolError
from certwright.models import Directory
from certwright.transport import Transport

logger = get_logger(__name__)


def fetch_directory(transport: Transport, url: str) -> Directory:
    """Fetch and parse the directory document at ``url``.

    There is no retry: nothing else in a session can work without it.

    Raises:
        TransportError: If the document cannot be fetched.
        ProtocolError: If the body is not JSON or lacks required endpoints.
    """
    response = transport.get(url)
    try:
        data = response.json()
    except ValueError as e:
        raise ProtocolError(f"Directory at {url} is not JSON") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"Directory at {url} is not a JSON object")
    try:
        directory = Directory.model_validate(data)
    except ValidationError as e:
        missing = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ProtocolError(f"Directory at {url} is incomplete: {', '.join(missing)}") from e

    logger.debug("Directory resolved", extra={"url": url, "new_order": directory.new_order})
    return directory
