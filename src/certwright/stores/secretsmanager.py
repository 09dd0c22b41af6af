"""AWS Secrets Manager certificate store."""

import json
from typing import Any

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from certwright._logging import get_logger
from certwright.exceptions import StoreError
from certwright.stores.base import CertStore

logger = get_logger(__name__)

KEY_SUFFIX = "key"
CERT_SUFFIX = "crt"


def secret_name(domain: str, suffix: str) -> str:
    """Secret name for one half of a domain's key pair.

    The wildcard label is not allowed in secret names, so ``*`` becomes
    ``_``: ``*.example.org`` is stored as ``ssl__.example.org.key``.
    """
    return f"ssl_{domain.replace('*', '_', 1)}.{suffix}"


class SecretsManagerStore(CertStore):
    """Stores each PEM as an opaque JSON secret in AWS Secrets Manager.

    Args:
        region: AWS region for the boto3 session.
        client: Existing boto3 secretsmanager client to use instead of creating one.
    """

    def __init__(self, region: str = "us-east-1", client: Any = None):
        self.asm = client if client is not None else boto3.client("secretsmanager", region_name=region)

    def store(self, key_pem: str, cert_pem: str, domain: str) -> None:
        self._put(secret_name(domain, KEY_SUFFIX), key_pem)
        self._put(secret_name(domain, CERT_SUFFIX), cert_pem)
        logger.info("Certificate stored", extra={"domain": domain})

    def retrieve(self, domain: str) -> tuple[str, str]:
        key_pem = self._get(secret_name(domain, KEY_SUFFIX))
        cert_pem = self._get(secret_name(domain, CERT_SUFFIX))
        if not key_pem or not cert_pem:
            return "", ""
        return key_pem, cert_pem

    def _put(self, name: str, pem: str) -> None:
        secret = json.dumps({"type": "opaque", "value": pem})
        # Updates are the common case; a secret is only created once
        try:
            self.asm.update_secret(SecretId=name, SecretString=secret)
            return
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
                raise StoreError(f"Failed updating secret {name}: {e}") from e
        except NoCredentialsError as e:
            raise StoreError(str(e)) from e

        try:
            self.asm.create_secret(Name=name, SecretString=secret)
        except (ClientError, NoCredentialsError) as e:
            raise StoreError(f"Failed creating secret {name}: {e}") from e

    def _get(self, name: str) -> str:
        try:
            response = self.asm.get_secret_value(SecretId=name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return ""
            raise StoreError(f"Failed reading secret {name}: {e}") from e
        except NoCredentialsError as e:
            raise StoreError(str(e)) from e

        try:
            return json.loads(response["SecretString"])["value"]
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"Secret {name} is not a stored PEM") from e
