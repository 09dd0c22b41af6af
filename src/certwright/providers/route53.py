"""AWS Route53 DNS provider for ACME DNS-01 challenges."""

import time
from typing import Any

import boto3
from botocore.exceptions import ClientError, NoCredentialsError

from certwright._logging import get_logger
from certwright.cancel import current_scope
from certwright.challenges.dns01 import record_name
from certwright.exceptions import ProviderError
from certwright.providers.base import DnsProvider

logger = get_logger(__name__)

INSTRUCTIONS = (
    "Configure AWS credentials as described at "
    "https://boto3.amazonaws.com/v1/documentation/api/latest/guide/credentials.html "
    "and grant route53:ListHostedZones, route53:ChangeResourceRecordSets and route53:GetChange."
)


class Route53Provider(DnsProvider):
    """DNS provider for AWS Route53 hosted zones.

    Args:
        region: AWS region for the boto3 session.
        ttl: TTL of the challenge record in seconds.
        poll_interval: Seconds between GetChange calls while waiting.
        client: Existing boto3 Route53 client to use instead of creating one.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        ttl: int = 20,
        poll_interval: float = 5.0,
        client: Any = None,
    ):
        self.ttl = ttl
        self.poll_interval = poll_interval
        self.r53 = client if client is not None else boto3.client("route53", region_name=region)
        self._changes: dict[tuple[str, str], str] = {}

    def _find_zone_id(self, name: str) -> str:
        """Find the id of the most specific public zone containing ``name``."""
        target_labels = name.rstrip(".").split(".")
        zones = []
        paginator = self.r53.get_paginator("list_hosted_zones")
        for page in paginator.paginate():
            for zone in page["HostedZones"]:
                if zone.get("Config", {}).get("PrivateZone"):
                    continue
                candidate_labels = zone["Name"].rstrip(".").split(".")
                if candidate_labels == target_labels[-len(candidate_labels) :]:
                    zones.append((zone["Name"], zone["Id"]))

        if not zones:
            raise ProviderError(f"Unable to find a Route53 hosted zone for {name}")

        # Longest matching zone name is the most specific
        zones.sort(key=lambda z: len(z[0]), reverse=True)
        return zones[0][1]

    def _change(self, action: str, domain: str, token: str) -> str:
        name = record_name(domain)
        zone_id = self._find_zone_id(name)
        response = self.r53.change_resource_record_sets(
            HostedZoneId=zone_id,
            ChangeBatch={
                "Comment": f"ACME dns-01 validation {action}",
                "Changes": [
                    {
                        "Action": action,
                        "ResourceRecordSet": {
                            "Name": name,
                            "Type": "TXT",
                            "TTL": self.ttl,
                            "ResourceRecords": [{"Value": f'"{token}"'}],
                        },
                    }
                ],
            },
        )
        return response["ChangeInfo"]["Id"]

    def add_text_record(self, domain: str, token: str) -> None:
        try:
            change_id = self._change("UPSERT", domain, token)
        except (NoCredentialsError, ClientError) as e:
            logger.debug("Route53 UPSERT failed", extra={"domain": domain}, exc_info=True)
            raise ProviderError(f"{e}\n{INSTRUCTIONS}") from e
        self._changes[(domain, token)] = change_id
        logger.info("TXT record created", extra={"domain": domain, "record_name": record_name(domain)})

    def remove_text_record(self, domain: str, token: str) -> None:
        self._changes.pop((domain, token), None)
        try:
            self._change("DELETE", domain, token)
        except ClientError as e:
            message = e.response.get("Error", {}).get("Message", "")
            if e.response.get("Error", {}).get("Code") == "InvalidChangeBatch" and "not found" in message:
                logger.debug("TXT record already gone", extra={"domain": domain})
                return
            raise ProviderError(str(e)) from e
        except NoCredentialsError as e:
            raise ProviderError(f"{e}\n{INSTRUCTIONS}") from e
        logger.info("TXT record deleted", extra={"domain": domain, "record_name": record_name(domain)})

    def wait_for_propagation(self, domain: str, token: str, timeout: int = 120) -> bool:
        """Wait for the change to reach all Route53 DNS servers (INSYNC)."""
        change_id = self._changes.get((domain, token))
        if change_id is None:
            return True
        scope = current_scope()
        deadline = time.monotonic() + timeout
        while True:
            scope.check()
            try:
                status = self.r53.get_change(Id=change_id)["ChangeInfo"]["Status"]
            except ClientError as e:
                raise ProviderError(str(e)) from e
            if status == "INSYNC":
                return True
            if time.monotonic() >= deadline:
                logger.warning(
                    "Timed out waiting for Route53 change",
                    extra={"domain": domain, "status": status},
                )
                return False
            scope.sleep(self.poll_interval)
