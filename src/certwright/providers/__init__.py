"""DNS providers for ACME challenge validation."""

from certwright.providers.base import DnsProvider
from certwright.providers.pebble import PebbleProvider
from certwright.providers.route53 import Route53Provider

__all__ = ["DnsProvider", "PebbleProvider", "Route53Provider"]
