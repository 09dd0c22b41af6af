"""Certwright - ACME dns-01 client for automated certificate issuance and renewal."""

from certwright.session import Session

__all__ = ["Session"]
__version__ = "0.1.0"
