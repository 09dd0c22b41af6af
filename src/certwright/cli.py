"""Command-line entry point: issue or renew certificates via Route53 and Secrets Manager."""

import argparse
import logging
import sys
from pathlib import Path

from certwright._logging import StdoutSink
from certwright.config import DIRECTORY_ALIASES, SessionConfig
from certwright.crypto import PrivateKey, generate_ecdsa_key, load_private_key_pem, private_key_to_pem
from certwright.exceptions import AcmeError
from certwright.providers.route53 import Route53Provider
from certwright.session import Session
from certwright.stores.secretsmanager import SecretsManagerStore

logger = logging.getLogger("certwright.cli")


def split_list(value: str) -> list[str]:
    """Split a comma separated argument, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="certwright",
        description="Obtain or renew TLS certificates over ACME using DNS-01 "
        "validation in AWS Route53, storing them in AWS Secrets Manager.",
    )
    parser.add_argument(
        "--contacts",
        type=split_list,
        help="comma separated list of e-mail contacts",
    )
    parser.add_argument(
        "--domains",
        type=split_list,
        default=["example.org"],
        help="comma separated list of domains to request certificates for",
    )
    parser.add_argument(
        "--directory",
        help=f"ACME directory URL or one of: {', '.join(DIRECTORY_ALIASES)} (default: staging)",
    )
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    parser.add_argument(
        "--account-key",
        type=Path,
        help="PEM file holding the account key; created if missing",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="skip TLS verification of the ACME server (local testing only)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="print diagnostics")
    return parser


def load_or_create_account_key(path: Path | None) -> PrivateKey | None:
    """Load the account key at ``path``, creating and saving one if absent."""
    if path is None:
        return None
    if path.exists():
        return load_private_key_pem(path.read_text())
    key = generate_ecdsa_key("P-256")
    path.write_text(private_key_to_pem(key))
    path.chmod(0o600)
    return key


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    # With --verbose every session record goes to the stdout sink instead
    if not args.verbose:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict = {}
    if args.directory is not None:
        overrides["directory_url"] = args.directory
    if args.contacts is not None:
        overrides["contacts"] = args.contacts
    if args.insecure:
        overrides["ca_cert"] = False
    config = SessionConfig.from_env(**overrides)
    try:
        account_key = load_or_create_account_key(args.account_key)
    except (OSError, ValueError) as e:
        print(f"cannot use account key {args.account_key}: {e}", file=sys.stderr)
        return 2

    failed = []
    with Session(
        account_key=account_key,
        dns=Route53Provider(region=args.region),
        store=SecretsManagerStore(region=args.region),
        config=config,
        sink=StdoutSink() if args.verbose else None,
    ) as session:
        for domain in args.domains:
            try:
                result = session.fetch_or_renew_cert(domain)
            except AcmeError as e:
                logger.debug("Issuance failed", exc_info=True)
                print(f"failed to fetch or renew cert for {domain}: {e}", file=sys.stderr)
                failed.append(domain)
                continue
            print(f"{domain}: certificate valid until {result.expires_at.isoformat()}")

    return 1 if failed else 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
