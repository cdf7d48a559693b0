#!/usr/bin/env python3
"""
rolegate -- operator CLI for the authentication core.

Runs against the same database and settings as the API (DATABASE_URL,
SECRET_KEY, ROLES, ... from the environment or .env).

Usage:
  python main.py create-identity --role admin --identifier ops@example.com
  python main.py create-identity --role member --tenant acme --identifier bob@acme.test --password-stdin
  python main.py set-status 3f2c... disabled
  python main.py revoke-sessions 3f2c...
  python main.py purge-expired --retention-seconds 0
  python main.py generate-key

create-identity is the only way to create identities in roles that are not
open for self-registration (REGISTRATION_ROLES), e.g. the first admin.

Exit status: 0 on success, 1 when the auth core rejects the request.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth import audit as events
from auth.errors import AuthError
from auth.keys import generate_key_material
from auth.ledger import REVOKE_LOGOUT_ALL
from auth.models import IdentityStatus
from auth.services import AuthServices, build_services
from auth.sessions import set_identity_status
from core.config import get_settings


def _read_password(from_stdin: bool) -> str:
    """Read a password without echoing it; --password-stdin reads one line for scripting."""
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Repeat password: ")
    if first != second:
        raise ValueError("passwords do not match")
    return first


def _create_identity(services: AuthServices, args: argparse.Namespace) -> None:
    services.roles.resolve(args.role, args.tenant)
    password = _read_password(args.password_stdin)
    if len(password) < 8:
        raise ValueError("password must be at least 8 characters")
    identity = services.store.create(args.tenant, args.role, args.identifier, services.hasher.hash(password))
    print(identity.id)


def _set_status(services: AuthServices, args: argparse.Namespace) -> None:
    identity = set_identity_status(
        services.store, services.ledger, args.identity_id, IdentityStatus(args.status), services.audit
    )
    print(f"{identity.id} {identity.status.value}")


def _revoke_sessions(services: AuthServices, args: argparse.Namespace) -> None:
    services.store.find_by_id(args.identity_id)
    revoked = services.ledger.revoke_all_for_identity(args.identity_id, reason=REVOKE_LOGOUT_ALL)
    services.audit.record(events.LOGOUT_ALL, identity_id=args.identity_id, detail=f"revoked={revoked} source=cli")
    print(f"revoked {revoked} session(s)")


def _purge_expired(services: AuthServices, args: argparse.Namespace) -> None:
    retention = args.retention_seconds
    if retention is None:
        retention = get_settings().refresh_retention_seconds
    print(f"purged {services.ledger.purge_expired(retention)} record(s)")


_COMMANDS = {
    "create-identity": _create_identity,
    "set-status": _set_status,
    "revoke-sessions": _revoke_sessions,
    "purge-expired": _purge_expired,
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rolegate",
        description="Operator commands for the rolegate authentication core.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-identity --role admin --identifier ops@example.com
  echo 'S3cure-pass' | python main.py create-identity --role member --tenant acme \\
      --identifier bob@acme.test --password-stdin
  python main.py set-status 3f2c9e... disabled
  python main.py purge-expired
  python main.py generate-key >> .env
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from settings)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-identity", help="Create an identity in any configured role")
    create.add_argument("--role", required=True, help="Role namespace (must be in ROLES)")
    create.add_argument("--identifier", required=True, help="Login identifier, unique per tenant and role")
    create.add_argument("--tenant", default=None, help="Tenant id (required for tenant-scoped roles)")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )

    status = sub.add_parser("set-status", help="Enable or disable an identity")
    status.add_argument("identity_id")
    status.add_argument("status", choices=[s.value for s in IdentityStatus])

    revoke = sub.add_parser("revoke-sessions", help="Revoke every live refresh token of an identity")
    revoke.add_argument("identity_id")

    purge = sub.add_parser("purge-expired", help="Delete refresh chains expired past the retention window")
    purge.add_argument(
        "--retention-seconds",
        type=int,
        default=None,
        metavar="N",
        help="Keep records that expired less than N seconds ago (default: REFRESH_RETENTION_SECONDS)",
    )

    sub.add_parser("generate-key", help="Print 256 bits of key material for SECRET_KEY or SIGNING_KEY")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "generate-key":
        print(generate_key_material())
        return 0

    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    services = build_services(get_settings(), db_url=args.db_url)
    try:
        _COMMANDS[args.command](services, args)
    except AuthError as exc:
        print(f"  [!] {exc.code}: {exc.detail}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    finally:
        services.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
