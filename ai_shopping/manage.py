"""
Operator CLI for API credentials and housekeeping.

Usage:
    python -m ai_shopping.manage create-key --label "shopping agent" --tier read_write
    python -m ai_shopping.manage list-keys
    python -m ai_shopping.manage revoke-key 3
    python -m ai_shopping.manage delete-key 3
    python -m ai_shopping.manage sweep
"""

import argparse
import json
import sys

from ai_shopping.auth import CredentialTier, create_key, delete_key, list_keys, revoke_key
from ai_shopping.config import get_settings
from ai_shopping.database import SessionLocal, init_db
from ai_shopping.errors import CommerceError
from ai_shopping.maintenance import run_sweeps


def _create_key(args, db) -> None:
    credential, secret = create_key(
        db,
        args.label,
        CredentialTier.parse(args.tier),
        rate_limit_read=args.rate_read,
        rate_limit_write=args.rate_write,
    )
    print(f"Created key id={credential.id} label={credential.label!r} tier={credential.tier.value}")
    print()
    print(f"  {secret}")
    print()
    print("Store this secret now; it cannot be shown again.")


def _list_keys(args, db) -> None:
    keys = list_keys(db)
    if args.json:
        print(json.dumps(keys, indent=2))
        return
    if not keys:
        print("No API keys.")
        return
    for key in keys:
        state = "revoked" if key["revoked"] else "active"
        print(f"{key['id']:>4}  {key['tier']:<10}  {state:<7}  last used {key['last_used_at'] or 'never':<26}  "
              f"{key['label']}")


def _revoke_key(args, db) -> None:
    revoke_key(db, args.key_id)
    print(f"Revoked key {args.key_id}.")


def _delete_key(args, db) -> None:
    delete_key(db, args.key_id)
    print(f"Deleted key {args.key_id}.")


def _sweep(args, db) -> None:
    removed = run_sweeps(SessionLocal, get_settings())
    print(f"Removed {removed['sessions']} expired session(s) and {removed['rate_buckets']} idle rate bucket(s).")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ai-shopping", description="AI shopping gateway administration")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-key", help="Create an API key and print its secret once")
    create.add_argument("--label", required=True, help="Who or what the key is for")
    create.add_argument("--tier", default="read", choices=[t.value for t in CredentialTier])
    create.add_argument("--rate-read", type=int, default=0, help="Read requests/minute (0 = default)")
    create.add_argument("--rate-write", type=int, default=0, help="Write requests/minute (0 = default)")
    create.set_defaults(func=_create_key)

    listing = sub.add_parser("list-keys", help="List API keys (never their secrets)")
    listing.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    listing.set_defaults(func=_list_keys)

    revoke = sub.add_parser("revoke-key", help="Revoke a key; it stays listed")
    revoke.add_argument("key_id", type=int)
    revoke.set_defaults(func=_revoke_key)

    delete = sub.add_parser("delete-key", help="Delete a key")
    delete.add_argument("key_id", type=int)
    delete.set_defaults(func=_delete_key)

    sweep = sub.add_parser("sweep", help="Delete expired sessions and idle rate buckets")
    sweep.set_defaults(func=_sweep)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    init_db()
    db = SessionLocal()
    try:
        args.func(args, db)
    except CommerceError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
