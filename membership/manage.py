"""Operator commands for inspecting and repairing customer metadata."""

import argparse
import json
import sys
from typing import Optional

from .config import Settings
from .errors import CustomerNotFoundError, MembershipServiceError
from .metadata import read_state
from .service import MembershipService
from .storage import CustomerStore, StripeCustomerStore


def _find(store: CustomerStore, email: str):
    customer = store.find_by_email(email)
    if customer is None:
        raise CustomerNotFoundError(f"No customer found with email: {email}")
    return customer


def show_metadata(store: CustomerStore, email: str) -> dict:
    customer = _find(store, email)
    state = read_state(customer.metadata)
    return {
        "customer": customer.id,
        "metadata": customer.metadata,
        "ledger": json.loads(state.model_dump_json()),
    }


def set_metadata(store: CustomerStore, email: str, key: str, value: str) -> dict:
    customer = _find(store, email)
    return store.update_metadata(customer.id, {key: value}).metadata


def remove_metadata(store: CustomerStore, email: str, key: str) -> dict:
    customer = _find(store, email)
    return store.update_metadata(customer.id, {key: ""}).metadata


def clear_metadata(store: CustomerStore, email: str) -> dict:
    customer = _find(store, email)
    return store.update_metadata(customer.id, {key: "" for key in customer.metadata}).metadata


def reset_protectors(store: CustomerStore, email: str) -> dict:
    customer = _find(store, email)
    return MembershipService(store).reset_protectors(customer.id).metadata


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage Elite Sleep+ customer metadata")
    parser.add_argument("email", help="Customer email")
    sub = parser.add_subparsers(dest="action", required=True)
    sub.add_parser("get", help="Show raw metadata and the parsed ledger")
    set_cmd = sub.add_parser("set", help="Set one metadata key")
    set_cmd.add_argument("key")
    set_cmd.add_argument("value")
    remove_cmd = sub.add_parser("remove", help="Remove one metadata key")
    remove_cmd.add_argument("key")
    sub.add_parser("clear", help="Remove every metadata key")
    sub.add_parser("reset-protectors", help="Make all protector replacements available again")
    return parser


def run(args: argparse.Namespace, store: CustomerStore) -> dict:
    if args.action == "get":
        return show_metadata(store, args.email)
    if args.action == "set":
        return set_metadata(store, args.email, args.key, args.value)
    if args.action == "remove":
        return remove_metadata(store, args.email, args.key)
    if args.action == "clear":
        return clear_metadata(store, args.email)
    return reset_protectors(store, args.email)


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    try:
        result = run(args, StripeCustomerStore(settings.stripe_secret_key))
    except MembershipServiceError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(result, indent=2, default=str))


if __name__ == "__main__":
    main()
