"""Command-line access to the hub's REST surface.

Examples:
  python -m listing_client.cli list
  ADMIN_TOKEN=secret python -m listing_client.cli add --title "Sea view studio" --field beds=1
  python -m listing_client.cli --token secret delete 1717000000000
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Dict, List, Optional

from listing_core.errors import ListingSyncError
from listing_core.types import new_listing_id

from listing_client.rest_client import ListingsRestClient


def _parse_fields(pairs: List[str]) -> Dict[str, object]:
    fields: Dict[str, object] = {}
    for pair in pairs:
        if "=" not in pair:
            raise SystemExit(f"--field expects key=value, got {pair!r}")
        key, raw = pair.split("=", 1)
        try:
            fields[key] = json.loads(raw)
        except ValueError:
            fields[key] = raw
    return fields


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Listing hub REST client")
    ap.add_argument("--base-url", default=None, help="Hub REST base url (default: HUB_REST_BASE_URL)")
    ap.add_argument("--token", default=None, help="Admin token (default: ADMIN_TOKEN)")
    ap.add_argument("--timeout", type=float, default=None, help="Request timeout in seconds")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="Print all listings")

    login = sub.add_parser("login", help="Check the admin password")
    login.add_argument("password")

    add = sub.add_parser("add", help="Create a listing")
    add.add_argument("--id", default=None, help="Listing id (default: timestamp)")
    add.add_argument("--title", default="")
    add.add_argument("--field", action="append", default=[], help="Extra field key=value (JSON values allowed)")

    update = sub.add_parser("update", help="Replace a listing's fields")
    update.add_argument("id")
    update.add_argument("--field", action="append", default=[], help="Field key=value (JSON values allowed)")

    delete = sub.add_parser("delete", help="Delete a listing")
    delete.add_argument("id")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    client = ListingsRestClient(base_url=args.base_url, admin_token=args.token, timeout_s=args.timeout)
    try:
        if args.command == "list":
            result: object = client.get_listings()
        elif args.command == "login":
            result = {"ok": client.login(args.password)}
        elif args.command == "add":
            fields = _parse_fields(args.field)
            if "id" in fields:
                raise SystemExit("--field cannot set the id, use --id")
            listing = {"id": args.id or new_listing_id(), "title": args.title, **fields}
            result = client.create_listing(listing)
        elif args.command == "update":
            result = client.update_listing(args.id, _parse_fields(args.field))
        else:
            client.delete_listing(args.id)
            result = {"ok": True}
    except ListingSyncError as exc:
        print(f"error: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
