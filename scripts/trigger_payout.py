"""Trigger a manual payout for one vendor and print the outcome JSON."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for one-off manual payouts."""

    parser = argparse.ArgumentParser(description="Trigger a manual vendor payout.")
    parser.add_argument("vendor_account_id")
    parser.add_argument("--amount", type=int, default=None, help="minor units; omit to pay the pending balance")
    parser.add_argument("--currency", default=None)
    parser.add_argument("--description", default="Manual payout")
    parser.add_argument("--force", action="store_true", help="bypass the vendor minimum")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="change-me")
    args = parser.parse_args()

    body = {"description": args.description, "force": args.force}
    if args.amount is not None:
        body["amount"] = args.amount
    if args.currency:
        body["currency"] = args.currency
    resp = httpx.post(
        f"{args.base_url}/vendors/{args.vendor_account_id}/payouts",
        json=body,
        headers={"x-api-key": args.api_key},
        timeout=60.0,
    )
    print(json.dumps(resp.json(), indent=2))
    if resp.status_code >= 400:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
