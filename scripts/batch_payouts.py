"""Submit a batch of vendor payouts from a JSON file.

The file holds a list of `{"vendor_account_id", "amount", "currency"?,
"description"?}` objects.
"""

import argparse
import json
from pathlib import Path

import httpx


def main() -> None:
    """CLI entrypoint for file-driven batch payouts."""

    parser = argparse.ArgumentParser(description="Run a payout batch from a JSON file.")
    parser.add_argument("path", type=Path)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="change-me")
    parser.add_argument("--timeout-seconds", type=float, default=600.0)
    args = parser.parse_args()

    items = json.loads(args.path.read_text(encoding="utf-8"))
    if not isinstance(items, list) or not items:
        raise SystemExit("batch file must contain a non-empty JSON list")

    resp = httpx.post(
        f"{args.base_url}/payouts/batch",
        json={"payouts": items},
        headers={"x-api-key": args.api_key},
        timeout=args.timeout_seconds,
    )
    resp.raise_for_status()
    summary = resp.json()
    print(f"total_processed={summary['total_processed']}")
    print(f"successful={summary['successful']}")
    print(f"failed={summary['failed']}")
    print(f"total_amount={summary['total_amount']}")
    for result in summary["results"]:
        if not result["success"]:
            error = result.get("error") or {}
            print(f"  {result['vendor_account_id']}: {error.get('kind')} {error.get('message')}")


if __name__ == "__main__":
    main()
