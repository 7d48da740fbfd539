"""Print payouts awaiting reconciliation and failures flagged for manual review."""

import argparse
import json

import httpx


def main() -> None:
    """CLI entrypoint for the reconciliation report."""

    parser = argparse.ArgumentParser(description="Fetch the payout reconciliation report.")
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--api-key", default="change-me")
    parser.add_argument("--limit", type=int, default=100)
    parser.add_argument("--json", action="store_true", help="print the raw JSON report")
    args = parser.parse_args()

    resp = httpx.get(
        f"{args.base_url}/reconciliation",
        params={"limit": args.limit},
        headers={"x-api-key": args.api_key},
        timeout=10.0,
    )
    resp.raise_for_status()
    report = resp.json()
    if args.json:
        print(json.dumps(report, indent=2))
        return

    parked = report["reconciliation_required"]
    print(f"reconciliation_required={len(parked)}")
    for payout in parked:
        print(
            f"  payout={payout['id']} vendor={payout['vendor_account_id']} amount={payout['amount']} "
            f"{payout['currency']} transfer={payout['external_transfer_ref']} reason={payout['failure_reason']}"
        )
    failures = report["manual_review_failures"]
    print(f"manual_review_failures={len(failures)}")
    for failure in failures:
        print(
            f"  vendor={failure['vendor_account_id']} payout={failure['payout_id']} "
            f"kind={failure['error_kind']} retries={failure['retry_count']} {failure['error_message']}"
        )


if __name__ == "__main__":
    main()
