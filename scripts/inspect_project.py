"""
Inspect a FundingMe project.

Prints the project record and donation list for an owner address.

Usage:
    python scripts/inspect_project.py --owner <address>
    python scripts/inspect_project.py --owner <address> --app-id 1234
"""

import argparse
import os
import sys

from dotenv import load_dotenv
from algosdk import encoding

from contracts.fundingme.client import (
    derive_project_address,
    get_algod_client,
    read_donations,
    read_project,
)

load_dotenv()


def main():
    parser = argparse.ArgumentParser(description="Inspect a FundingMe project")
    parser.add_argument("--owner", required=True, help="Project owner address")
    parser.add_argument("--app-id", type=int, default=None, help="FundingMe application ID")
    args = parser.parse_args()

    app_id = args.app_id or int(os.getenv("FUNDINGME_APP_ID", "0"))
    if not app_id:
        print("❌ No app ID. Pass --app-id or set FUNDINGME_APP_ID")
        sys.exit(1)

    if not encoding.is_valid_address(args.owner):
        print(f"❌ Invalid owner address: {args.owner}")
        sys.exit(1)

    client = get_algod_client()
    project_address = derive_project_address(app_id, args.owner)

    print("=" * 60)
    print(f"Project of {args.owner}")
    print("=" * 60)
    print(f"Address: {project_address}")

    try:
        record = read_project(client, app_id, args.owner)
    except Exception as e:
        print(f"❌ Could not read project: {e}")
        sys.exit(1)

    if record is None:
        print("No project found for this owner")
        return

    print(f"Name: {record.name}")
    print(f"Round: {record.round}")
    print(f"Status: {record.status.name}")
    print(f"Target: {record.financial_target / 1_000_000:.6f} ALGO")
    print(f"Balance: {record.balance / 1_000_000:.6f} ALGO")
    print(f"Donations: {record.donation_count} ({record.settled_count} settled)")
    if record.refund_in_progress:
        print("⏳ Refund in progress, call resolve again to continue")

    print("\n" + "-" * 60)
    for donation in read_donations(client, app_id, project_address, record):
        marker = "✅" if donation.settled else "  "
        print(f"{marker} #{donation.sequence} {donation.donor} {donation.amount / 1_000_000:.6f} ALGO")


if __name__ == "__main__":
    main()
