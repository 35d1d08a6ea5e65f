"""
Deployment Script for the FundingMe Smart Contract

Deploys the compiled FundingMe application and funds its account so it
can create boxes. Box reserves themselves are paid by the accounts
that create each box.
Run with: python scripts/deploy.py

Build the contract first:
    algokit compile py contracts/fundingme/contract.py --out-dir build

Environment variables:
- ALGOD_SERVER: Algorand node URL
- ALGOD_TOKEN: Algorand node token
- DEPLOYER_MNEMONIC: 25-word mnemonic for deployer account
- NETWORK: localnet | testnet | mainnet
- FUNDINGME_DONATION_CAPACITY: Donations per project round (default 64)
- FUNDINGME_REFUND_BATCH_SIZE: Refunds per resolve call (default 3, so a
  batch of donor accounts and donation boxes fits one call's references)
- FUNDINGME_APP_FUNDING: microALGOs sent to the app account (default 0.1 ALGO,
  its base minimum balance; owners and donors pay for the boxes they create)
"""

import base64
import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from algosdk import abi, account, logic, mnemonic, transaction
from algosdk.v2client import algod

from contracts.fundingme.client import get_algod_client

load_dotenv()

BUILD_DIR = Path("build")
APPROVAL_FILE = BUILD_DIR / "FundingMe.approval.teal"
CLEAR_FILE = BUILD_DIR / "FundingMe.clear.teal"

# project_count, donation_capacity, refund_batch_size
GLOBAL_INTS = 3
GLOBAL_BYTES = 0

CREATE_METHOD = abi.Method.from_signature("create(uint64,uint64)void")


def get_deployer_account() -> tuple[str, str]:
    """Get deployer account from mnemonic."""
    mnemonic_phrase = os.getenv("DEPLOYER_MNEMONIC")

    if not mnemonic_phrase:
        raise ValueError("DEPLOYER_MNEMONIC not set in environment")

    private_key = mnemonic.to_private_key(mnemonic_phrase)
    address = account.address_from_private_key(private_key)

    return private_key, address


def compile_teal(client: algod.AlgodClient, path: Path) -> bytes:
    """Compile TEAL source code using the Algorand node."""
    with open(path) as f:
        source = f.read()
    response = client.compile(source)
    return base64.b64decode(response["result"])


def deploy_contract(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    donation_capacity: int,
    refund_batch_size: int,
) -> tuple[int, str]:
    """Create the FundingMe application and return (app_id, tx_id)."""
    approval_program = compile_teal(client, APPROVAL_FILE)
    clear_program = compile_teal(client, CLEAR_FILE)

    uint64 = abi.ABIType.from_string("uint64")
    app_args = [
        CREATE_METHOD.get_selector(),
        uint64.encode(donation_capacity),
        uint64.encode(refund_batch_size),
    ]

    params = client.suggested_params()
    txn = transaction.ApplicationCreateTxn(
        sender=sender,
        sp=params,
        on_complete=transaction.OnComplete.NoOpOC,
        approval_program=approval_program,
        clear_program=clear_program,
        global_schema=transaction.StateSchema(GLOBAL_INTS, GLOBAL_BYTES),
        local_schema=transaction.StateSchema(0, 0),
        app_args=app_args,
    )

    signed_txn = txn.sign(private_key)
    tx_id = client.send_transaction(signed_txn)

    # Wait for confirmation
    result = transaction.wait_for_confirmation(client, tx_id, 4)
    return result["application-index"], tx_id


def fund_app_account(
    client: algod.AlgodClient,
    private_key: str,
    sender: str,
    app_id: int,
    amount: int,
) -> str:
    """Fund the application account with its base minimum balance."""
    params = client.suggested_params()
    txn = transaction.PaymentTxn(
        sender=sender,
        sp=params,
        receiver=logic.get_application_address(app_id),
        amt=amount,
    )

    signed_txn = txn.sign(private_key)
    tx_id = client.send_transaction(signed_txn)
    transaction.wait_for_confirmation(client, tx_id, 4)
    return tx_id


def main():
    """Main deployment function."""
    print("=" * 60)
    print("FundingMe - Smart Contract Deployment")
    print("=" * 60)

    network = os.getenv("NETWORK", "localnet")
    donation_capacity = int(os.getenv("FUNDINGME_DONATION_CAPACITY", "64"))
    refund_batch_size = int(os.getenv("FUNDINGME_REFUND_BATCH_SIZE", "3"))
    app_funding = int(os.getenv("FUNDINGME_APP_FUNDING", "100000"))
    print(f"\nNetwork: {network}")

    if not APPROVAL_FILE.exists() or not CLEAR_FILE.exists():
        print(f"\n❌ Compiled contract not found in {BUILD_DIR}/")
        print("   Run: algokit compile py contracts/fundingme/contract.py --out-dir build")
        sys.exit(1)

    client = get_algod_client()
    private_key, deployer = get_deployer_account()
    print(f"Deployer: {deployer}")

    # Check balance
    try:
        account_info = client.account_info(deployer)
        balance = account_info["amount"] / 1_000_000
        print(f"Balance: {balance:.6f} ALGO")

        if balance < 2:
            print("\nWarning: Low balance. Fund your account before deploying.")
            if network == "localnet":
                print("Run: algokit goal clerk send -a 10000000 -f <dispenser> -t " + deployer)
    except Exception as e:
        print(f"Could not check balance: {e}")

    print("\n" + "-" * 60)
    print("Contract Deployment")
    print("-" * 60)
    print(f"   Donation capacity: {donation_capacity}")
    print(f"   Refund batch size: {refund_batch_size}")

    try:
        app_id, tx_id = deploy_contract(
            client, private_key, deployer, donation_capacity, refund_batch_size,
        )
        print(f"   ✅ Deployed! App ID: {app_id} (TX: {tx_id})")

        fund_tx_id = fund_app_account(client, private_key, deployer, app_id, app_funding)
        print(f"   ✅ Funded app account with {app_funding / 1_000_000} ALGO (TX: {fund_tx_id})")
    except Exception as e:
        print(f"   ❌ Failed: {e}")
        sys.exit(1)

    # Save deployment info
    output_path = Path("deployment.json")
    deployment_info = {
        "network": network,
        "deployer": deployer,
        "app_id": app_id,
        "app_address": logic.get_application_address(app_id),
        "donation_capacity": donation_capacity,
        "refund_batch_size": refund_batch_size,
    }

    with open(output_path, "w") as f:
        json.dump(deployment_info, f, indent=2)

    print(f"\nDeployment info saved to: {output_path}")
    print("\n📝 Add this to your .env file:")
    print(f"   FUNDINGME_APP_ID={app_id}")


if __name__ == "__main__":
    main()
