"""
Off-chain helpers for the FundingMe application.

Derives project addresses, decodes project and donation boxes and reads
them from an algod node. Mirrors the layout in contract.py.
"""

import base64
import os
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from dotenv import load_dotenv
from algosdk import encoding
from algosdk.error import AlgodHTTPError
from algosdk.v2client import algod

load_dotenv()


PROJECT_DOMAIN_TAG = b"fundingme/project"
DONATION_KEY_PREFIX = b"d"

MAX_NAME_LENGTH = 64
PROJECT_RECORD_SIZE = 152
DONATION_RECORD_SIZE = 40

PROJECT_BOX_RESERVE = 76_100
DONATION_BOX_RESERVE = 38_100


def box_reserve(name: bytes, value_size: int) -> int:
    """Minimum balance a box adds to the application account."""
    return 2_500 + 400 * (len(name) + value_size)


class ProjectStatus(IntEnum):
    ACTIVE = 0
    TARGET_REACHED = 1
    SUCCESS = 2
    FAILED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (ProjectStatus.SUCCESS, ProjectStatus.FAILED)


LEGAL_TRANSITIONS = {
    ProjectStatus.ACTIVE: frozenset({ProjectStatus.TARGET_REACHED, ProjectStatus.FAILED}),
    ProjectStatus.TARGET_REACHED: frozenset({ProjectStatus.SUCCESS}),
    ProjectStatus.SUCCESS: frozenset(),
    ProjectStatus.FAILED: frozenset(),
}


def can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    """Same transition table the contract enforces."""
    return target in LEGAL_TRANSITIONS[current]


@dataclass(frozen=True)
class ProjectRecord:
    owner: str
    name: str
    financial_target: int
    balance: int
    status: ProjectStatus
    donation_count: int
    settled_count: int
    round: int

    @property
    def refund_in_progress(self) -> bool:
        return self.status == ProjectStatus.ACTIVE and self.settled_count > 0


@dataclass(frozen=True)
class DonationRecord:
    sequence: int
    donor: str
    amount: int
    settled: bool


def get_algod_client() -> algod.AlgodClient:
    """Create Algorand client from environment variables."""
    server = os.getenv("ALGOD_SERVER", "http://localhost:4001")
    token = os.getenv("ALGOD_TOKEN", "a" * 64)
    return algod.AlgodClient(token, server)


def derive_project_address(app_id: int, owner: str) -> str:
    """
    Compute the project address of an owner.

    Args:
        app_id: FundingMe application ID
        owner: Owner address

    Returns:
        Project address (also the project box name)
    """
    digest = encoding.checksum(
        PROJECT_DOMAIN_TAG + app_id.to_bytes(8, "big") + encoding.decode_address(owner)
    )
    return encoding.encode_address(digest)


def project_box_name(project_address: str) -> bytes:
    return encoding.decode_address(project_address)


def donation_box_name(project_address: str, project_round: int, sequence: int) -> bytes:
    return (
        DONATION_KEY_PREFIX
        + encoding.decode_address(project_address)
        + project_round.to_bytes(8, "big")
        + sequence.to_bytes(8, "big")
    )


def _uint64(raw: bytes, offset: int) -> int:
    return int.from_bytes(raw[offset:offset + 8], "big")


def decode_project_record(raw: bytes) -> ProjectRecord:
    """
    Decode a project box.

    Raises:
        ValueError: If the box does not hold a project record
    """
    if len(raw) != PROJECT_RECORD_SIZE:
        raise ValueError(f"Project record must be {PROJECT_RECORD_SIZE} bytes, got {len(raw)}")

    name_length = _uint64(raw, 80)
    if name_length > MAX_NAME_LENGTH:
        raise ValueError(f"Invalid name length: {name_length}")

    return ProjectRecord(
        owner=encoding.encode_address(raw[0:32]),
        name=raw[88:88 + name_length].decode("utf-8"),
        financial_target=_uint64(raw, 32),
        balance=_uint64(raw, 40),
        status=ProjectStatus(_uint64(raw, 48)),
        donation_count=_uint64(raw, 56),
        settled_count=_uint64(raw, 64),
        round=_uint64(raw, 72),
    )


def decode_donation_record(raw: bytes, sequence: int, settled_count: int) -> DonationRecord:
    """
    Decode a donation box.

    Donations are settled in sequence order, so a donation is settled once
    its sequence is below the project's settled count.
    """
    if len(raw) != DONATION_RECORD_SIZE:
        raise ValueError(f"Donation record must be {DONATION_RECORD_SIZE} bytes, got {len(raw)}")

    return DonationRecord(
        sequence=sequence,
        donor=encoding.encode_address(raw[0:32]),
        amount=_uint64(raw, 32),
        settled=sequence < settled_count,
    )


def _read_box(client: algod.AlgodClient, app_id: int, box_name: bytes) -> Optional[bytes]:
    try:
        response = client.application_box_by_name(app_id, box_name)
    except AlgodHTTPError as e:
        if e.code == 404:
            return None
        raise
    return base64.b64decode(response["value"])


def read_project(client: algod.AlgodClient, app_id: int, owner: str) -> Optional[ProjectRecord]:
    """
    Fetch the project of an owner.

    Returns:
        ProjectRecord, or None if the owner has no project
    """
    raw = _read_box(client, app_id, project_box_name(derive_project_address(app_id, owner)))
    if raw is None:
        return None
    return decode_project_record(raw)


def read_donations(
    client: algod.AlgodClient,
    app_id: int,
    project_address: str,
    record: ProjectRecord,
) -> list[DonationRecord]:
    """List the donations of the project's current round in sequence order."""
    donations = []
    for sequence in range(record.donation_count):
        box_name = donation_box_name(project_address, record.round, sequence)
        raw = _read_box(client, app_id, box_name)
        if raw is None:
            raise LookupError(f"Donation {sequence} of {project_address} is missing")
        donations.append(decode_donation_record(raw, sequence, record.settled_count))
    return donations


def donation_payment_amount(amount: int) -> int:
    """Amount of the grouped payment that donates `amount` microALGOs."""
    if amount <= 0:
        raise ValueError("Donation amount must be positive")
    return amount + DONATION_BOX_RESERVE


def donor_total(donations: list[DonationRecord], donor: str) -> int:
    """Total a donor gave in the listed donations."""
    return sum(donation.amount for donation in donations if donation.donor == donor)
