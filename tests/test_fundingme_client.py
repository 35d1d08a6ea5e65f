"""
Tests for the FundingMe off-chain client

Tests cover:
- Project address derivation
- Project and donation box decoding
- Status transition table
- Reading boxes through an algod client
- Box storage reserves and donor totals
"""

import base64

import pytest
from algosdk import account, encoding
from algosdk.error import AlgodHTTPError

from contracts.fundingme.client import (
    DONATION_BOX_RESERVE,
    DONATION_RECORD_SIZE,
    PROJECT_BOX_RESERVE,
    PROJECT_RECORD_SIZE,
    DonationRecord,
    ProjectStatus,
    box_reserve,
    can_transition,
    decode_donation_record,
    decode_project_record,
    derive_project_address,
    donation_box_name,
    donation_payment_amount,
    donor_total,
    project_box_name,
    read_donations,
    read_project,
)


def new_address() -> str:
    _, address = account.generate_account()
    return address


def project_bytes(
    owner: str,
    name: str = "Save the Reef",
    target: int = 1000,
    balance: int = 0,
    status: int = 0,
    donation_count: int = 0,
    settled_count: int = 0,
    project_round: int = 0,
) -> bytes:
    name_bytes = name.encode("utf-8")
    return (
        encoding.decode_address(owner)
        + target.to_bytes(8, "big")
        + balance.to_bytes(8, "big")
        + status.to_bytes(8, "big")
        + donation_count.to_bytes(8, "big")
        + settled_count.to_bytes(8, "big")
        + project_round.to_bytes(8, "big")
        + len(name_bytes).to_bytes(8, "big")
        + name_bytes.ljust(64, b"\x00")
    )


def donation_bytes(donor: str, amount: int) -> bytes:
    return encoding.decode_address(donor) + amount.to_bytes(8, "big")


class FakeAlgod:
    """Serves boxes from a dict the way algod's box endpoint does."""

    def __init__(self, boxes: dict):
        self.boxes = boxes
        self.requests = []

    def application_box_by_name(self, application_id, box_name):
        self.requests.append((application_id, box_name))
        if box_name not in self.boxes:
            raise AlgodHTTPError("box not found", code=404)
        return {
            "name": base64.b64encode(box_name).decode(),
            "value": base64.b64encode(self.boxes[box_name]).decode(),
        }


class TestProjectAddress:

    def test_derivation_is_deterministic(self):
        owner = new_address()

        assert derive_project_address(1001, owner) == derive_project_address(1001, owner)
        assert encoding.is_valid_address(derive_project_address(1001, owner))

    def test_derivation_is_scoped(self):
        owner = new_address()

        assert derive_project_address(1001, owner) != derive_project_address(1001, new_address())
        assert derive_project_address(1001, owner) != derive_project_address(1002, owner)
        assert derive_project_address(1001, owner) != owner

    def test_box_names(self):
        project = derive_project_address(1001, new_address())

        assert project_box_name(project) == encoding.decode_address(project)
        name = donation_box_name(project, 2, 5)
        assert len(name) == 1 + 32 + 8 + 8
        assert name.startswith(b"d" + encoding.decode_address(project))
        assert name.endswith((2).to_bytes(8, "big") + (5).to_bytes(8, "big"))


class TestRecordDecoding:

    def test_decode_project_record(self):
        owner = new_address()
        raw = project_bytes(
            owner,
            name="Clean Water",
            target=5000,
            balance=1200,
            status=ProjectStatus.ACTIVE,
            donation_count=3,
            settled_count=1,
            project_round=2,
        )

        record = decode_project_record(raw)

        assert len(raw) == PROJECT_RECORD_SIZE
        assert record.owner == owner
        assert record.name == "Clean Water"
        assert record.financial_target == 5000
        assert record.balance == 1200
        assert record.status is ProjectStatus.ACTIVE
        assert record.donation_count == 3
        assert record.settled_count == 1
        assert record.round == 2
        assert record.refund_in_progress

    def test_decode_project_record_rejects_bad_size(self):
        with pytest.raises(ValueError, match="Project record"):
            decode_project_record(b"\x00" * 10)

    def test_decode_project_record_rejects_unknown_status(self):
        raw = project_bytes(new_address(), status=7)

        with pytest.raises(ValueError):
            decode_project_record(raw)

    def test_decode_donation_record(self):
        donor = new_address()
        raw = donation_bytes(donor, 700)

        settled = decode_donation_record(raw, sequence=0, settled_count=1)
        pending = decode_donation_record(raw, sequence=1, settled_count=1)

        assert len(raw) == DONATION_RECORD_SIZE
        assert settled.donor == donor
        assert settled.amount == 700
        assert settled.settled
        assert not pending.settled


class TestStatusTransitions:

    def test_legal_transitions(self):
        assert can_transition(ProjectStatus.ACTIVE, ProjectStatus.TARGET_REACHED)
        assert can_transition(ProjectStatus.ACTIVE, ProjectStatus.FAILED)
        assert can_transition(ProjectStatus.TARGET_REACHED, ProjectStatus.SUCCESS)

    def test_illegal_transitions(self):
        assert not can_transition(ProjectStatus.TARGET_REACHED, ProjectStatus.FAILED)
        assert not can_transition(ProjectStatus.TARGET_REACHED, ProjectStatus.ACTIVE)
        assert not can_transition(ProjectStatus.ACTIVE, ProjectStatus.SUCCESS)
        for terminal in (ProjectStatus.SUCCESS, ProjectStatus.FAILED):
            assert terminal.is_terminal
            for target in ProjectStatus:
                assert not can_transition(terminal, target)


class TestReadProject:

    def test_read_project(self):
        owner = new_address()
        donor = new_address()
        project = derive_project_address(1001, owner)
        algod_client = FakeAlgod({
            project_box_name(project): project_bytes(
                owner, balance=900, donation_count=2, settled_count=0,
            ),
            donation_box_name(project, 0, 0): donation_bytes(donor, 400),
            donation_box_name(project, 0, 1): donation_bytes(owner, 500),
        })

        record = read_project(algod_client, 1001, owner)
        donations = read_donations(algod_client, 1001, project, record)

        assert record.balance == 900
        assert [donation.amount for donation in donations] == [400, 500]
        assert donations[0].donor == donor
        assert sum(donation.amount for donation in donations) == record.balance

    def test_read_missing_project(self):
        algod_client = FakeAlgod({})

        assert read_project(algod_client, 1001, new_address()) is None

    def test_read_project_propagates_other_errors(self):
        class BrokenAlgod:
            def application_box_by_name(self, application_id, box_name):
                raise AlgodHTTPError("node unavailable", code=503)

        with pytest.raises(AlgodHTTPError):
            read_project(BrokenAlgod(), 1001, new_address())

    def test_read_donations_reports_missing_box(self):
        owner = new_address()
        project = derive_project_address(1001, owner)
        record = decode_project_record(project_bytes(owner, donation_count=1))

        with pytest.raises(LookupError):
            read_donations(FakeAlgod({}), 1001, project, record)



class TestStorageReserve:

    def test_reserves_match_box_sizes(self):
        project = derive_project_address(1001, new_address())

        assert box_reserve(project_box_name(project), PROJECT_RECORD_SIZE) == PROJECT_BOX_RESERVE
        assert box_reserve(donation_box_name(project, 0, 0), DONATION_RECORD_SIZE) == DONATION_BOX_RESERVE

    def test_donation_payment_amount(self):
        assert donation_payment_amount(250) == 250 + DONATION_BOX_RESERVE

        with pytest.raises(ValueError):
            donation_payment_amount(0)

    def test_donor_total(self):
        donor = new_address()
        donations = [
            DonationRecord(sequence=0, donor=donor, amount=100, settled=False),
            DonationRecord(sequence=1, donor=new_address(), amount=300, settled=False),
            DonationRecord(sequence=2, donor=donor, amount=150, settled=False),
        ]

        assert donor_total(donations, donor) == 250
        assert donor_total(donations, new_address()) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
