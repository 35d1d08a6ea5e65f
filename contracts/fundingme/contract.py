"""
FundingMe Crowdfunding Smart Contract

Owner-scoped fundraising projects with custodied donations.
Every owner account has exactly one project address, derived from the
owner and this application, so anyone can find a project without a lookup.

Donations are held by the application account until the project is
resolved:
- Target reached: the whole balance is paid out to the owner
- Target not reached: every donor gets back exactly what they gave

Algorand Primitives Used:
- AVM Application (smart contract)
- Grouped payment transactions (donations into custody)
- Inner Transactions (payout and refunds)
- Boxes (project records and donation records)
- ARC-28 events
"""

from algopy import (
    ARC4Contract,
    Account,
    Bytes,
    Global,
    GlobalState,
    String,
    Txn,
    UInt64,
    arc4,
    gtxn,
    itxn,
    op,
    subroutine,
    urange,
)


# Project status constants
STATUS_ACTIVE = 0
STATUS_TARGET_REACHED = 1
STATUS_SUCCESS = 2
STATUS_FAILED = 3

# Domain separation tag for project addresses
PROJECT_DOMAIN_TAG = b"fundingme/project"
DONATION_KEY_PREFIX = b"d"

MAX_NAME_LENGTH = 64
MAX_DONATION_CAPACITY = 1024
# Inner transaction limit of a single application call
MAX_REFUNDS_PER_CALL = 16
MAX_UINT64 = 2**64 - 1

# Project record layout (fixed size, reserved at creation)
OWNER_OFFSET = 0
TARGET_OFFSET = 32
BALANCE_OFFSET = 40
STATUS_OFFSET = 48
DONATION_COUNT_OFFSET = 56
SETTLED_COUNT_OFFSET = 64
ROUND_OFFSET = 72
NAME_LENGTH_OFFSET = 80
NAME_OFFSET = 88
PROJECT_RECORD_SIZE = 152

# Donation record layout: donor (32) + amount (8)
DONATION_AMOUNT_OFFSET = 32
DONATION_RECORD_SIZE = 40

# Box storage reserve paid by whoever creates the box:
# 2500 + 400 * (key size + value size) microALGOs
PROJECT_BOX_RESERVE = 76_100      # 32-byte key, 152-byte record
DONATION_BOX_RESERVE = 38_100     # 49-byte key, 40-byte record


class ProjectCreated(arc4.Struct):
    project: arc4.Address
    owner: arc4.Address
    financial_target: arc4.UInt64
    project_round: arc4.UInt64


class DonationRecorded(arc4.Struct):
    project: arc4.Address
    donor: arc4.Address
    amount: arc4.UInt64
    balance: arc4.UInt64
    status: arc4.UInt64


class RefundIssued(arc4.Struct):
    project: arc4.Address
    donor: arc4.Address
    amount: arc4.UInt64


class ProjectResolved(arc4.Struct):
    project: arc4.Address
    status: arc4.UInt64


class ProjectInfo(arc4.Struct):
    found: arc4.Bool
    owner: arc4.Address
    name: arc4.String
    financial_target: arc4.UInt64
    balance: arc4.UInt64
    status: arc4.UInt64
    donation_count: arc4.UInt64
    settled_count: arc4.UInt64
    project_round: arc4.UInt64


class DonationInfo(arc4.Struct):
    donor: arc4.Address
    amount: arc4.UInt64
    settled: arc4.Bool


@subroutine
def can_transition(current: UInt64, target: UInt64) -> bool:
    """
    Status transition table.

    Active -> TargetReached, Active -> Failed, TargetReached -> Success.
    Success and Failed are terminal.
    """
    if current == STATUS_ACTIVE:
        return target == STATUS_TARGET_REACHED or target == STATUS_FAILED
    if current == STATUS_TARGET_REACHED:
        return target == STATUS_SUCCESS
    return False


@subroutine
def is_terminal(status: UInt64) -> bool:
    return status == STATUS_SUCCESS or status == STATUS_FAILED


@subroutine
def can_receive(receiver: Account, amount: UInt64) -> bool:
    """A payment that leaves the receiver below the minimum balance is rejected."""
    return receiver.balance + amount >= Global.min_balance


@subroutine
def spendable_custody() -> UInt64:
    """Application balance above the reserve its account and boxes require."""
    app = Global.current_application_address
    return app.balance - app.min_balance


@subroutine
def check_transfer_in(payment: gtxn.PaymentTransaction) -> None:
    assert payment.receiver == Global.current_application_address, "TransferFailed"
    assert payment.sender == Txn.sender, "TransferFailed"
    # Only payment.amount is recorded
    assert payment.close_remainder_to == Global.zero_address, "TransferFailed"
    assert payment.rekey_to == Global.zero_address, "TransferFailed"


@subroutine
def read_field(record: Bytes, offset: UInt64) -> UInt64:
    return op.btoi(op.extract(record, offset, 8))


@subroutine
def write_field(record: Bytes, offset: UInt64, value: UInt64) -> Bytes:
    return (
        op.extract(record, 0, offset)
        + op.itob(value)
        + op.extract(record, offset + 8, PROJECT_RECORD_SIZE - offset - 8)
    )


@subroutine
def transition(record: Bytes, target: UInt64) -> Bytes:
    assert can_transition(read_field(record, STATUS_OFFSET), target), "InvalidProjectStatus"
    return write_field(record, STATUS_OFFSET, target)


class FundingMe(ARC4Contract):
    """
    Crowdfunding with custodied donations and all-or-nothing resolution.

    State Schema:
    - Global State:
        - project_count: Total projects created (all rounds)
        - donation_capacity: Maximum donations per project round
        - refund_batch_size: Maximum refunds issued by one resolve call

    - Boxes:
        - {project_address}: Project record (PROJECT_RECORD_SIZE bytes)
        - d{project_address}{round}{sequence}: Donation record

    Box reserves are paid by whoever creates the box: the owner for the
    project record, the donor for each donation record. Payouts and refunds
    only spend the balance above the application account's minimum balance.
    """

    def __init__(self) -> None:
        self.project_count = GlobalState(UInt64)
        self.donation_capacity = GlobalState(UInt64)
        self.refund_batch_size = GlobalState(UInt64)

    @arc4.abimethod(create="require")
    def create(
        self,
        donation_capacity: arc4.UInt64,
        refund_batch_size: arc4.UInt64,
    ) -> None:
        """
        Create the FundingMe application.

        Args:
            donation_capacity: Maximum number of donations a project round accepts
            refund_batch_size: Maximum refunds paid by a single resolve call
        """
        assert donation_capacity.native > 0, "InvalidConfig"
        assert donation_capacity.native <= MAX_DONATION_CAPACITY, "InvalidConfig"
        assert refund_batch_size.native > 0, "InvalidConfig"
        assert refund_batch_size.native <= MAX_REFUNDS_PER_CALL, "InvalidConfig"

        self.project_count.value = UInt64(0)
        self.donation_capacity.value = donation_capacity.native
        self.refund_batch_size.value = refund_batch_size.native

    @arc4.abimethod
    def create_project(
        self,
        name: arc4.String,
        financial_target: arc4.UInt64,
        reserve: gtxn.PaymentTransaction,
    ) -> arc4.Address:
        """
        Create a fundraising project owned by the caller.

        An owner holds one project at a time. Once that project is resolved
        the owner may start a new round at the same address.

        Args:
            name: Project name (1 to MAX_NAME_LENGTH bytes)
            financial_target: Funding target in microALGOs
            reserve: Payment to the application account covering the project
                box reserve (PROJECT_BOX_RESERVE for a first round, nothing
                for a new round of an existing record)

        Returns:
            Project address
        """
        assert financial_target.native > 0, "InvalidTarget"
        name_bytes = name.native.bytes
        assert name_bytes.length > 0, "InvalidName"
        assert name_bytes.length <= MAX_NAME_LENGTH, "InvalidName"

        project_id = self._derive_project_id(Txn.sender)
        existing, exists = op.Box.get(project_id)

        required_reserve = UInt64(PROJECT_BOX_RESERVE)
        project_round = UInt64(0)
        if exists:
            assert is_terminal(read_field(existing, STATUS_OFFSET)), "DuplicateProject"
            project_round = read_field(existing, ROUND_OFFSET) + 1
            required_reserve = UInt64(0)

        check_transfer_in(reserve)
        assert reserve.amount >= required_reserve, "InsufficientReserve"

        record = (
            Txn.sender.bytes
            + op.itob(financial_target.native)
            + op.itob(UInt64(0))              # Balance
            + op.itob(UInt64(STATUS_ACTIVE))  # Status
            + op.itob(UInt64(0))              # Donation count
            + op.itob(UInt64(0))              # Settled count
            + op.itob(project_round)
            + op.itob(name_bytes.length)
            + name_bytes
            + op.bzero(UInt64(MAX_NAME_LENGTH) - name_bytes.length)
        )
        op.Box.put(project_id, record)

        self.project_count.value = self.project_count.value + UInt64(1)

        arc4.emit(
            ProjectCreated(
                project=arc4.Address(project_id),
                owner=arc4.Address(Txn.sender),
                financial_target=financial_target,
                project_round=arc4.UInt64(project_round),
            )
        )
        return arc4.Address(project_id)

    @arc4.abimethod
    def donate(
        self,
        project_id: arc4.Address,
        payment: gtxn.PaymentTransaction,
    ) -> arc4.Tuple[arc4.UInt64, arc4.UInt64]:
        """
        Donate to a project.
        Must be called with a payment to the application account in the same group.
        The payment carries the donation plus DONATION_BOX_RESERVE for the
        donation record; only the donation is custodied and refundable.

        Args:
            project_id: Project address
            payment: Payment moving the donation and record reserve into the
                application account

        Returns:
            Tuple of (new_balance, status)
        """
        key = project_id.bytes
        record = self._load_project(key)

        # Only open projects with no refund started take donations
        assert read_field(record, STATUS_OFFSET) == STATUS_ACTIVE, "InvalidProjectStatus"
        assert read_field(record, SETTLED_COUNT_OFFSET) == 0, "InvalidProjectStatus"

        check_transfer_in(payment)
        # The donor pays the reserve of the donation box it creates
        assert payment.amount > DONATION_BOX_RESERVE, "InvalidAmount"
        amount = payment.amount - DONATION_BOX_RESERVE

        sequence = read_field(record, DONATION_COUNT_OFFSET)
        assert sequence < self.donation_capacity.value, "CapacityExceeded"

        balance = read_field(record, BALANCE_OFFSET)
        assert amount <= UInt64(MAX_UINT64) - balance, "ArithmeticOverflow"

        balance += amount
        record = write_field(record, BALANCE_OFFSET, balance)
        record = write_field(record, DONATION_COUNT_OFFSET, sequence + 1)
        if balance >= read_field(record, TARGET_OFFSET):
            record = transition(record, UInt64(STATUS_TARGET_REACHED))

        donation_key = self._donation_key(key, read_field(record, ROUND_OFFSET), sequence)
        op.Box.put(donation_key, Txn.sender.bytes + op.itob(amount))
        op.Box.put(key, record)

        status = read_field(record, STATUS_OFFSET)
        arc4.emit(
            DonationRecorded(
                project=project_id,
                donor=arc4.Address(Txn.sender),
                amount=arc4.UInt64(amount),
                balance=arc4.UInt64(balance),
                status=arc4.UInt64(status),
            )
        )
        return arc4.Tuple((arc4.UInt64(balance), arc4.UInt64(status)))

    @arc4.abimethod
    def resolve(
        self,
        project_id: arc4.Address,
    ) -> arc4.UInt64:
        """
        Resolve a project.

        TargetReached: the owner collects the whole balance (owner only).
        Active: donors are refunded in donation order, at most
        refund_batch_size per call. Anyone can trigger refunds. The call
        returns Active while refunds remain and Failed once all are paid.

        A refund batch references one donor account and one donation box
        per refund, so refund_batch_size must fit the reference limits of
        the calling group.

        Args:
            project_id: Project address

        Returns:
            Project status after this call
        """
        key = project_id.bytes
        record = self._load_project(key)

        status = read_field(record, STATUS_OFFSET)
        assert not is_terminal(status), "InvalidProjectStatus"

        if status == STATUS_TARGET_REACHED:
            record = self._pay_out(key, record)
        else:
            record = self._refund_next_batch(key, record)

        op.Box.put(key, record)
        return arc4.UInt64(read_field(record, STATUS_OFFSET))

    @arc4.abimethod
    def get_project(
        self,
        project_id: arc4.Address,
    ) -> ProjectInfo:
        """
        Get project details.

        Args:
            project_id: Project address

        Returns:
            ProjectInfo, with found set to false when no project exists
        """
        record, exists = op.Box.get(project_id.bytes)
        if not exists:
            return ProjectInfo(
                found=arc4.Bool(False),
                owner=arc4.Address(Global.zero_address),
                name=arc4.String(""),
                financial_target=arc4.UInt64(0),
                balance=arc4.UInt64(0),
                status=arc4.UInt64(0),
                donation_count=arc4.UInt64(0),
                settled_count=arc4.UInt64(0),
                project_round=arc4.UInt64(0),
            )

        name_length = read_field(record, NAME_LENGTH_OFFSET)
        return ProjectInfo(
            found=arc4.Bool(True),
            owner=arc4.Address(op.extract(record, OWNER_OFFSET, 32)),
            name=arc4.String(String.from_bytes(op.extract(record, NAME_OFFSET, name_length))),
            financial_target=arc4.UInt64(read_field(record, TARGET_OFFSET)),
            balance=arc4.UInt64(read_field(record, BALANCE_OFFSET)),
            status=arc4.UInt64(read_field(record, STATUS_OFFSET)),
            donation_count=arc4.UInt64(read_field(record, DONATION_COUNT_OFFSET)),
            settled_count=arc4.UInt64(read_field(record, SETTLED_COUNT_OFFSET)),
            project_round=arc4.UInt64(read_field(record, ROUND_OFFSET)),
        )

    @arc4.abimethod
    def get_donation(
        self,
        project_id: arc4.Address,
        sequence: arc4.UInt64,
    ) -> DonationInfo:
        """
        Get a donation of the project's current round.

        Args:
            project_id: Project address
            sequence: Donation sequence number (0-based)

        Returns:
            DonationInfo
        """
        key = project_id.bytes
        record = self._load_project(key)

        donation_key = self._donation_key(key, read_field(record, ROUND_OFFSET), sequence.native)
        donation, exists = op.Box.get(donation_key)
        assert exists, "DonationNotFound"

        return DonationInfo(
            donor=arc4.Address(op.extract(donation, 0, 32)),
            amount=arc4.UInt64(op.btoi(op.extract(donation, DONATION_AMOUNT_OFFSET, 8))),
            settled=arc4.Bool(sequence.native < read_field(record, SETTLED_COUNT_OFFSET)),
        )

    @arc4.abimethod
    def get_my_donation(
        self,
        project_id: arc4.Address,
    ) -> arc4.UInt64:
        """
        Get caller's total donation to the project's current round.

        Reads every donation box of the round, so the call must reference
        them all. Within the per-group reference limits this only suits
        small rounds; client.donor_total computes the same total off-chain.

        Args:
            project_id: Project address

        Returns:
            Total donation amount
        """
        key = project_id.bytes
        record = self._load_project(key)
        project_round = read_field(record, ROUND_OFFSET)

        total = UInt64(0)
        for sequence in urange(read_field(record, DONATION_COUNT_OFFSET)):
            donation = op.Box.get(self._donation_key(key, project_round, sequence))[0]
            if op.extract(donation, 0, 32) == Txn.sender.bytes:
                total += op.btoi(op.extract(donation, DONATION_AMOUNT_OFFSET, 8))
        return arc4.UInt64(total)

    @arc4.abimethod
    def get_project_address(
        self,
        owner: arc4.Address,
    ) -> arc4.Address:
        """
        Compute the project address of an owner.

        Args:
            owner: Owner account

        Returns:
            Project address
        """
        return arc4.Address(self._derive_project_id(owner.native))

    @arc4.abimethod
    def get_project_count(self) -> arc4.UInt64:
        """
        Get total number of projects created.

        Returns:
            Project count
        """
        return arc4.UInt64(self.project_count.value)

    @subroutine
    def _derive_project_id(self, owner: Account) -> Bytes:
        return op.sha512_256(
            Bytes(PROJECT_DOMAIN_TAG)
            + op.itob(Global.current_application_id.id)
            + owner.bytes
        )

    @subroutine
    def _donation_key(self, project_id: Bytes, project_round: UInt64, sequence: UInt64) -> Bytes:
        return Bytes(DONATION_KEY_PREFIX) + project_id + op.itob(project_round) + op.itob(sequence)

    @subroutine
    def _load_project(self, project_id: Bytes) -> Bytes:
        record, exists = op.Box.get(project_id)
        assert exists, "ProjectNotFound"
        return record

    @subroutine
    def _pay_out(self, project_id: Bytes, record: Bytes) -> Bytes:
        owner = Account(op.extract(record, OWNER_OFFSET, 32))
        assert Txn.sender == owner, "Unauthorized"

        amount = read_field(record, BALANCE_OFFSET)
        assert can_receive(owner, amount), "PayoutFailed"
        assert amount <= spendable_custody(), "PayoutFailed"
        record = transition(record, UInt64(STATUS_SUCCESS))

        # Fee is pooled by the caller so custody only ever moves to the owner
        itxn.Payment(
            receiver=owner,
            amount=amount,
            fee=0,
        ).submit()

        record = write_field(record, BALANCE_OFFSET, UInt64(0))
        record = write_field(record, SETTLED_COUNT_OFFSET, read_field(record, DONATION_COUNT_OFFSET))

        arc4.emit(ProjectResolved(project=arc4.Address(project_id), status=arc4.UInt64(STATUS_SUCCESS)))
        return record

    @subroutine
    def _refund_next_batch(self, project_id: Bytes, record: Bytes) -> Bytes:
        project_round = read_field(record, ROUND_OFFSET)
        donation_count = read_field(record, DONATION_COUNT_OFFSET)
        balance = read_field(record, BALANCE_OFFSET)

        # Settled donations are skipped, so a retry continues where the
        # last successful call stopped
        start = read_field(record, SETTLED_COUNT_OFFSET)
        end = start + self.refund_batch_size.value
        if end > donation_count:
            end = donation_count

        # Check every refund of the batch before paying any of them
        refund_total = UInt64(0)
        for sequence in urange(start, end):
            donation, exists = op.Box.get(self._donation_key(project_id, project_round, sequence))
            assert exists, "DonationNotFound"
            amount = op.btoi(op.extract(donation, DONATION_AMOUNT_OFFSET, 8))
            assert can_receive(Account(op.extract(donation, 0, 32)), amount), "RefundFailed"
            refund_total += amount
        assert refund_total <= balance, "ArithmeticOverflow"
        assert refund_total <= spendable_custody(), "RefundFailed"

        for sequence in urange(start, end):
            donation = op.Box.get(self._donation_key(project_id, project_round, sequence))[0]
            donor = Account(op.extract(donation, 0, 32))
            amount = op.btoi(op.extract(donation, DONATION_AMOUNT_OFFSET, 8))
            itxn.Payment(
                receiver=donor,
                amount=amount,
                fee=0,
            ).submit()
            arc4.emit(
                RefundIssued(
                    project=arc4.Address(project_id),
                    donor=arc4.Address(donor),
                    amount=arc4.UInt64(amount),
                )
            )

        record = write_field(record, BALANCE_OFFSET, balance - refund_total)
        record = write_field(record, SETTLED_COUNT_OFFSET, end)

        if end == donation_count:
            record = transition(record, UInt64(STATUS_FAILED))
            arc4.emit(ProjectResolved(project=arc4.Address(project_id), status=arc4.UInt64(STATUS_FAILED)))
        return record
