"""
Transfer engine tests.

These run against a real (SQLite) session: every balance change must be
visible to a fresh session afterwards, and every rejection must leave both
balances and the ledger untouched.
"""

import asyncio
import random
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import event, func, select
from sqlalchemy.exc import SQLAlchemyError

from ledger_bank.db.models import Transaction
from ledger_bank.services import transfers as transfers_module
from ledger_bank.services.errors import (
    AccountNotActive,
    AccountNotFound,
    CannotTransferToSelf,
    IdempotencyConflict,
    InsufficientBalance,
    InvalidAmount,
    InvalidCategory,
    InvalidIdempotencyKey,
    MissingExternalBankDetails,
    RecipientAmbiguous,
)
from ledger_bank.services.statistics import StatisticsService
from ledger_bank.services.transfers import TransferRequest, TransferService

EXTERNAL_BANK = {"bank_name": "Other Bank", "ifsc_code": "OTHR0000001"}


@pytest.fixture
def run(session_factory):
    """Call a TransferService method in its own session, like one API request."""

    async def _run(method, *args, **kwargs):
        async with session_factory() as session:
            return await getattr(TransferService(session), method)(*args, **kwargs)

    return _run


@pytest.fixture
def ledger_rows(session_factory):
    async def _rows(account_id):
        async with session_factory() as session:
            res = await session.execute(
                select(Transaction)
                .where(Transaction.account_id == account_id)
                .order_by(Transaction.created_at)
            )
            return list(res.scalars().all())

    return _rows


@pytest.fixture
def ledger_size(session_factory):
    async def _size():
        async with session_factory() as session:
            res = await session.execute(select(func.count()).select_from(Transaction))
            return res.scalar_one()

    return _size


class TestDepositWithdraw:
    async def test_deposit_credits_balance_and_records_snapshot(self, run, open_account, get_balance):
        account = await open_account(balance="100.00")

        result = await run("deposit", account.account_id, "50.255", description="Salary", category="salary")

        assert await get_balance(account.account_id) == Decimal("150.26")
        tx = result.transaction
        assert tx.entry_type == "credit"
        assert tx.transfer_type is None
        assert Decimal(str(tx.amount)) == Decimal("50.26")
        assert Decimal(str(tx.balance_after)) == Decimal("150.26")
        assert tx.category == "salary"
        assert result.replayed is False

    async def test_withdraw_more_than_balance_is_rejected(self, run, open_account, get_balance, ledger_rows):
        account = await open_account(balance="100.00")

        with pytest.raises(InsufficientBalance):
            await run("withdraw", account.account_id, "150.00")

        assert await get_balance(account.account_id) == Decimal("100.00")
        # only the initial deposit
        assert len(await ledger_rows(account.account_id)) == 1

    async def test_withdraw_whole_balance(self, run, open_account, get_balance):
        account = await open_account(balance="75.50")

        result = await run("withdraw", account.account_id, "75.50")

        assert await get_balance(account.account_id) == Decimal("0.00")
        assert result.transaction.entry_type == "debit"
        assert result.transaction.category == "withdrawal"

    async def test_deposit_then_withdraw_returns_to_zero(self, run, open_account, get_balance):
        account = await open_account(balance="0")

        await run("deposit", account.account_id, "250.75")
        await run("withdraw", account.account_id, "250.75")

        assert await get_balance(account.account_id) == Decimal("0.00")

    @pytest.mark.parametrize("amount", [0, "-10", "not-a-number", None])
    async def test_invalid_amount_is_rejected_before_storage(self, run, amount):
        # unknown account id: the amount check must fire first
        with pytest.raises(InvalidAmount):
            await run("deposit", uuid4(), amount)

    async def test_unknown_account(self, run):
        with pytest.raises(AccountNotFound):
            await run("withdraw", uuid4(), "10")

    async def test_unknown_category(self, run, open_account):
        account = await open_account(balance="10")
        with pytest.raises(InvalidCategory):
            await run("deposit", account.account_id, "10", category="lottery")

    async def test_suspended_account_cannot_move_money(self, run, open_account, get_balance):
        account = await open_account(balance="100", status="suspended")

        with pytest.raises(AccountNotActive):
            await run("deposit", account.account_id, "10")
        with pytest.raises(AccountNotActive):
            await run("withdraw", account.account_id, "10")

        assert await get_balance(account.account_id) == Decimal("100.00")

    async def test_deposit_with_idempotency_key_applies_once(self, run, open_account, get_balance):
        account = await open_account(balance="0")

        first = await run("deposit", account.account_id, "40", idempotency_key="req-1")
        second = await run("deposit", account.account_id, "40", idempotency_key="req-1")

        assert await get_balance(account.account_id) == Decimal("40.00")
        assert second.replayed is True
        assert second.transaction.transaction_id == first.transaction.transaction_id

    async def test_reusing_key_for_other_operation_conflicts(self, run, open_account, get_balance):
        account = await open_account(balance="100")

        await run("deposit", account.account_id, "10", idempotency_key="req-2")
        with pytest.raises(IdempotencyConflict):
            await run("withdraw", account.account_id, "10", idempotency_key="req-2")

        assert await get_balance(account.account_id) == Decimal("110.00")

    async def test_reusing_key_with_different_amount_conflicts(self, run, open_account, get_balance):
        account = await open_account(balance="0")

        await run("deposit", account.account_id, "40", idempotency_key="req-3")
        with pytest.raises(IdempotencyConflict):
            await run("deposit", account.account_id, "500", idempotency_key="req-3")

        assert await get_balance(account.account_id) == Decimal("40.00")

    async def test_reserved_key_prefix_is_rejected(self, run, open_account, get_balance, ledger_rows):
        account = await open_account(balance="100")
        opening = (await ledger_rows(account.account_id))[0]
        assert opening.idempotency_key.startswith("ledger:")

        with pytest.raises(InvalidIdempotencyKey):
            await run("deposit", account.account_id, "500", idempotency_key=opening.idempotency_key)

        assert await get_balance(account.account_id) == Decimal("100.00")
        assert len(await ledger_rows(account.account_id)) == 1


class TestInternalTransfer:
    async def test_internal_transfer_moves_money_without_fee(self, run, open_account, get_balance, ledger_rows):
        alice = await open_account(name="Alice", balance="1000.00")
        bob = await open_account(name="Bob", balance="300.00")

        result = await run(
            "transfer",
            alice.account_id,
            TransferRequest(amount="200.00", recipient_account=bob.account_number),
        )

        assert await get_balance(alice.account_id) == Decimal("800.00")
        assert await get_balance(bob.account_id) == Decimal("500.00")
        assert result.transfer_type == "internal"
        assert result.processing_fee == Decimal("0.00")
        assert result.total_debited == Decimal("200.00")
        assert result.estimated_arrival == "Instant"

        debit = (await ledger_rows(alice.account_id))[-1]
        credit = (await ledger_rows(bob.account_id))[-1]
        assert debit.entry_type == "debit" and credit.entry_type == "credit"
        assert Decimal(str(debit.amount)) == Decimal(str(credit.amount)) == Decimal("200.00")
        assert debit.counterparty_account_id == bob.account_id
        assert credit.counterparty_account_id == alice.account_id
        assert debit.transaction_reference == credit.transaction_reference
        assert debit.transfer_type == credit.transfer_type == "internal"
        assert Decimal(str(debit.balance_after)) == Decimal("800.00")
        assert Decimal(str(credit.balance_after)) == Decimal("500.00")
        assert credit.description == "Transfer from Alice"

    async def test_transfer_by_unique_phone(self, run, open_account, get_balance):
        alice = await open_account(name="Alice", balance="100")
        carol = await open_account(name="Carol", phone="9000000010")

        result = await run(
            "transfer", alice.account_id, TransferRequest(amount="25", recipient_phone="9000000010")
        )

        assert result.transfer_type == "internal"
        assert await get_balance(carol.account_id) == Decimal("25.00")

    async def test_ambiguous_phone_aborts_with_candidates(self, run, open_account, get_balance, ledger_size):
        alice = await open_account(name="Alice", balance="500")
        await open_account(name="Dan", phone="9000000020", balance="10")
        await open_account(name="Dan (Savings)", phone="9000000020", balance="20")
        before = await ledger_size()

        with pytest.raises(RecipientAmbiguous) as exc_info:
            await run("transfer", alice.account_id, TransferRequest(amount="50", recipient_phone="9000000020"))

        assert len(exc_info.value.candidates) == 2
        assert exc_info.value.to_dict()["needs_account_selection"] is True
        assert await get_balance(alice.account_id) == Decimal("500.00")
        assert await ledger_size() == before

    async def test_transfer_to_self_is_rejected_before_fee(self, run, open_account, get_balance, monkeypatch):
        alice = await open_account(name="Alice", balance="500")

        def _no_fee(*args, **kwargs):
            raise AssertionError("fee must not be computed for a self transfer")

        monkeypatch.setattr(transfers_module, "compute_fee", _no_fee)

        with pytest.raises(CannotTransferToSelf):
            await run("transfer", alice.account_id, TransferRequest(amount="10", recipient_account=alice.account_number))

        assert await get_balance(alice.account_id) == Decimal("500.00")

    async def test_insufficient_balance_leaves_both_sides_untouched(self, run, open_account, get_balance, ledger_size):
        alice = await open_account(name="Alice", balance="50")
        bob = await open_account(name="Bob", balance="0")
        before = await ledger_size()

        with pytest.raises(InsufficientBalance):
            await run("transfer", alice.account_id, TransferRequest(amount="50.01", recipient_account=bob.account_number))

        assert await get_balance(alice.account_id) == Decimal("50.00")
        assert await get_balance(bob.account_id) == Decimal("0.00")
        assert await ledger_size() == before

    async def test_inactive_recipient_is_rejected(self, run, open_account, get_balance):
        alice = await open_account(name="Alice", balance="100")
        frozen = await open_account(name="Frozen", status="inactive")

        with pytest.raises(AccountNotActive):
            await run("transfer", alice.account_id, TransferRequest(amount="10", recipient_account=frozen.account_number))

        assert await get_balance(alice.account_id) == Decimal("100.00")

    async def test_suspended_sender_is_rejected(self, run, open_account):
        sender = await open_account(name="Sender", balance="100", status="suspended")
        bob = await open_account(name="Bob")

        with pytest.raises(AccountNotActive):
            await run("transfer", sender.account_id, TransferRequest(amount="10", recipient_account=bob.account_number))

    async def test_transfer_idempotency_key_replays(self, run, open_account, get_balance, ledger_rows):
        alice = await open_account(name="Alice", balance="1000")
        bob = await open_account(name="Bob")
        request = TransferRequest(amount="100", recipient_account=bob.account_number, idempotency_key="tx-42")

        first = await run("transfer", alice.account_id, request)
        second = await run("transfer", alice.account_id, request)

        assert second.replayed is True
        assert second.transaction.transaction_id == first.transaction.transaction_id
        assert second.total_debited == Decimal("100.00")
        assert await get_balance(alice.account_id) == Decimal("900.00")
        assert await get_balance(bob.account_id) == Decimal("100.00")
        assert len(await ledger_rows(bob.account_id)) == 1

    async def test_transfer_key_reused_for_other_recipient_conflicts(self, run, open_account, get_balance):
        alice = await open_account(name="Alice", balance="1000")
        bob = await open_account(name="Bob")
        carol = await open_account(name="Carol")

        await run(
            "transfer",
            alice.account_id,
            TransferRequest(amount="100", recipient_account=bob.account_number, idempotency_key="tx-7"),
        )
        with pytest.raises(IdempotencyConflict):
            await run(
                "transfer",
                alice.account_id,
                TransferRequest(amount="100", recipient_account=carol.account_number, idempotency_key="tx-7"),
            )

        assert await get_balance(alice.account_id) == Decimal("900.00")
        assert await get_balance(carol.account_id) == Decimal("0.00")

    async def test_invalid_amount_is_checked_before_replay(self, run, open_account):
        alice = await open_account(name="Alice", balance="1000")
        bob = await open_account(name="Bob")
        await run(
            "transfer",
            alice.account_id,
            TransferRequest(amount="100", recipient_account=bob.account_number, idempotency_key="tx-9"),
        )

        with pytest.raises(InvalidAmount):
            await run(
                "transfer",
                alice.account_id,
                TransferRequest(amount="abc", recipient_account=bob.account_number, idempotency_key="tx-9"),
            )

    async def test_storage_failure_rolls_back_both_legs(self, run, open_account, get_balance, ledger_size):
        alice = await open_account(name="Alice", balance="500")
        bob = await open_account(name="Bob")
        before = await ledger_size()

        def _fail_recipient_credit(mapper, connection, target):
            if target.entry_type == "credit" and target.transfer_type == "internal":
                raise SQLAlchemyError("write rejected")

        event.listen(Transaction, "before_insert", _fail_recipient_credit)
        try:
            with pytest.raises(SQLAlchemyError):
                await run(
                    "transfer", alice.account_id, TransferRequest(amount="200", recipient_account=bob.account_number)
                )
        finally:
            event.remove(Transaction, "before_insert", _fail_recipient_credit)

        assert await get_balance(alice.account_id) == Decimal("500.00")
        assert await get_balance(bob.account_id) == Decimal("0.00")
        assert await ledger_size() == before

    async def test_concurrent_transfers_cannot_overdraw(self, run, open_account, get_balance):
        alice = await open_account(name="Alice", balance="100")
        bob = await open_account(name="Bob")
        carol = await open_account(name="Carol")

        results = await asyncio.gather(
            run("transfer", alice.account_id, TransferRequest(amount="80", recipient_account=bob.account_number)),
            run("transfer", alice.account_id, TransferRequest(amount="80", recipient_account=carol.account_number)),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientBalance)
        assert await get_balance(alice.account_id) == Decimal("20.00")
        received = await get_balance(bob.account_id) + await get_balance(carol.account_id)
        assert received == Decimal("80.00")


class TestExternalTransfer:
    async def test_external_transfer_folds_fee_into_debit(self, run, open_account, get_balance, ledger_rows):
        alice = await open_account(name="Alice", balance="2000.00")

        result = await run(
            "transfer",
            alice.account_id,
            TransferRequest(
                amount="1000.00",
                recipient_account="EXT0099",
                recipient_bank=EXTERNAL_BANK,
                recipient_name="Outside Person",
            ),
        )

        assert result.transfer_type == "external"
        assert result.processing_fee == Decimal("10.00")
        assert result.total_debited == Decimal("1010.00")
        assert result.estimated_arrival == "2-3 business days"
        assert result.counterpart_transaction is None
        assert await get_balance(alice.account_id) == Decimal("990.00")

        rows = await ledger_rows(alice.account_id)
        assert len(rows) == 2  # initial deposit + one debit
        debit = rows[-1]
        assert Decimal(str(debit.amount)) == Decimal("1010.00")
        assert Decimal(str(debit.fee)) == Decimal("10.00")
        assert debit.counterparty_account_id is None
        assert debit.counterparty_account_number == "EXT0099"
        assert debit.counterparty_bank["bank_name"] == "Other Bank"
        assert "processing fee" in debit.description
        assert "Other Bank" in result.message

    async def test_fee_counts_towards_sufficiency(self, run, open_account, get_balance):
        alice = await open_account(name="Alice", balance="1005.00")

        with pytest.raises(InsufficientBalance) as exc_info:
            await run(
                "transfer",
                alice.account_id,
                TransferRequest(amount="1000", recipient_account="EXT1", recipient_bank=EXTERNAL_BANK),
            )

        assert "fee" in exc_info.value.message
        assert await get_balance(alice.account_id) == Decimal("1005.00")

    async def test_missing_bank_name_is_rejected(self, run, open_account):
        alice = await open_account(name="Alice", balance="100")

        with pytest.raises(MissingExternalBankDetails):
            await run(
                "transfer",
                alice.account_id,
                TransferRequest(amount="10", recipient_account="EXT2", recipient_bank={"ifsc_code": "X"}),
            )

    async def test_missing_recipient_identifier_is_rejected(self, run, open_account):
        alice = await open_account(name="Alice", balance="100")

        with pytest.raises(MissingExternalBankDetails):
            await run("transfer", alice.account_id, TransferRequest(amount="10", recipient_bank=EXTERNAL_BANK))

    async def test_external_by_phone(self, run, open_account, get_balance):
        alice = await open_account(name="Alice", balance="100")

        result = await run(
            "transfer",
            alice.account_id,
            TransferRequest(amount="20", recipient_phone="9222222222", recipient_bank=EXTERNAL_BANK),
        )

        assert result.transaction.counterparty_account_number == "9222222222"
        assert await get_balance(alice.account_id) == Decimal("70.00")


class TestPreview:
    async def test_preview_matches_commit_and_mutates_nothing(self, run, open_account, get_balance, ledger_size):
        alice = await open_account(name="Alice", balance="6000")
        request = TransferRequest(amount="5000", recipient_account="EXT3", recipient_bank=EXTERNAL_BANK)
        before = await ledger_size()

        first = await run("preview_transfer", alice.account_id, request)
        second = await run("preview_transfer", alice.account_id, request)

        assert first == second
        assert first.processing_fee == Decimal("25.00")
        assert first.total_debit == Decimal("5025.00")
        assert first.has_sufficient_balance is True
        assert first.recipient_found is False
        assert first.recipient_name == "External Account"
        assert await get_balance(alice.account_id) == Decimal("6000.00")
        assert await ledger_size() == before

        committed = await run("transfer", alice.account_id, request)
        assert committed.processing_fee == first.processing_fee
        assert committed.total_debited == first.total_debit

    async def test_preview_reports_insufficient_balance(self, run, open_account):
        alice = await open_account(name="Alice", balance="100")
        bob = await open_account(name="Bob")

        preview = await run(
            "preview_transfer", alice.account_id, TransferRequest(amount="150", recipient_account=bob.account_number)
        )

        assert preview.has_sufficient_balance is False
        assert preview.transfer_type == "internal"
        assert preview.recipient_name == "Bob"
        assert preview.sender_balance == Decimal("100.00")
        assert preview.message == "Insufficient balance for this transfer"

    async def test_preview_applies_the_same_rejections(self, run, open_account):
        alice = await open_account(name="Alice", balance="100")

        with pytest.raises(CannotTransferToSelf):
            await run(
                "preview_transfer", alice.account_id, TransferRequest(amount="1", recipient_account=alice.account_number)
            )
        with pytest.raises(MissingExternalBankDetails):
            await run("preview_transfer", alice.account_id, TransferRequest(amount="1", recipient_account="EXT4"))


class TestLedgerInvariants:
    async def test_random_operations_keep_balances_consistent(self, run, open_account, get_balance, session_factory):
        rng = random.Random(7)
        accounts = [await open_account(name=f"User {i}", balance="500") for i in range(3)]

        for _ in range(40):
            sender = rng.choice(accounts)
            amount = Decimal(rng.randint(1, 40000)) / 100
            op = rng.choice(["deposit", "withdraw", "internal", "external"])
            try:
                if op == "deposit":
                    await run("deposit", sender.account_id, amount)
                elif op == "withdraw":
                    await run("withdraw", sender.account_id, amount)
                elif op == "internal":
                    recipient = rng.choice([a for a in accounts if a is not sender])
                    await run(
                        "transfer",
                        sender.account_id,
                        TransferRequest(amount=amount, recipient_account=recipient.account_number),
                    )
                else:
                    await run(
                        "transfer",
                        sender.account_id,
                        TransferRequest(amount=amount, recipient_account="EXT-R", recipient_bank=EXTERNAL_BANK),
                    )
            except InsufficientBalance:
                pass

            for account in accounts:
                assert await get_balance(account.account_id) >= 0

        for account in accounts:
            async with session_factory() as session:
                report = await StatisticsService(session).reconcile(account.account_id)
            assert report.consistent, report
