from __future__ import annotations
import uuid
from typing import Iterable
from uuid import UUID
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from quizguard.config import settings
from quizguard.errors import AccountNotFound, InsufficientFunds, InvalidAmount, NotRefundable
from quizguard.models.account import Account, PLATFORM_ACCOUNT_ID
from quizguard.models.ledger import LedgerTransaction
from quizguard.schemas.ledger import TransferOp

log = structlog.get_logger()

BPS = 10_000
# Fixed revenue split: 70% creator, remainder platform
CREATOR_SHARE_BPS = 7_000

# ---------- accounts ----------

async def open_account(session: AsyncSession, user_id: UUID) -> Account:
    """Return the account for user_id, creating a zero-balance one if needed."""
    acct = await session.get(Account, user_id)
    if acct:
        return acct
    acct = Account(user_id=user_id, balance=0, lifetime_earned=0, lifetime_spent=0)
    session.add(acct)
    await session.flush()
    return acct

async def balance_of(session: AsyncSession, user_id: UUID) -> int:
    acct = await session.get(Account, user_id)
    if not acct:
        raise AccountNotFound(f"account {user_id} not found", account_id=str(user_id))
    return int(acct.balance)

async def account_history(session: AsyncSession, user_id: UUID, limit: int = 100) -> list[LedgerTransaction]:
    return (await session.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.account_id == user_id)
        .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id)
        .limit(limit)
    )).scalars().all()

async def _lock_accounts(session: AsyncSession, account_ids: Iterable[UUID]) -> dict[UUID, Account]:
    """
    Lock every account row touched by one operation, in id order so two
    transfers over overlapping account sets cannot deadlock.
    """
    ids = sorted(set(account_ids), key=str)
    rows = (await session.execute(
        select(Account)
        .where(Account.user_id.in_(ids))
        .order_by(Account.user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalars().all()
    found = {a.user_id: a for a in rows}
    missing = [i for i in ids if i not in found]
    if missing:
        raise AccountNotFound(f"unknown account(s): {', '.join(str(m) for m in missing)}", account_ids=[str(m) for m in missing])
    return found

# ---------- transfer primitive ----------

async def transfer(
    session: AsyncSession,
    operations: list[TransferOp],
    *,
    correlation_id: UUID | None = None,
    status: str = "completed",
    related_quiz_id: UUID | None = None,
    related_session_id: UUID | None = None,
) -> list[LedgerTransaction]:
    """
    Apply all deltas or none.

    Runs inside the caller's database transaction: nothing is committed here.
    Raises InsufficientFunds / AccountNotFound before any balance is touched,
    so a failed call leaves every account exactly as it was.
    """
    if not operations:
        raise InvalidAmount("transfer needs at least one operation")
    for op in operations:
        if int(op.delta) == 0:
            raise InvalidAmount("transfer deltas must be non-zero")

    accounts = await _lock_accounts(session, (op.account_id for op in operations))

    # Validate the whole batch against projected balances first
    projected = {aid: int(a.balance) for aid, a in accounts.items()}
    for op in operations:
        projected[op.account_id] += int(op.delta)
    short = {aid: bal for aid, bal in projected.items() if bal < 0}
    if short:
        aid, bal = next(iter(short.items()))
        raise InsufficientFunds(
            f"account {aid} would go to {bal}",
            account_id=str(aid), shortfall=-bal,
        )

    cid = correlation_id or uuid.uuid4()
    txs: list[LedgerTransaction] = []
    for op in operations:
        acct = accounts[op.account_id]
        delta = int(op.delta)
        before = int(acct.balance)
        acct.balance = before + delta
        if delta > 0 and op.kind == "payout-share":
            acct.lifetime_earned = int(acct.lifetime_earned) + delta
        elif delta < 0 and op.kind == "charge":
            acct.lifetime_spent = int(acct.lifetime_spent) - delta
        tx = LedgerTransaction(
            id=uuid.uuid4(),
            account_id=acct.user_id,
            kind=op.kind,
            amount=abs(delta),
            balance_before=before,
            balance_after=before + delta,
            status=status,
            correlation_id=cid,
            related_quiz_id=related_quiz_id,
            related_session_id=related_session_id,
            note=op.note,
        )
        session.add(tx)
        txs.append(tx)

    await session.flush()
    log.info("ledger_transfer", correlation_id=str(cid), ops=len(txs), status=status)
    return txs

# ---------- escrow & split ----------

def split_price(price: int, creator_share_bps: int | None = None) -> tuple[int, int]:
    """(creator_share, platform_share); integer arithmetic, remainder to platform."""
    bps = CREATOR_SHARE_BPS if creator_share_bps is None else creator_share_bps
    creator = (int(price) * int(bps)) // BPS
    return creator, int(price) - creator

async def escrow_session_charge(
    session: AsyncSession,
    *,
    participant_id: UUID,
    creator_id: UUID,
    price: int,
    quiz_id: UUID,
    session_id: UUID,
    correlation_id: UUID | None = None,
) -> list[LedgerTransaction]:
    """Debit participant, credit creator and platform shares as one unit: always three rows."""
    if price <= 0:
        raise InvalidAmount("price must be > 0")
    creator_share, platform_share = split_price(price)
    if creator_share <= 0 or platform_share <= 0:
        raise InvalidAmount(f"price {price} is too small to split", price=int(price))

    # A participant without an account is charged against a zero balance
    await open_account(session, participant_id)
    await open_account(session, creator_id)
    await open_account(session, PLATFORM_ACCOUNT_ID)

    ops = [
        TransferOp(account_id=participant_id, delta=-int(price), kind="charge", note="quiz_entry"),
        TransferOp(account_id=creator_id, delta=creator_share, kind="payout-share", note="creator_share"),
        TransferOp(account_id=PLATFORM_ACCOUNT_ID, delta=platform_share, kind="payout-share", note="platform_share"),
    ]

    txs = await transfer(
        session, ops,
        correlation_id=correlation_id,
        related_quiz_id=quiz_id,
        related_session_id=session_id,
    )
    log.info(
        "escrow_completed",
        correlation_id=str(txs[0].correlation_id),
        session_id=str(session_id),
        price=int(price), creator_share=creator_share, platform_share=platform_share,
    )
    return txs

# ---------- refunds ----------

async def refund(session: AsyncSession, original_transaction_id: UUID, reason: str) -> list[LedgerTransaction]:
    """
    Reverse a completed transfer by writing the inverse of every completed
    transaction in its correlation group, then marking the originals reversed.
    """
    original = await session.get(LedgerTransaction, original_transaction_id, with_for_update=True)
    if not original:
        raise NotRefundable(f"transaction {original_transaction_id} not found")
    if original.kind == "refund":
        raise NotRefundable(f"transaction {original.id} is itself a refund")
    if original.status != "completed" or original.reversed_by is not None:
        raise NotRefundable(f"transaction {original.id} is {original.status}", status=original.status)

    members = (await session.execute(
        select(LedgerTransaction)
        .where(LedgerTransaction.correlation_id == original.correlation_id)
        .order_by(LedgerTransaction.created_at, LedgerTransaction.id)
        .with_for_update()
    )).scalars().all()
    # Withdrawal groups settle through settle_withdrawal only; funds returned
    # on rejection must not be clawed back a second time
    if any(tx.kind == "withdrawal" for tx in members):
        raise NotRefundable(f"transaction {original.id} belongs to a withdrawal", kind=original.kind)
    group = [tx for tx in members if tx.status == "completed"]

    ops = [
        TransferOp(account_id=tx.account_id, delta=-tx.delta, kind="refund", note=reason[:255])
        for tx in group
    ]
    compensating = await transfer(
        session, ops,
        related_quiz_id=original.related_quiz_id,
        related_session_id=original.related_session_id,
    )
    cid = compensating[0].correlation_id
    for tx in group:
        tx.status = "reversed"
        tx.reversed_by = cid
        acct = await session.get(Account, tx.account_id)
        if tx.kind == "charge":
            acct.lifetime_spent = max(0, int(acct.lifetime_spent) - int(tx.amount))
        elif tx.kind == "payout-share":
            acct.lifetime_earned = max(0, int(acct.lifetime_earned) - int(tx.amount))
    await session.flush()
    log.info("refund_completed", original_id=str(original.id), correlation_id=str(cid), reversed=len(group), reason=reason)
    return compensating

# ---------- withdrawals & corrections ----------

async def request_withdrawal(session: AsyncSession, user_id: UUID, amount: int) -> LedgerTransaction:
    """Debit now, leave the withdrawal pending until an admin settles it."""
    if amount < settings.min_withdrawal_minor:
        raise InvalidAmount(f"minimum withdrawal is {settings.min_withdrawal_minor}", minimum=settings.min_withdrawal_minor)
    (tx,) = await transfer(
        session,
        [TransferOp(account_id=user_id, delta=-int(amount), kind="withdrawal", note="withdrawal_request")],
        status="pending",
    )
    return tx

async def settle_withdrawal(session: AsyncSession, transaction_id: UUID, *, approve: bool, reason: str | None = None) -> LedgerTransaction:
    tx = await session.get(LedgerTransaction, transaction_id, with_for_update=True)
    if not tx or tx.kind != "withdrawal":
        raise NotRefundable(f"withdrawal {transaction_id} not found")
    if tx.status != "pending":
        raise NotRefundable(f"withdrawal {tx.id} is {tx.status}", status=tx.status)

    if approve:
        tx.status = "completed"
    else:
        # Return the funds in the same correlation group
        await transfer(
            session,
            [TransferOp(account_id=tx.account_id, delta=int(tx.amount), kind="correction", note=(reason or "withdrawal_rejected")[:255])],
            correlation_id=tx.correlation_id,
        )
        tx.status = "failed"
    await session.flush()
    log.info("withdrawal_settled", transaction_id=str(tx.id), approved=approve)
    return tx

async def apply_correction(session: AsyncSession, user_id: UUID, delta: int, note: str) -> LedgerTransaction:
    if delta == 0:
        raise InvalidAmount("correction delta must be non-zero")
    await open_account(session, user_id)
    (tx,) = await transfer(
        session,
        [TransferOp(account_id=user_id, delta=int(delta), kind="correction", note=note[:255])],
    )
    return tx
