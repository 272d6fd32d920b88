from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from quizguard.db import get_session
from quizguard.auth_deps import get_participant_id
from quizguard.errors import AccountNotFound, InsufficientFunds, InvalidAmount
from quizguard.models.account import Account
from quizguard.models.ledger import LedgerTransaction
from quizguard.schemas.ledger import LedgerTransactionPublic, WalletSnapshot, WithdrawRequest
from quizguard.services.ledger import account_history, request_withdrawal

router = APIRouter(prefix="/wallet", tags=["wallet"])

def to_public(tx: LedgerTransaction) -> LedgerTransactionPublic:
    return LedgerTransactionPublic(
        id=tx.id, account_id=tx.account_id, kind=tx.kind, amount=int(tx.amount),
        balance_before=int(tx.balance_before), balance_after=int(tx.balance_after),
        status=tx.status, correlation_id=tx.correlation_id, reversed_by=tx.reversed_by,
        related_quiz_id=tx.related_quiz_id, related_session_id=tx.related_session_id,
        note=tx.note, created_at=tx.created_at,
    )

@router.get("", response_model=WalletSnapshot)
async def get_wallet(session: AsyncSession = Depends(get_session), participant_id: UUID = Depends(get_participant_id)):
    acct = await session.get(Account, participant_id)
    rows = await account_history(session, participant_id) if acct else []
    return WalletSnapshot(
        balance=int(acct.balance) if acct else 0,
        lifetime_earned=int(acct.lifetime_earned) if acct else 0,
        lifetime_spent=int(acct.lifetime_spent) if acct else 0,
        transactions=[to_public(r) for r in rows],
    )

@router.post("/withdrawals", response_model=LedgerTransactionPublic, status_code=201)
async def create_withdrawal(
    payload: WithdrawRequest,
    session: AsyncSession = Depends(get_session),
    participant_id: UUID = Depends(get_participant_id),
):
    try:
        tx = await request_withdrawal(session, participant_id, payload.amount)
    except AccountNotFound:
        await session.rollback()
        raise HTTPException(status_code=402, detail="Insufficient wallet balance")
    except InsufficientFunds:
        await session.rollback()
        raise HTTPException(status_code=402, detail="Insufficient wallet balance")
    except InvalidAmount as e:
        await session.rollback()
        raise HTTPException(status_code=422, detail=str(e))
    await session.commit()
    return to_public(tx)
