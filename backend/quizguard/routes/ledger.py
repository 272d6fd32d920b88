from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from quizguard.db import get_session
from quizguard.auth_deps import require_admin
from quizguard.errors import QuizguardError
from quizguard.schemas.ledger import (
    CorrectionRequest, LedgerTransactionPublic, RefundRequest, SettleWithdrawalRequest, TransferResult,
)
from quizguard.services.ledger import apply_correction, refund, settle_withdrawal
from quizguard.routes.wallet import to_public
import structlog

log = structlog.get_logger()

router = APIRouter(prefix="/ledger", tags=["ledger"])

@router.post("/transactions/{transaction_id}/refund", response_model=TransferResult)
async def refund_transaction(
    payload: RefundRequest,
    transaction_id: UUID = Path(...),
    session: AsyncSession = Depends(get_session),
    admin_id: UUID = Depends(require_admin),
):
    try:
        txs = await refund(session, transaction_id, payload.reason)
    except QuizguardError as e:
        await session.rollback()
        raise HTTPException(status_code=e.status_code, detail=str(e))
    await session.commit()
    log.info("admin_refund", admin_id=str(admin_id), transaction_id=str(transaction_id))
    return TransferResult(correlation_id=txs[0].correlation_id, transactions=[to_public(t) for t in txs])

@router.post("/withdrawals/{transaction_id}/settle", response_model=LedgerTransactionPublic)
async def settle(
    payload: SettleWithdrawalRequest,
    transaction_id: UUID = Path(...),
    session: AsyncSession = Depends(get_session),
    admin_id: UUID = Depends(require_admin),
):
    if not payload.approve and not (payload.reason and len(payload.reason.strip()) >= 10):
        raise HTTPException(status_code=422, detail="Rejection reason must be at least 10 characters")
    try:
        tx = await settle_withdrawal(session, transaction_id, approve=payload.approve, reason=payload.reason)
    except QuizguardError as e:
        await session.rollback()
        raise HTTPException(status_code=e.status_code, detail=str(e))
    await session.commit()
    log.info("admin_withdrawal_settled", admin_id=str(admin_id), transaction_id=str(transaction_id), approved=payload.approve)
    return to_public(tx)

@router.post("/corrections", response_model=LedgerTransactionPublic, status_code=201)
async def create_correction(
    payload: CorrectionRequest,
    session: AsyncSession = Depends(get_session),
    admin_id: UUID = Depends(require_admin),
):
    try:
        tx = await apply_correction(session, payload.account_id, payload.delta, payload.note)
    except QuizguardError as e:
        await session.rollback()
        raise HTTPException(status_code=e.status_code, detail=str(e))
    await session.commit()
    log.info("admin_correction", admin_id=str(admin_id), account_id=str(payload.account_id), delta=payload.delta)
    return to_public(tx)
