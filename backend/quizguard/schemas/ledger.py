from __future__ import annotations
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

class TransferOp(BaseModel):
    account_id: UUID
    delta: int  # signed, minor units, never zero
    kind: str
    note: str | None = None

class LedgerTransactionPublic(BaseModel):
    id: UUID
    account_id: UUID
    kind: str
    amount: int
    balance_before: int
    balance_after: int
    status: str
    correlation_id: UUID
    reversed_by: UUID | None = None
    related_quiz_id: UUID | None = None
    related_session_id: UUID | None = None
    note: str | None = None
    created_at: datetime

class WalletSnapshot(BaseModel):
    balance: int
    lifetime_earned: int
    lifetime_spent: int
    transactions: list[LedgerTransactionPublic]

class WithdrawRequest(BaseModel):
    amount: int = Field(gt=0, description="minor units")

class SettleWithdrawalRequest(BaseModel):
    approve: bool
    reason: str | None = Field(default=None, max_length=255)

class RefundRequest(BaseModel):
    reason: str = Field(min_length=3, max_length=255)

class CorrectionRequest(BaseModel):
    account_id: UUID
    delta: int
    note: str = Field(min_length=3, max_length=255)

class TransferResult(BaseModel):
    correlation_id: UUID
    transactions: list[LedgerTransactionPublic]
