from __future__ import annotations
import uuid
from datetime import datetime, timezone
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, BigInteger, DateTime, ForeignKey, CheckConstraint, Uuid, func
from quizguard.db import Base

TX_KINDS = ("charge", "payout-share", "refund", "withdrawal", "correction")
TX_STATUSES = ("pending", "completed", "failed", "reversed")

class LedgerTransaction(Base):
    """
    Immutable record of one balance change on one account.
    Direction convention:
      - amount is always positive
      - balance_after - balance_before is the signed delta
    Every row produced by one transfer shares a correlation_id.
    Status only moves forward: pending -> completed|failed, completed -> reversed.
    """
    __tablename__ = "ledger_transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.user_id", ondelete="RESTRICT"), index=True, nullable=False
    )

    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # charge | payout-share | refund | withdrawal | correction
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="completed")

    correlation_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    # Correlation id of the compensating transfer, once reversed
    reversed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    related_quiz_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)
    related_session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True, nullable=True)
    note: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_tx_amount_positive"),
        CheckConstraint("balance_after >= 0", name="ck_ledger_tx_balance_after_non_negative"),
    )

    @property
    def delta(self) -> int:
        return int(self.balance_after) - int(self.balance_before)
