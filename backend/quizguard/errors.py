from __future__ import annotations


class QuizguardError(Exception):
    """Base for domain errors. `status_code` is what the HTTP layer answers with."""
    status_code: int = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.__class__.__name__)
        self.context = context


# ---------- ledger ----------

class InsufficientFunds(QuizguardError):
    status_code = 402

class PaymentRequired(QuizguardError):
    status_code = 402

class AccountNotFound(QuizguardError):
    status_code = 404

class NotRefundable(QuizguardError):
    status_code = 409

class InvalidAmount(QuizguardError):
    status_code = 422


# ---------- sessions ----------

class SessionNotFound(QuizguardError):
    status_code = 404

class SessionTerminal(QuizguardError):
    status_code = 409

class SessionNotTerminal(QuizguardError):
    status_code = 409

class SessionExpired(QuizguardError):
    status_code = 410

class DuplicateSession(QuizguardError):
    status_code = 409


# ---------- catalog ----------

class QuizUnavailable(QuizguardError):
    status_code = 404


# ---------- access ----------

class AccessRestricted(QuizguardError):
    status_code = 429
