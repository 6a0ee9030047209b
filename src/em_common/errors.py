"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth
  2xxx: Listing
  3xxx: Transaction / Payment
  4xxx: Credentials
  5xxx: Dispute
  9xxx: System
"""


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Invalid or expired token", 401)


class ForbiddenError(AppError):
    def __init__(self, detail: str = "You are not allowed to perform this action") -> None:
        super().__init__(1003, detail, 403)


# --- 2xxx: Listing ---

class ListingNotAvailableError(AppError):
    def __init__(self) -> None:
        super().__init__(2001, "This account is no longer available for purchase.", 409)


class SelfPurchaseError(AppError):
    def __init__(self) -> None:
        super().__init__(2002, "You cannot purchase your own posting.", 422)


# --- 3xxx: Transaction / Payment ---

class InvalidAmountError(AppError):
    def __init__(self, amount: int) -> None:
        super().__init__(3001, f"Item price must be positive, got {amount}", 422)


class TransactionNotFoundError(AppError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(3002, f"Transaction not found: {transaction_id}", 404)


class InvalidTransitionError(AppError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(3003, f"Transaction cannot move from {current} to {target}", 409)


class PaymentProviderError(AppError):
    def __init__(self, detail: str = "Failed to create payment link.") -> None:
        super().__init__(3004, detail, 502)


class InvalidSignatureError(AppError):
    def __init__(self) -> None:
        super().__init__(3005, "Invalid webhook signature", 401)


class MalformedPayloadError(AppError):
    def __init__(self, detail: str = "Invalid webhook payload") -> None:
        super().__init__(3006, detail, 400)


class PaymentAmountMismatchError(AppError):
    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            3007, f"Paid amount {received} does not match expected {expected}", 422
        )


class WebhookTimeoutError(AppError):
    def __init__(self) -> None:
        super().__init__(3008, "Webhook processing timed out. Please retry.", 503)


# --- 4xxx: Credentials ---

class CredentialsNotReadyError(AppError):
    def __init__(self) -> None:
        super().__init__(
            4001, "Credentials only available after transaction is completed.", 409
        )


class CredentialsExpiredError(AppError):
    def __init__(self) -> None:
        super().__init__(4002, "The credential viewing window has expired.", 410)


# --- 5xxx: Dispute ---

class DisputeNotFoundError(AppError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(5001, f"Dispute not found: {dispute_id}", 404)


class DisputeConflictError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5002, detail, 409)


class InvalidRefundPercentageError(AppError):
    def __init__(self, value: int | None) -> None:
        super().__init__(5003, f"Invalid refund percentage: {value}", 422)


class DisputeValidationError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(5004, detail, 422)


# --- 9xxx: System ---

class RateLimitError(AppError):
    def __init__(self, retry_after: int | None = None) -> None:
        msg = "Too many requests"
        if retry_after:
            msg = f"Too many requests. Please try again in {retry_after} seconds."
        super().__init__(9001, msg, 429)
        self.retry_after = retry_after


class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class CacheUnavailableError(AppError):
    def __init__(self) -> None:
        super().__init__(9003, "Service temporarily unavailable", 503)


class JobNotFoundError(AppError):
    def __init__(self, name: str) -> None:
        super().__init__(9004, f"Unknown scheduled job: {name}", 404)
