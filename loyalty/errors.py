from typing import Optional


class LoyaltyError(Exception):
    pass


class ClientError(LoyaltyError):
    """Bad input, business refusal or exhausted resource. Never retried."""


class InfrastructureError(LoyaltyError):
    """Ledger or store side failure. Retry policy belongs to the caller."""


class InvalidArgument(ClientError):
    pass


class NotEligible(ClientError):
    pass


class TransactionValidationError(ClientError):
    pass


class TransactionNotFound(TransactionValidationError):
    pass


class MissingTimestamp(TransactionValidationError):
    pass


class StaleTransaction(TransactionValidationError):
    pass


class ValidationFailed(TransactionValidationError):
    pass


class ResourceExhausted(ClientError):
    """Operational/provisioning problem surfaced to the caller."""


class NoInventory(ResourceExhausted):
    pass


class SourceAccountEmpty(ResourceExhausted):
    pass


class LedgerUnavailable(InfrastructureError):
    pass


class StoreUnavailable(InfrastructureError):
    pass


class DerivationExhausted(InfrastructureError):
    pass


class RejectedByProgram(InfrastructureError):
    def __init__(self, reason: str, signature: Optional[str] = None):
        super().__init__(f"Transaction rejected: {reason}")
        self.reason = reason
        self.signature = signature


class AccountDecodeError(InfrastructureError):
    pass
