from fastapi import HTTPException

class LedgerError(HTTPException):
    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

class AccountNotFoundError(LedgerError):
    def __init__(self):
        super().__init__(status_code=404, detail="Account not found")

class ItemNotFoundError(LedgerError):
    def __init__(self):
        super().__init__(status_code=404, detail="Item not found")

class TransactionNotFoundError(LedgerError):
    def __init__(self):
        super().__init__(status_code=404, detail="Transaction not found")

class PaymentMethodNotFoundError(LedgerError):
    def __init__(self):
        super().__init__(status_code=404, detail="Payment method not found")

class InsufficientFundsError(LedgerError):
    def __init__(self):
        super().__init__(status_code=400, detail="Insufficient funds for transaction")

class InvalidAmountError(LedgerError):
    def __init__(self, detail: str = "Transaction amount must be positive"):
        super().__init__(status_code=400, detail=detail)

class BelowMinimumAmountError(LedgerError):
    def __init__(self, minimum):
        super().__init__(status_code=400, detail=f"Amount is below the payment method minimum of {minimum}")

class PaymentMethodInactiveError(LedgerError):
    def __init__(self):
        super().__init__(status_code=400, detail="Payment method is not active")

class ItemUnavailableError(LedgerError):
    def __init__(self):
        super().__init__(status_code=409, detail="Item is not available")

class NotOwnerError(LedgerError):
    def __init__(self):
        super().__init__(status_code=403, detail="Item is not owned by this account")

class AccountNotEmptyError(LedgerError):
    def __init__(self):
        super().__init__(status_code=409, detail="Account balance must be zero before deletion")

class PermissionDeniedError(LedgerError):
    def __init__(self, detail: str = "Staff permissions required"):
        super().__init__(status_code=403, detail=detail)

class NotAuthenticatedError(LedgerError):
    def __init__(self):
        super().__init__(status_code=401, detail="X-Account-Id header required")

class StorageUnavailableError(LedgerError):
    def __init__(self):
        super().__init__(status_code=503, detail="Storage backend unavailable")
