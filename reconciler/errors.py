class ReconciliationError(Exception):
    """Base class for payment reconciliation failures."""


class NoMatchingAccount(ReconciliationError):
    # Příjemce e-mailu neodpovídá žádnému registrovanému účtu
    def __init__(self, recipient=None, bank_account_id=None):
        if bank_account_id is not None:
            message = f"Bank account {bank_account_id} not found"
        else:
            message = f"No bank account found for email address {recipient!r}"
        super().__init__(message)
        self.recipient = recipient
        self.bank_account_id = bank_account_id


class ParseAmbiguous(ReconciliationError):
    def __init__(self, raw, reason="unparseable amount"):
        super().__init__(f"{reason}: {raw!r}")
        self.raw = raw


class DuplicateTransaction(ReconciliationError):
    """Transaction fingerprint already stored. Not a failure, callers get the stored state."""


class PersistenceConflict(DuplicateTransaction):
    """Unique constraint on the fingerprint fired because a concurrent insert won."""


class StaleInvoice(ReconciliationError):
    def __init__(self, invoice_id):
        super().__init__(f"Invoice {invoice_id} is no longer open for payment")
        self.invoice_id = invoice_id


InvoiceNotFound = StaleInvoice


class PersistenceError(ReconciliationError):
    """Database is unreachable, the whole call fails."""


class ManualResolutionError(ReconciliationError):
    pass
