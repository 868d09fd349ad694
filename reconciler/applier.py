"""Persist match decisions and move invoice payment state.

Each bank transaction is one short database transaction keyed by its
fingerprint. The ``(bank_account_id, fingerprint)`` unique constraint is what
keeps a re-delivered or re-forwarded statement from paying an invoice twice,
also when two webhook calls race across processes.
"""

import hashlib
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from reconciler.config import AMOUNT_EPSILON
from reconciler.errors import DuplicateTransaction, ManualResolutionError, PersistenceConflict, StaleInvoice
from reconciler.logger import get_logger
from reconciler.matcher import ZERO, Ambiguous, Matched, normalize_account, normalize_symbol
from reconciler.models import OPEN_INVOICE_STATUSES, BankTransaction, Invoice, MatchAuditEntry, db, utcnow

logger = get_logger(__name__)

AUDIT_DECISIONS = {
    'matched': 'auto_matched',
    'ambiguous': 'ambiguous',
    'unmatched': 'unmatched',
}


@dataclass
class ApplyResult:
    transaction: BankTransaction
    duplicate: bool = False
    invoice_updated: bool = False


def fingerprint(bank_account_id, transaction):
    """SHA256(bank_account_id|value_date|amount|VS|counterparty account)."""
    components = [
        str(bank_account_id),
        transaction.value_date.isoformat() if transaction.value_date else '',
        str(transaction.amount.quantize(ZERO)),
        normalize_symbol(transaction.variable_symbol) or '',
        normalize_account(transaction.counterparty_account) or '',
    ]
    return hashlib.sha256("|".join(components).encode('utf-8')).hexdigest()


@contextmanager
def unit_of_work():
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        # Jen souběžný zápis stejného otisku je duplicita, ostatní chyby (FK, NOT NULL) propadnou
        message = str(e.orig)
        if 'fingerprint' in message and 'unique' in message.lower():
            raise PersistenceConflict(message) from e
        raise
    except Exception:
        db.session.rollback()
        raise


def find_by_fingerprint(bank_account_id, key):
    return BankTransaction.query.filter_by(bank_account_id=bank_account_id, fingerprint=key).first()


def record_payment(invoice, amount, epsilon=AMOUNT_EPSILON):
    invoice.amount_paid = (invoice.amount_paid or ZERO) + amount
    # Zaplacenou fakturu nikdy nevracíme do dřívějšího stavu
    if invoice.status == 'paid':
        return
    if invoice.amount_paid >= invoice.total - epsilon:
        invoice.status = 'paid'
        if invoice.paid_at is None:
            invoice.paid_at = utcnow()
    else:
        invoice.status = 'partially_paid'


def _lock_open_invoice(invoice_id, company_id):
    return (Invoice.query
            .filter(Invoice.id == invoice_id,
                    Invoice.company_id == company_id,
                    Invoice.status.in_(OPEN_INVOICE_STATUSES))
            .with_for_update()
            .populate_existing()
            .first())


def audit_entry(row, decision):
    details = {'rule': decision.rule}
    invoice_id = None
    if isinstance(decision, Matched):
        invoice_id = decision.invoice.id
        if decision.surplus > 0:
            # Přeplatek se automaticky nevrací, jde k ruční kontrole
            details['surplus'] = str(decision.surplus)
            details['needs_review'] = True
    elif isinstance(decision, Ambiguous):
        details['candidate_ids'] = list(decision.candidate_ids)
        if len(decision.candidate_ids) == 1:
            invoice_id = decision.candidate_ids[0]

    return MatchAuditEntry(
        transaction=row,
        invoice_id=invoice_id,
        decision=AUDIT_DECISIONS[decision.status],
        score=decision.confidence,
        rationale=decision.rationale[:255],
        details=details,
    )


def apply(bank_account, transaction, decision, epsilon=AMOUNT_EPSILON) -> ApplyResult:
    key = fingerprint(bank_account.id, transaction)
    try:
        with unit_of_work():
            if find_by_fingerprint(bank_account.id, key) is not None:
                raise DuplicateTransaction(key)

            invoice = None
            if isinstance(decision, Matched):
                # Zamknout fakturu dřív, než je v session nový řádek s jejím id
                invoice = _lock_open_invoice(decision.invoice.id, bank_account.company_id)
                if invoice is None:
                    raise StaleInvoice(decision.invoice.id)

            row = BankTransaction(
                bank_account_id=bank_account.id,
                company_id=bank_account.company_id,
                amount=transaction.amount,
                currency=transaction.currency,
                value_date=transaction.value_date,
                variable_symbol=transaction.variable_symbol,
                constant_symbol=transaction.constant_symbol,
                specific_symbol=transaction.specific_symbol,
                counterparty_account=transaction.counterparty_account,
                counterparty_name=transaction.counterparty_name,
                raw_memo=transaction.raw_memo,
                fingerprint=key,
                match_status=decision.status,
                matched_invoice_id=decision.invoice.id if isinstance(decision, Matched) else None,
                match_confidence=decision.confidence,
            )
            db.session.add(row)

            invoice_updated = invoice is not None
            if invoice_updated:
                record_payment(invoice, transaction.amount, epsilon)

            db.session.add(audit_entry(row, decision))
    except DuplicateTransaction as e:
        stored = find_by_fingerprint(bank_account.id, key)
        if stored is None:
            raise
        logger.info("duplicate_transaction", bank_account_id=bank_account.id, transaction_id=stored.id,
                    race=isinstance(e, PersistenceConflict))
        return ApplyResult(stored, duplicate=True)

    logger.info("transaction_applied", bank_account_id=bank_account.id, transaction_id=row.id,
                status=row.match_status, invoice_id=row.matched_invoice_id, rule=decision.rule)
    return ApplyResult(row, invoice_updated=invoice_updated)


def resolve_manually(transaction_id, invoice_id, user_id=None, epsilon=AMOUNT_EPSILON):
    """Human override: pair a stored transaction with an invoice of the same company."""
    with unit_of_work():
        row = BankTransaction.query.filter_by(id=transaction_id).with_for_update().first()
        if row is None:
            raise ManualResolutionError(f"Transaction {transaction_id} not found")
        invoice = Invoice.query.filter_by(id=invoice_id, company_id=row.company_id).with_for_update().first()
        if invoice is None:
            raise ManualResolutionError(f"Invoice {invoice_id} not found")

        previous = row.match_status
        if previous == 'manually_resolved':
            raise ManualResolutionError(f"Transaction {transaction_id} is already resolved")
        if previous == 'matched':
            if row.matched_invoice_id != invoice.id:
                raise ManualResolutionError(
                    f"Transaction {transaction_id} is already matched to invoice {row.matched_invoice_id}")
        else:
            if row.amount <= 0:
                raise ManualResolutionError("Outgoing payments cannot pay an invoice")
            if invoice.status not in OPEN_INVOICE_STATUSES + ('paid',):
                raise ManualResolutionError(f"Invoice {invoice_id} is {invoice.status}")
            record_payment(invoice, row.amount, epsilon)

        row.match_status = 'manually_resolved'
        row.matched_invoice_id = invoice.id
        row.match_confidence = 1.0
        db.session.add(MatchAuditEntry(
            transaction=row,
            invoice_id=invoice.id,
            decision='manual',
            score=1.0,
            rationale=f"Manual match by user {user_id}" if user_id else "Manual match",
            details={'previous_status': previous, 'user_id': user_id},
        ))

    logger.info("transaction_resolved_manually", transaction_id=transaction_id, invoice_id=invoice_id,
                previous_status=previous, user_id=user_id)
    return row
