"""Webhook-facing orchestration: ingest -> extract -> resolve -> match -> apply."""

from dataclasses import dataclass, field
from typing import List

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import OperationalError

from reconciler import resolver
from reconciler.applier import apply
from reconciler.audit_sink import save_payload_for_debugging
from reconciler.errors import NoMatchingAccount, PersistenceError, StaleInvoice
from reconciler.extractor import extract
from reconciler.ingest import ingest
from reconciler.logger import get_logger
from reconciler.matcher import Unmatched, match
from reconciler.models import BankAccount, BankTransaction, MatchAuditEntry, db, utcnow

logger = get_logger(__name__)


@dataclass
class ProcessingResult:
    processed: int = 0
    matched: int = 0
    errors: List[str] = field(default_factory=list)

    def as_dict(self):
        return {"processed": self.processed, "matched": self.matched, "errors": self.errors}


def _settings():
    config = current_app.config
    return {
        'epsilon': config['RECONCILE_AMOUNT_EPSILON'],
        'name_threshold': config['RECONCILE_NAME_THRESHOLD'],
        'min_confidence': config['RECONCILE_MIN_CONFIDENCE'],
        'lookback_days': config['RECONCILE_LOOKBACK_DAYS'],
    }


def _decide(account, transaction, settings):
    if not account.enable_payment_matching:
        return Unmatched('matching_disabled', "payment matching is disabled for this bank account")
    candidates = resolver.candidates(account.company_id, transaction, settings['lookback_days'])
    return match(transaction, candidates, settings['epsilon'], settings['name_threshold'], settings['min_confidence'])


def reconcile_transaction(account, transaction, settings):
    decision = _decide(account, transaction, settings)
    try:
        return apply(account, transaction, decision, settings['epsilon'])
    except StaleInvoice as e:
        # Faktura mezitím zmizela nebo byla uhrazena, jeden nový pokus s čerstvými kandidáty
        logger.info("stale_invoice_retry", invoice_id=e.invoice_id)

    decision = _decide(account, transaction, settings)
    try:
        return apply(account, transaction, decision, settings['epsilon'])
    except StaleInvoice as e:
        logger.warning("stale_invoice_unmatched", invoice_id=e.invoice_id)
        return apply(account, transaction,
                     Unmatched('stale_invoice', f"invoice {e.invoice_id} changed while matching"),
                     settings['epsilon'])


def _load_account(bank_account_id, company_id):
    try:
        account = BankAccount.query.filter_by(id=bank_account_id, company_id=company_id, is_active=True).first()
    except OperationalError as e:
        db.session.rollback()
        raise PersistenceError(str(e.orig)) from e
    if account is None:
        raise NoMatchingAccount(bank_account_id=bank_account_id)
    return account


def process_statement_text(account, text):
    settings = _settings()
    result = ProcessingResult()

    for transaction in extract(text, default_currency=account.currency):
        try:
            outcome = reconcile_transaction(account, transaction, settings)
        except OperationalError as e:
            db.session.rollback()
            logger.error("persistence_outage", bank_account_id=account.id, exc_info=True)
            raise PersistenceError(str(e.orig)) from e
        except Exception as e:
            db.session.rollback()
            message = f"Error processing payment {transaction.amount} {transaction.currency}: {e}"
            logger.error("transaction_failed", bank_account_id=account.id, amount=str(transaction.amount),
                         variable_symbol=transaction.variable_symbol, exc_info=True)
            result.errors.append(message)
            continue

        result.processed += 1
        if outcome.invoice_updated:
            result.matched += 1

    account.last_processed_payment = utcnow()
    db.session.commit()

    logger.info("statement_processed", bank_account_id=account.id, company_id=account.company_id,
                processed=result.processed, matched=result.matched, errors=len(result.errors))
    return result


def process_bank_statement_email(content, bank_account_id, company_id):
    account = _load_account(bank_account_id, company_id)
    return process_statement_text(account, content)


def process_notification(notification):
    try:
        normalized = ingest(notification)
    except OperationalError as e:
        db.session.rollback()
        raise PersistenceError(str(e.orig)) from e

    account = normalized.bank_account
    save_payload_for_debugging(current_app.config['PAYMENT_EMAIL_DEBUG_DIR'], notification, account.id)
    return process_statement_text(account, normalized.text)


def matching_stats(company_id):
    counts = dict(
        db.session.query(BankTransaction.match_status, func.count(BankTransaction.id))
        .filter(BankTransaction.company_id == company_id)
        .group_by(BankTransaction.match_status)
        .all()
    )
    total = sum(counts.values())
    matched = counts.get('matched', 0) + counts.get('manually_resolved', 0)
    last_processed = (db.session.query(func.max(BankAccount.last_processed_payment))
                      .filter(BankAccount.company_id == company_id)
                      .scalar())

    return {
        "total": total,
        "matched": counts.get('matched', 0),
        "manually_resolved": counts.get('manually_resolved', 0),
        "ambiguous": counts.get('ambiguous', 0),
        "unmatched": counts.get('unmatched', 0),
        "match_rate": round(matched / total * 100, 2) if total else 0.0,
        "last_processed": last_processed.isoformat() if last_processed else None,
    }


MATCHED_STATUSES = ('matched', 'manually_resolved')
OPEN_STATUSES = ('unmatched', 'ambiguous')


def _transaction_dict(tx):
    return {
        "id": tx.id,
        "amount": str(tx.amount),
        "currency": tx.currency,
        "value_date": tx.value_date.isoformat() if tx.value_date else None,
        "variable_symbol": tx.variable_symbol,
        "counterparty_name": tx.counterparty_name,
        "counterparty_account": tx.counterparty_account,
        "status": tx.match_status,
    }


def manual_review_queue(company_id):
    txs = (BankTransaction.query
           .filter(BankTransaction.company_id == company_id,
                   BankTransaction.match_status.in_(OPEN_STATUSES))
           .order_by(BankTransaction.value_date.desc(), BankTransaction.id.desc())
           .all())
    results = []
    for tx in txs:
        # Poslední záznam auditu jako návrh
        log = MatchAuditEntry.query.filter_by(transaction_id=tx.id).order_by(MatchAuditEntry.id.desc()).first()
        suggestion = None
        if log:
            suggestion = {
                "invoice_id": log.invoice_id,
                "candidate_ids": (log.details or {}).get('candidate_ids', []),
                "score": log.score,
                "rationale": log.rationale,
            }

        item = _transaction_dict(tx)
        item["suggestion"] = suggestion
        results.append(item)
    return results


def list_transactions(company_id, matched=None, limit=50, offset=0):
    query = BankTransaction.query.filter(BankTransaction.company_id == company_id)
    if matched is not None:
        query = query.filter(BankTransaction.match_status.in_(MATCHED_STATUSES if matched else OPEN_STATUSES))

    txs = (query.order_by(BankTransaction.value_date.desc(), BankTransaction.id.desc())
           .limit(limit).offset(offset).all())
    results = []
    for tx in txs:
        item = _transaction_dict(tx)
        item["matched_invoice_id"] = tx.matched_invoice_id
        item["match_confidence"] = tx.match_confidence
        results.append(item)
    return results


def list_matches(company_id, limit=50, offset=0):
    """Audit trail of match decisions, newest first."""
    entries = (MatchAuditEntry.query
               .join(BankTransaction, MatchAuditEntry.transaction_id == BankTransaction.id)
               .filter(BankTransaction.company_id == company_id)
               .order_by(MatchAuditEntry.created_at.desc(), MatchAuditEntry.id.desc())
               .limit(limit).offset(offset).all())
    return [{
        "id": entry.id,
        "transaction_id": entry.transaction_id,
        "invoice_id": entry.invoice_id,
        "decision": entry.decision,
        "score": entry.score,
        "rationale": entry.rationale,
        "details": entry.details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    } for entry in entries]
