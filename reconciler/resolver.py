from datetime import date, timedelta

from reconciler.config import MAX_LOOKBACK_DAYS
from reconciler.models import OPEN_INVOICE_STATUSES, Invoice


def lookback_start(transaction, lookback_days):
    days = min(lookback_days or MAX_LOOKBACK_DAYS, MAX_LOOKBACK_DAYS)
    reference = transaction.value_date or date.today()
    return reference - timedelta(days=days)


def candidates(company_id, transaction, lookback_days=None):
    """Open invoices of the company a transaction could pay. Read only."""
    query = Invoice.query.filter(
        Invoice.company_id == company_id,
        Invoice.status.in_(OPEN_INVOICE_STATUSES),
        Invoice.issue_date >= lookback_start(transaction, lookback_days),
    )
    # Neznámá měna = porovnáváme se všemi fakturami
    if transaction.currency:
        query = query.filter(Invoice.currency == transaction.currency)
    return query.order_by(Invoice.issue_date.desc(), Invoice.id).all()
