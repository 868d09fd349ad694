from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()

OPEN_INVOICE_STATUSES = ('sent', 'overdue', 'partially_paid')


def utcnow():
    return datetime.now(timezone.utc)


class BankAccount(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255))
    account_number = db.Column(db.String(50), nullable=False) # např. '219819-2602094613/2010'
    iban = db.Column(db.String(34))
    currency = db.Column(db.String(3), nullable=False, default='CZK')
    payment_email = db.Column(db.String(255), unique=True) # bank.219819.b7a9415jfb@doklad.ai
    enable_payment_matching = db.Column(db.Boolean, nullable=False, default=True)
    enable_outgoing_payment_matching = db.Column(db.Boolean, nullable=False, default=False)
    enable_bulk_matching = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    last_processed_payment = db.Column(db.DateTime(timezone=True))


class Invoice(db.Model):
    # Fakturu vlastní fakturační modul, párování zapisuje jen amount_paid, status a paid_at
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, nullable=False, index=True)
    invoice_number = db.Column(db.String(50), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default='CZK')
    total = db.Column(db.Numeric(12, 2), nullable=False)
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = db.Column(db.Enum('draft', 'sent', 'paid', 'overdue', 'partially_paid', 'cancelled', name='invoice_status_enum'),
                       nullable=False, default='draft')
    variable_symbol = db.Column(db.String(10))
    issue_date = db.Column(db.Date, nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True))
    customer_name = db.Column(db.String(255))
    customer_account = db.Column(db.String(50))

    @property
    def outstanding(self):
        return (self.total or 0) - (self.amount_paid or 0)


class BankTransaction(db.Model):
    __table_args__ = (
        db.UniqueConstraint('bank_account_id', 'fingerprint', name='uq_bank_transaction_fingerprint'),
    )

    id = db.Column(db.Integer, primary_key=True)
    bank_account_id = db.Column(db.Integer, db.ForeignKey('bank_account.id'), nullable=False)
    company_id = db.Column(db.Integer, nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False) # záporná částka = odchozí platba
    currency = db.Column(db.String(3))
    value_date = db.Column(db.Date)
    variable_symbol = db.Column(db.String(10))
    constant_symbol = db.Column(db.String(10))
    specific_symbol = db.Column(db.String(10))
    counterparty_account = db.Column(db.String(50))
    counterparty_name = db.Column(db.String(255))
    raw_memo = db.Column(db.Text)
    fingerprint = db.Column(db.String(64), nullable=False)
    match_status = db.Column(db.Enum('unmatched', 'matched', 'ambiguous', 'manually_resolved', name='match_status_enum'),
                             nullable=False, default='unmatched')
    matched_invoice_id = db.Column(db.Integer, db.ForeignKey('invoice.id'))
    match_confidence = db.Column(db.Float, nullable=False, default=0.0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)


class MatchAuditEntry(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey('bank_transaction.id'), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoice.id'))
    decision = db.Column(db.Enum('auto_matched', 'ambiguous', 'unmatched', 'manual', name='match_decision_enum'),
                         nullable=False)
    score = db.Column(db.Float, nullable=False, default=0.0)
    rationale = db.Column(db.String(255), nullable=False) # Které pravidlo rozhodlo
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    transaction = db.relationship('BankTransaction', backref=db.backref('audit_entries', order_by='MatchAuditEntry.id'))


@event.listens_for(MatchAuditEntry, 'before_update')
@event.listens_for(MatchAuditEntry, 'before_delete')
def _audit_is_append_only(mapper, connection, target):
    raise ValueError(f"MatchAuditEntry {target.id} is immutable")
