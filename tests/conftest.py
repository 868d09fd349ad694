from datetime import date
from decimal import Decimal

import pytest

from reconciler.app import create_app
from reconciler.models import BankAccount, Invoice, db

PAYMENT_EMAIL = 'bank.219819.b7a9415jfb@doklad.ai'

FIO_STATEMENT = """
Subject: Bankovní výpis - 15.01.2025

Dobrý den,

zasíláme Vám výpis z účtu 219819-2602094613/2010 za období 15.01.2025.

PŘÍCHODZÍ PLATBY:
15.01.2025  25 000,00 CZK  VS: 2025001  KS: 0308  SS:
Protistrana: Firma ABC s.r.o., 123456789/0800
Popis: Platba za fakturu 2025001

15.01.2025  15 500,00 CZK  VS: 2025002  KS: 0308  SS:
Protistrana: Společnost XYZ, 987654321/0100
Popis: Úhrada faktury

S pozdravem,
Fio banka
"""


def statement_line(day, amount, vs=None, counterparty=None):
    line = f"{day}  {amount} CZK"
    if vs:
        line += f"  VS: {vs}"
    if counterparty:
        line += f"\nProtistrana: {counterparty}"
    return line + "\n"


@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'PAYMENT_EMAIL_DEBUG_DIR': str(tmp_path / 'payment-emails'),
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def account(app):
    account = BankAccount(
        company_id=1,
        name='Hlavní účet CZK',
        account_number='219819-2602094613/2010',
        currency='CZK',
        payment_email=PAYMENT_EMAIL,
    )
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture
def make_invoice(app):
    def _make(**kwargs):
        values = {
            'company_id': 1,
            'invoice_number': 'FV-2025001',
            'currency': 'CZK',
            'total': Decimal('25000.00'),
            'amount_paid': Decimal('0.00'),
            'status': 'sent',
            'variable_symbol': '2025001',
            'issue_date': date(2025, 1, 2),
            'customer_name': 'Firma ABC s.r.o.',
            'customer_account': '123456789/0800',
        }
        values.update(kwargs)
        invoice = Invoice(**values)
        db.session.add(invoice)
        db.session.commit()
        return invoice
    return _make
