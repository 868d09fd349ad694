from datetime import date
from decimal import Decimal

import pytest

from reconciler.errors import ParseAmbiguous
from reconciler.extractor import extract, parse_amount, statement_line_rule

from conftest import FIO_STATEMENT

AVIZO = """Dobrý den,
na Váš účet 2602094613/2010 byla připsána platba.

Částka: +12 000,00 CZK
Datum zaúčtování: 03.02.2025
Variabilní symbol: 0002025007
Protiúčet: 19-2000145399/0800
Název protiúčtu: Jan Novák
Zpráva pro příjemce: faktura 2025007
"""

CSV_EXPORT = """Datum;Objem;Měna;Protiúčet;Kód banky;KS;VS;SS;Název protiúčtu;Poznámka
05.02.2025;1 500,00;CZK;123456789;0800;0308;2025010;;Petr Svoboda;faktura
06.02.2025;-250,00;CZK;555666777;0100;;;;Dodavatel s.r.o.;nákup
"""


def test_fio_statement():
    transactions = list(extract(FIO_STATEMENT))

    assert len(transactions) == 2
    first, second = transactions

    assert first.amount == Decimal('25000.00')
    assert first.currency == 'CZK'
    assert first.value_date == date(2025, 1, 15)
    assert first.variable_symbol == '2025001'
    assert first.constant_symbol == '0308'
    assert first.specific_symbol is None
    assert first.counterparty_name == 'Firma ABC s.r.o.'
    assert first.counterparty_account == '123456789/0800'
    assert 'Platba za fakturu 2025001' in first.raw_memo
    assert first.rule == 'statement_line'

    assert second.amount == Decimal('15500.00')
    assert second.variable_symbol == '2025002'
    assert second.counterparty_name == 'Společnost XYZ'
    assert second.counterparty_account == '987654321/0100'


def test_labelled_notification():
    (tx,) = extract(AVIZO)

    assert tx.amount == Decimal('12000.00')
    assert tx.currency == 'CZK'
    assert tx.value_date == date(2025, 2, 3)
    assert tx.variable_symbol == '0002025007'
    assert tx.counterparty_account == '19-2000145399/0800'
    assert tx.counterparty_name == 'Jan Novák'
    assert tx.raw_memo.startswith('Částka:')
    assert tx.raw_memo.endswith('faktura 2025007')
    assert tx.rule == 'labelled_block'


def test_csv_attachment():
    transactions = list(extract(CSV_EXPORT))

    assert [t.amount for t in transactions] == [Decimal('1500.00'), Decimal('-250.00')]
    assert transactions[0].counterparty_account == '123456789/0800'
    assert transactions[0].variable_symbol == '2025010'
    assert transactions[0].constant_symbol == '0308'
    assert transactions[0].counterparty_name == 'Petr Svoboda'
    assert transactions[1].variable_symbol is None
    assert all(t.rule == 'csv' for t in transactions)


@pytest.mark.parametrize('raw', ['25 000,00 CZK', '25000.00', '25.000,00', '25,000.00', '25 000,-', '25000'])
def test_parse_amount_formats(raw):
    assert parse_amount(raw) == Decimal('25000.00')


def test_parse_amount_sign():
    assert parse_amount('+1 500,50') == Decimal('1500.50')
    assert parse_amount('-250,00') == Decimal('-250.00')
    assert parse_amount('−250,00') == Decimal('-250.00')


@pytest.mark.parametrize('raw', ['12,000', 'abc', '', '1.2.3,45'])
def test_parse_amount_ambiguous(raw):
    with pytest.raises(ParseAmbiguous):
        parse_amount(raw)


def test_ambiguous_amount_is_skipped():
    text = "15.01.2025  12,000 CZK  VS: 1\n16.01.2025  500,00 CZK  VS: 2\n"
    transactions = list(extract(text))

    assert len(transactions) == 1
    assert transactions[0].amount == Decimal('500.00')
    assert transactions[0].variable_symbol == '2'


def test_default_currency():
    text = "15.01.2025  25 000,00  VS: 2025001\n"

    assert next(extract(text)).currency is None
    assert next(extract(text, default_currency='EUR')).currency == 'EUR'


def test_kc_is_czk():
    (tx,) = extract("15.01.2025  990,- Kč  VS: 77\n")
    assert tx.amount == Decimal('990.00')
    assert tx.currency == 'CZK'


def test_overlapping_candidates_are_dropped():
    rules = (('first', statement_line_rule), ('second', statement_line_rule))
    transactions = list(extract(FIO_STATEMENT, rules=rules))

    assert len(transactions) == 2
    assert {t.rule for t in transactions} == {'first'}


def test_extract_is_restartable():
    assert list(extract(FIO_STATEMENT)) == list(extract(FIO_STATEMENT))


def test_no_transactions():
    assert list(extract("Dobrý den, děkujeme za objednávku.")) == []
    assert list(extract("")) == []


def test_time_after_date_is_not_the_amount():
    (tx,) = extract("15.01.2025 10:30  25 000,00 CZK  VS: 2025001\n")

    assert tx.amount == Decimal('25000.00')
    assert tx.value_date == date(2025, 1, 15)
    assert tx.variable_symbol == '2025001'


def test_second_date_is_not_the_amount():
    (tx,) = extract("01.01.2025 31.01.2025  500,00 CZK  VS: 7\n")

    assert tx.amount == Decimal('500.00')
    assert tx.value_date == date(2025, 1, 1)


FREE_TEXT = """Dobrý den,
na Váš účet 2602094613/2010 byla dne 15.01.2025 připsána platba 25 000,00 Kč, VS: 2025001, z účtu 123456789/0800.

S pozdravem
Vaše banka
"""


def test_free_text_notification():
    (tx,) = extract(FREE_TEXT, default_currency='CZK')

    assert tx.amount == Decimal('25000.00')
    assert tx.currency == 'CZK'
    assert tx.value_date == date(2025, 1, 15)
    assert tx.variable_symbol == '2025001'
    assert tx.counterparty_account == '123456789/0800'
    assert tx.rule == 'free_text'


def test_free_text_symbols_belong_to_their_amount():
    text = "Připsáno 1 000,00 Kč VS 11 z účtu 111111/0100 a 2 000,00 Kč VS 22 z účtu 222222/0300.\n"
    first, second = extract(text)

    assert (first.amount, first.variable_symbol, first.counterparty_account) == \
        (Decimal('1000.00'), '11', '111111/0100')
    assert (second.amount, second.variable_symbol, second.counterparty_account) == \
        (Decimal('2000.00'), '22', '222222/0300')


def test_free_text_does_not_repeat_structured_lines():
    assert [t.rule for t in extract(FIO_STATEMENT)] == ['statement_line', 'statement_line']
    assert [t.rule for t in extract(AVIZO)] == ['labelled_block']
