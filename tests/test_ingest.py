import pytest

from reconciler.errors import NoMatchingAccount
from reconciler.ingest import Attachment, Notification, decode_content, find_bank_account, ingest, normalize_text
from reconciler.models import db

from conftest import PAYMENT_EMAIL


def test_ingest_concatenates_text_parts(account):
    notification = Notification(
        to=PAYMENT_EMAIL,
        sender='info@fio.cz',
        subject='Pohyby na účtu',
        body='Dobrý den,\r\nv příloze posíláme pohyby.',
        attachments=[
            Attachment('pohyby.csv', 'text/csv', 'Datum;Objem\r\n15.01.2025;100,00'),
            Attachment('vypis.pdf', 'application/pdf', b'%PDF-1.4'),
        ],
    )

    normalized = ingest(notification)

    assert normalized.bank_account.id == account.id
    assert normalized.text.startswith('From: info@fio.cz\nSubject: Pohyby na účtu\n')
    assert 'v příloze posíláme pohyby.' in normalized.text
    assert '--- ATTACHMENTS ---\npohyby.csv:\nDatum;Objem\n15.01.2025;100,00' in normalized.text
    assert '\r' not in normalized.text
    assert '%PDF' not in normalized.text
    assert [a.filename for a in normalized.skipped_attachments] == ['vypis.pdf']


def test_recipient_with_display_name_and_case(account):
    found = find_bank_account(f'"Doklad platby" <{PAYMENT_EMAIL.upper()}>')
    assert found.id == account.id


def test_unknown_recipient(account):
    with pytest.raises(NoMatchingAccount):
        ingest(Notification(to='nobody@doklad.ai', body='15.01.2025  100,00 CZK'))


def test_wildcard_characters_do_not_match(account):
    assert find_bank_account('bank_219819_b7a9415jfb@doklad.ai') is None


def test_inactive_account_is_not_routed(account):
    account.is_active = False
    db.session.commit()

    with pytest.raises(NoMatchingAccount):
        ingest(Notification(to=PAYMENT_EMAIL))


def test_decode_cp1250_attachment():
    raw = 'Částka: 1 500,00 Kč'.encode('cp1250')
    assert decode_content(raw) == 'Částka: 1 500,00 Kč'
    assert decode_content('už text') == 'už text'


def test_normalize_text():
    assert normalize_text('25\u00a0000,00\u202fCZK\r\n') == '25 000,00 CZK\n'
    # NFD "á" -> NFC
    assert normalize_text('a\u0301') == '\u00e1'
