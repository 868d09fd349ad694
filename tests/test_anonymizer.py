import json

from tools.anonymizer import anonymize, anonymize_payload

PAYLOAD = {
    'from': 'Jan.Novak@firma.cz',
    'to': 'bank.219819.b7a9415jfb@doklad.ai',
    'subject': 'Platba',
    'body': "15.01.2025  25 000,00 CZK  VS: 2025001\n"
            "Protistrana: Firma ABC s.r.o., 123456789/0800\n"
            "Kopie: jan.novak@firma.cz, účet 123456789/0800\n",
    'attachments': [{'filename': 'pohyby.txt', 'content_type': 'text/plain',
                     'content': 'Název protiúčtu: Jan Novák\nProtiúčet: 19-2000145399/0800'}],
}


def test_names_accounts_and_emails_are_replaced():
    result = anonymize_payload(PAYLOAD, seed=1)
    body = result['body']

    assert 'Firma ABC' not in body
    assert 'Protistrana: Zákazník_1' in body
    assert '123456789/0800' not in body
    assert 'firma.cz' not in body
    assert result['from'] == 'user1@example.com'
    assert 'user1@example.com' in body

    attachment = result['attachments'][0]['content']
    assert 'Jan Novák' not in attachment
    assert 'Zákazník_2' in attachment
    assert attachment.endswith('/0800')


def test_same_account_gets_same_replacement():
    body = anonymize_payload(PAYLOAD, seed=1)['body']
    replaced = [line.rsplit(' ', 1)[-1] for line in body.splitlines()[1:3]]

    assert replaced[0] == replaced[1]
    assert replaced[0].endswith('/0800')


def test_statement_amounts_and_symbols_survive():
    body = anonymize_payload(PAYLOAD, seed=1)['body']
    assert body.splitlines()[0] == "15.01.2025  25 000,00 CZK  VS: 2025001"


def test_anonymize_file(tmp_path):
    source = tmp_path / 'payment-email-1-20250115T101500000000.json'
    source.write_text(json.dumps(PAYLOAD), encoding='utf-8')

    output = anonymize(str(source))

    assert output.endswith('.anonymized.json')
    with open(output, encoding='utf-8') as f:
        assert 'Firma ABC' not in f.read()
