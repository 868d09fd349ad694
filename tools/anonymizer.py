"""Anonymizace uložených platebních e-mailů, aby šly použít jako testovací data.

    python tools/anonymizer.py payment-emails/payment-email-1-20250115T101500000000.json
"""
import json
import random
import re
import sys

from reconciler.extractor import ACCOUNT

_ACCOUNT_RE = re.compile(ACCOUNT)
_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_NAME_LINE_RE = re.compile(r"^(?P<label>[ \t]*(?:Protistrana|Název protiúčtu|Plátce)[ \t]*:[ \t]*)(?P<name>[^,\n]+)",
                           re.MULTILINE | re.IGNORECASE)


class Anonymizer:
    def __init__(self, seed=None):
        self.random = random.Random(seed)
        self.names_map = {}
        self.accounts_map = {}
        self.emails_map = {}

    def account(self, match):
        real = match.group(0)
        if real not in self.accounts_map:
            # Ponecháme kód banky pro realističnost
            bank_code = real.split('/')[1] if '/' in real else '0800'
            self.accounts_map[real] = f"{self.random.randint(100000, 999999)}/{bank_code}"
        return self.accounts_map[real]

    def name(self, match):
        real = match.group('name').strip()
        if real not in self.names_map:
            self.names_map[real] = f"Zákazník_{len(self.names_map) + 1}"
        return match.group('label') + self.names_map[real]

    def email(self, match):
        real = match.group(0).lower()
        if real not in self.emails_map:
            self.emails_map[real] = f"user{len(self.emails_map) + 1}@example.com"
        return self.emails_map[real]

    def text(self, value):
        if not isinstance(value, str):
            return value
        value = _NAME_LINE_RE.sub(self.name, value)
        value = _ACCOUNT_RE.sub(self.account, value)
        return _EMAIL_RE.sub(self.email, value)


def anonymize_payload(payload, seed=None):
    anonymizer = Anonymizer(seed)
    result = dict(payload)
    for key in ('from', 'to', 'subject', 'body'):
        result[key] = anonymizer.text(payload.get(key))
    result['attachments'] = [
        dict(a, content=anonymizer.text(a.get('content'))) for a in payload.get('attachments', [])
    ]
    return result


def anonymize(path, output=None):
    with open(path, 'r', encoding='utf-8') as f:
        payload = json.load(f)

    output = output or re.sub(r"(\.json)?$", ".anonymized.json", path, count=1)
    with open(output, 'w', encoding='utf-8') as f:
        json.dump(anonymize_payload(payload), f, indent=2, ensure_ascii=False)
    return output


if __name__ == '__main__':
    for arg in sys.argv[1:]:
        print(anonymize(arg))
