"""Bank statement text -> transaction candidates.

Every layout we understand is a separate rule: a pure function taking the
normalised notification text and yielding ``(span, fields)`` pairs. ``extract``
runs the rules in order and drops any candidate whose span overlaps text an
earlier candidate already consumed, so one payment line is never counted twice.
"""

import csv
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional

from reconciler.errors import ParseAmbiguous
from reconciler.logger import get_logger
from reconciler.unaccent import remove_diacritics

logger = get_logger(__name__)

TWO_PLACES = Decimal('0.01')

AMOUNT = r"[+\-−]?(?:\d{1,3}(?:[ .,]\d{3})+|\d+)(?:[.,]\d{1,2})?(?:,-)?"
CURRENCY = r"CZK|EUR|USD|GBP|PLN|CHF|Kč|Kc"
DATE = r"\d{1,2}\.[ ]?\d{1,2}\.[ ]?\d{4}|\d{4}-\d{2}-\d{2}"
# 19-2000145399/0800, 123456789/0800 nebo IBAN
ACCOUNT = r"(?:\d{1,6}-)?\d{2,10}/\d{4}|[A-Z]{2}\d{2}[A-Z0-9]{10,30}"

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_CZ_DATE_RE = re.compile(r"^(\d{1,2})[./]\s?(\d{1,2})[./]\s?(\d{4})$")
# Částka nesmí pokračovat číslicí ani ":" (čas 10:30, datum 31.01.2025)
AMOUNT_END = r"(?![.,:]?\d)"
TIME = r"\d{1,2}:\d{2}(?::\d{2})?"

_AMOUNT_RE = re.compile(rf"(?P<amount>{AMOUNT}){AMOUNT_END}[ \t]*(?P<currency>{CURRENCY})?", re.IGNORECASE)
_ACCOUNT_RE = re.compile(ACCOUNT)
_SYMBOL_RE = {
    'variable_symbol': re.compile(r"\bVS[ \t]*:?[ \t]*(\d{1,10})\b", re.IGNORECASE),
    'constant_symbol': re.compile(r"\bKS[ \t]*:?[ \t]*(\d{1,10})\b", re.IGNORECASE),
    'specific_symbol': re.compile(r"\bSS[ \t]*:?[ \t]*(\d{1,10})\b", re.IGNORECASE),
}


@dataclass(frozen=True)
class ExtractedTransaction:
    amount: Decimal
    currency: Optional[str] = None
    value_date: Optional[date] = None
    variable_symbol: Optional[str] = None
    constant_symbol: Optional[str] = None
    specific_symbol: Optional[str] = None
    counterparty_account: Optional[str] = None
    counterparty_name: Optional[str] = None
    raw_memo: str = ''
    rule: str = ''


def parse_amount(raw):
    """Parse '12 000,00', '12000.00', '12.000,00', '+1 500,-' into Decimal with 2 places."""
    s = re.sub(rf"\s*(?:{CURRENCY})$", '', raw.strip(), flags=re.IGNORECASE)
    s = re.sub(r"\s+", '', s).replace('−', '-')
    if s.endswith(',-') or s.endswith('.-'):
        s = s[:-2]

    sign = ''
    if s[:1] in ('+', '-'):
        sign, s = s[0], s[1:]
    if not s or not re.fullmatch(r"[\d.,]+", s):
        raise ParseAmbiguous(raw)

    if ',' in s and '.' in s:
        decimal_sep = ',' if s.rfind(',') > s.rfind('.') else '.'
        group_sep = '.' if decimal_sep == ',' else ','
        integer, fraction = s.rsplit(decimal_sep, 1)
        groups = integer.split(group_sep)
        if decimal_sep in integer or not 1 <= len(fraction) <= 2 \
                or not 1 <= len(groups[0]) <= 3 or any(len(g) != 3 for g in groups[1:]):
            raise ParseAmbiguous(raw)
        digits = ''.join(groups) + '.' + fraction
    elif ',' in s or '.' in s:
        sep = ',' if ',' in s else '.'
        pieces = s.split(sep)
        if len(pieces) == 2 and 1 <= len(pieces[1]) <= 2:
            digits = pieces[0] + '.' + pieces[1]
        elif len(pieces) > 2 and 1 <= len(pieces[0]) <= 3 and all(len(p) == 3 for p in pieces[1:]):
            digits = ''.join(pieces)
        else:
            # '12,000' muže být 12 tisíc i 12 korun
            raise ParseAmbiguous(raw)
    else:
        digits = s

    try:
        return Decimal(sign + digits).quantize(TWO_PLACES)
    except InvalidOperation:
        raise ParseAmbiguous(raw)


def parse_date(value):
    if not value:
        return None
    value = value.strip()

    iso = _ISO_DATE_RE.match(value)
    if iso:
        year, month, day = iso.groups()
    else:
        cz = _CZ_DATE_RE.match(value)
        if not cz:
            return None
        day, month, year = cz.groups()

    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def normalize_currency(value):
    if not value:
        return None
    value = remove_diacritics(value).upper()
    return 'CZK' if value == 'KC' else value


def _digits(value):
    match = re.search(r"\d{1,10}", value or '')
    return match.group(0) if match else None


def _clean(value):
    value = (value or '').strip().strip(',;')
    return value or None


# Pravidlo 1: řádek výpisu "15.01.2025  25 000,00 CZK  VS: 2025001  KS: 0308",
# případně s časem nebo datem valuty za datem zaúčtování
_STATEMENT_LINE_RE = re.compile(
    rf"^[ \t]*(?P<date>{DATE})(?:[ \t]+{TIME})?(?:[ \t]+(?:{DATE}))?(?:[ \t]+{TIME})?[ \t]+(?P<amount>{AMOUNT}){AMOUNT_END}[ \t]*(?P<currency>{CURRENCY})?(?P<rest>[^\n]*)"
    r"(?P<details>(?:\n[ \t]*(?:Protistrana|Protiúčet|Popis|Zpráva|Poznámka)[^\n]*)*)",
    re.MULTILINE | re.IGNORECASE,
)
_COUNTERPARTY_RE = re.compile(
    rf"^[ \t]*(?:Protistrana|Protiúčet)[ \t]*:[ \t]*(?P<name>.*?)(?:,?[ \t]*(?P<account>{ACCOUNT}))?[ \t]*$",
    re.MULTILINE | re.IGNORECASE,
)


def statement_line_rule(text):
    for m in _STATEMENT_LINE_RE.finditer(text):
        fields = {
            'amount': m.group('amount'),
            'currency': m.group('currency'),
            'value_date': parse_date(m.group('date')),
        }
        for name, pattern in _SYMBOL_RE.items():
            symbol = pattern.search(m.group('rest'))
            fields[name] = symbol.group(1) if symbol else None

        details = m.group('details')
        counterparty = _COUNTERPARTY_RE.search(details)
        if counterparty:
            fields['counterparty_name'] = _clean(counterparty.group('name'))
            fields['counterparty_account'] = counterparty.group('account')
        yield m.span(), fields


_LABEL_LINE_RE = re.compile(r"^[ \t]*(?P<label>[^\W\d][^:\n]{0,40}?)[ \t]*:[ \t]*(?P<value>[^\n]*)$", re.MULTILINE)

LABELS = {
    'castka': 'amount', 'castka platby': 'amount', 'objem': 'amount', 'prijato': 'amount',
    'mena': 'currency',
    'datum': 'date', 'datum zauctovani': 'date', 'datum pripisu': 'date', 'datum splatnosti': 'date',
    'datum transakce': 'date',
    'variabilni symbol': 'variable_symbol', 'vs': 'variable_symbol',
    'konstantni symbol': 'constant_symbol', 'ks': 'constant_symbol',
    'specificky symbol': 'specific_symbol', 'ss': 'specific_symbol',
    'protiucet': 'counterparty_account', 'z uctu': 'counterparty_account', 'cislo protiuctu': 'counterparty_account',
    'ucet protistrany': 'counterparty_account',
    'nazev protiuctu': 'counterparty_name', 'nazev protistrany': 'counterparty_name', 'platce': 'counterparty_name',
    'protistrana': 'counterparty_name',
    'zprava pro prijemce': 'memo', 'zprava': 'memo', 'popis': 'memo', 'poznamka': 'memo',
}


def _label_key(label):
    return LABELS.get(re.sub(r"\s+", ' ', remove_diacritics(label).lower()).strip())


def _labelled_fields(lines):
    fields = {}
    for key, value in lines:
        if key == 'amount':
            amount = _AMOUNT_RE.search(value)
            fields['amount'] = amount.group('amount') if amount else value
            fields.setdefault('currency', amount.group('currency') if amount else None)
        elif key == 'currency':
            fields['currency'] = _clean(value)
        elif key == 'date':
            fields.setdefault('value_date', parse_date(value))
        elif key.endswith('_symbol'):
            fields[key] = _digits(value)
        elif key == 'counterparty_account':
            account = _ACCOUNT_RE.search(value.replace(' ', ''))
            fields[key] = account.group(0) if account else _clean(value)
        elif key == 'counterparty_name':
            fields[key] = _clean(value)
    return fields


def _flush(block):
    if any(key == 'amount' for key, _, _ in block):
        span = (block[0][2][0], block[-1][2][1])
        yield span, _labelled_fields([(key, value) for key, value, _ in block])


# Pravidlo 2: avízo "Částka: +25 000,00 CZK", "Variabilní symbol: 2025001" ...
def labelled_block_rule(text):
    block = []
    prev_end = None
    for m in _LABEL_LINE_RE.finditer(text):
        key = _label_key(m.group('label'))
        consecutive = prev_end is not None and m.start() == prev_end + 1
        prev_end = m.end()
        if not consecutive or (key == 'amount' and any(k == 'amount' for k, _, _ in block)):
            yield from _flush(block)
            block = []
        if key is not None:
            block.append((key, m.group('value'), m.span()))
    yield from _flush(block)


CSV_COLUMNS = {
    'datum': 'date', 'datum zauctovani': 'date', 'datum pohybu': 'date',
    'objem': 'amount', 'castka': 'amount',
    'mena': 'currency',
    'protiucet': 'counterparty_account', 'cislo protiuctu': 'counterparty_account',
    'kod banky': 'bank_code',
    'vs': 'variable_symbol', 'variabilni symbol': 'variable_symbol',
    'ks': 'constant_symbol', 'konstantni symbol': 'constant_symbol',
    'ss': 'specific_symbol', 'specificky symbol': 'specific_symbol',
    'nazev protiuctu': 'counterparty_name', 'protistrana': 'counterparty_name',
}

_LINE_RE = re.compile(r"^.*$", re.MULTILINE)


def _csv_header(line):
    if ';' not in line:
        return None
    columns = [CSV_COLUMNS.get(remove_diacritics(c).strip().strip('"').lower()) for c in next(csv.reader([line], delimiter=';'))]
    if 'date' in columns and 'amount' in columns:
        return columns
    return None


def _csv_fields(columns, row):
    values = dict((column, value.strip()) for column, value in zip(columns, row) if column)
    account = values.get('counterparty_account') or None
    if account and values.get('bank_code') and '/' not in account:
        account = f"{account}/{values['bank_code']}"
    return {
        'amount': values.get('amount', ''),
        'currency': values.get('currency') or None,
        'value_date': parse_date(values.get('date')),
        'variable_symbol': _digits(values.get('variable_symbol')),
        'constant_symbol': _digits(values.get('constant_symbol')),
        'specific_symbol': _digits(values.get('specific_symbol')),
        'counterparty_account': account,
        'counterparty_name': values.get('counterparty_name') or None,
    }


# Pravidlo 3: CSV export výpisu oddělený středníky s hlavičkou
def csv_rule(text):
    columns = None
    for m in _LINE_RE.finditer(text):
        line = m.group(0)
        if columns is not None:
            row = next(csv.reader([line], delimiter=';')) if line.strip() else []
            if len(row) >= len(columns) - 1 and ';' in line:
                yield m.span(), _csv_fields(columns, row)
                continue
            columns = None
        columns = _csv_header(line)


_PARAGRAPH_RE = re.compile(r"[^\n]+(?:\n[ \t]*\S[^\n]*)*")
_FREE_AMOUNT_RE = re.compile(rf"(?<![\d.,/\-])(?P<amount>{AMOUNT}){AMOUNT_END}[ \t]*(?P<currency>{CURRENCY})(?!\w)",
                             re.IGNORECASE)
_DATE_RE = re.compile(rf"(?<![\d.])(?:{DATE})(?!\d)")
_FROM_ACCOUNT_RE = re.compile(
    rf"\b(?:z[e]?[ \t]+účtu|protiúčt\w*|účtu?[ \t]+protistrany|od)[ \t:]*(?:č\.[ \t]*)?(?P<account>{ACCOUNT})",
    re.IGNORECASE,
)


# Pravidlo 4: volný text "byla připsána platba 25 000,00 Kč, VS: 2025001, z účtu 123456789/0800"
def free_text_rule(text):
    for paragraph in _PARAGRAPH_RE.finditer(text):
        block = paragraph.group(0)
        amounts = list(_FREE_AMOUNT_RE.finditer(block))
        date_match = _DATE_RE.search(block)
        for i, m in enumerate(amounts):
            # Symboly a účet patří k částce až po další částku v odstavci
            end = amounts[i + 1].start() if i + 1 < len(amounts) else len(block)
            segment = block[m.start():end]
            fields = {
                'amount': m.group('amount'),
                'currency': m.group('currency'),
                'value_date': parse_date(date_match.group(0)) if date_match else None,
            }
            for name, pattern in _SYMBOL_RE.items():
                symbol = pattern.search(segment)
                fields[name] = symbol.group(1) if symbol else None
            account = _FROM_ACCOUNT_RE.search(segment)
            fields['counterparty_account'] = account.group('account') if account else None

            offset = paragraph.start()
            yield (offset + m.start(), offset + end), fields


RULES = (
    ('statement_line', statement_line_rule),
    ('labelled_block', labelled_block_rule),
    ('csv', csv_rule),
    ('free_text', free_text_rule),
)


def _overlaps(span, claimed):
    start, end = span
    return any(start < c_end and c_start < end for c_start, c_end in claimed)


def build_transaction(fields, text, span, rule_name, default_currency=None):
    amount = parse_amount(fields['amount'] or '')
    return ExtractedTransaction(
        amount=amount,
        currency=normalize_currency(fields.get('currency')) or default_currency,
        value_date=fields.get('value_date'),
        variable_symbol=fields.get('variable_symbol') or None,
        constant_symbol=fields.get('constant_symbol') or None,
        specific_symbol=fields.get('specific_symbol') or None,
        counterparty_account=fields.get('counterparty_account') or None,
        counterparty_name=fields.get('counterparty_name') or None,
        raw_memo=text[span[0]:span[1]].strip(),
        rule=rule_name,
    )


def extract(text, default_currency=None, rules=RULES) -> Iterator[ExtractedTransaction]:
    """Yield transactions found in ``text``. Calling again restarts from scratch."""
    claimed = []
    for rule_name, rule in rules:
        for span, fields in rule(text):
            if _overlaps(span, claimed):
                continue
            try:
                transaction = build_transaction(fields, text, span, rule_name, default_currency)
            except ParseAmbiguous as e:
                logger.warning("candidate_skipped", rule=rule_name, reason=str(e))
                continue
            claimed.append(span)
            if transaction.amount == 0:
                continue
            yield transaction
