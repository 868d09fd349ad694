"""Pick the invoice a bank transaction pays.

Rules are tried in priority order and the first one that singles out exactly
one invoice wins. A rule that finds several equally good invoices stops the
search with an ``Ambiguous`` decision, we never guess between them.

1. VS + outstanding balance        -> confidence 1.0
2. VS only (partial / overpayment) -> confidence 0.9
3. amount + counterparty           -> confidence 0.6
"""

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple, Union

from thefuzz import fuzz

from reconciler.config import AMOUNT_EPSILON, MIN_CONFIDENCE, NAME_THRESHOLD
from reconciler.unaccent import remove_diacritics

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class Matched:
    invoice: object
    confidence: float
    rule: str
    rationale: str
    surplus: Decimal = ZERO

    status = 'matched'


@dataclass(frozen=True)
class Ambiguous:
    candidate_ids: Tuple[int, ...]
    rule: str
    rationale: str

    status = 'ambiguous'
    confidence = 0.0
    invoice = None


@dataclass(frozen=True)
class Unmatched:
    rule: str
    rationale: str

    status = 'unmatched'
    confidence = 0.0
    invoice = None


MatchDecision = Union[Matched, Ambiguous, Unmatched]


def normalize_symbol(value) -> Optional[str]:
    # VS "0002025001" i číslo faktury "FV-2025001" -> "2025001"
    digits = re.sub(r"\D", '', value or '')
    return digits.lstrip('0') or None


def normalize_account(value):
    value = re.sub(r"\s", '', value or '').upper()
    if '/' not in value:
        return value or None
    number, bank_code = value.split('/', 1)
    parts = [p.lstrip('0') for p in number.split('-')]
    return '-'.join(p for p in parts if p) + '/' + bank_code


def invoice_symbols(invoice):
    symbols = {normalize_symbol(invoice.variable_symbol), normalize_symbol(invoice.invoice_number)}
    symbols.discard(None)
    return symbols


def outstanding(invoice):
    return (invoice.total or ZERO) - (invoice.amount_paid or ZERO)


def amount_matches(amount, invoice, epsilon=AMOUNT_EPSILON):
    return abs(amount - outstanding(invoice)) <= epsilon


def counterparty_matches(transaction, invoice, threshold=NAME_THRESHOLD):
    # 1. Číslo účtu
    account = normalize_account(transaction.counterparty_account)
    if account and account == normalize_account(invoice.customer_account):
        return True

    # 2. Jméno (bez diakritiky, "Jan Novak" vs "Jan Novák")
    if not transaction.counterparty_name or not invoice.customer_name:
        return False
    sender = remove_diacritics(transaction.counterparty_name).lower()
    customer = remove_diacritics(invoice.customer_name).lower()
    return fuzz.partial_ratio(sender, customer) > threshold


def _ids(invoices):
    return tuple(sorted(inv.id for inv in invoices))


def _decide(transaction, candidates, epsilon, name_threshold):
    amount = transaction.amount
    if amount <= 0:
        return Unmatched('outgoing_payment', f"outgoing payment {amount} is not matched against issued invoices")

    symbol = normalize_symbol(transaction.variable_symbol)
    if symbol:
        by_symbol = [inv for inv in candidates if symbol in invoice_symbols(inv)]
        exact = [inv for inv in by_symbol if amount_matches(amount, inv, epsilon)]

        if len(exact) == 1:
            return Matched(exact[0], 1.0, 'exact_vs',
                           f"VS {symbol} and amount {amount} match the outstanding balance")
        if len(exact) > 1:
            return Ambiguous(_ids(exact), 'exact_vs', f"{len(exact)} open invoices share VS {symbol} and amount {amount}")
        if len(by_symbol) > 1:
            return Ambiguous(_ids(by_symbol), 'vs_amount_mismatch', f"{len(by_symbol)} open invoices share VS {symbol}")
        if by_symbol:
            invoice = by_symbol[0]
            balance = outstanding(invoice)
            if amount > balance:
                surplus = amount - balance
                return Matched(invoice, 0.9, 'vs_amount_mismatch',
                               f"VS {symbol} matches, overpayment of {surplus} over outstanding {balance}", surplus)
            return Matched(invoice, 0.9, 'vs_amount_mismatch',
                           f"VS {symbol} matches, partial payment {amount} of outstanding {balance}")

    # 3. Bez VS: částka + protistrana
    by_amount = [inv for inv in candidates if amount_matches(amount, inv, epsilon)]
    by_counterparty = [inv for inv in by_amount if counterparty_matches(transaction, inv, name_threshold)]
    if len(by_counterparty) == 1:
        return Matched(by_counterparty[0], 0.6, 'amount_counterparty',
                       f"amount {amount} and counterparty match a single open invoice")
    if by_amount:
        plausible = by_counterparty or by_amount
        return Ambiguous(_ids(plausible), 'amount_counterparty',
                         f"{len(plausible)} open invoices with outstanding {amount}, counterparty not conclusive")

    return Unmatched('no_candidate', "no open invoice matches VS, amount or counterparty")


def match(transaction, candidates, epsilon=AMOUNT_EPSILON, name_threshold=NAME_THRESHOLD,
          min_confidence=MIN_CONFIDENCE) -> MatchDecision:
    decision = _decide(transaction, candidates, epsilon, name_threshold)
    if isinstance(decision, Matched) and decision.confidence < min_confidence:
        return Ambiguous((decision.invoice.id,), decision.rule,
                         f"{decision.rationale}, confidence {decision.confidence} below {min_confidence}")
    return decision
