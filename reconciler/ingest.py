"""Turns an inbound payment notification into one plain-text blob.

The recipient address routes the notification to a registered bank account.
Text bodies and text-like attachments are concatenated; anything else
(PDF or image statements) is kept aside for the debug sink only.
"""

import unicodedata
from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import List, Optional, Union

from sqlalchemy import func

from reconciler.errors import NoMatchingAccount
from reconciler.logger import get_logger
from reconciler.models import BankAccount

logger = get_logger(__name__)

# Pořadí pokusů o dekódování příloh (cp1250 = české Windows exporty)
FALLBACK_ENCODINGS = ('utf-8', 'cp1250', 'latin-1')


@dataclass
class Attachment:
    filename: str
    content_type: str
    content: Union[str, bytes]

    @property
    def is_text(self):
        mime = (self.content_type or '').lower().split(';')[0].strip()
        return mime.startswith('text/') or mime.endswith('/csv')


@dataclass
class Notification:
    to: str
    subject: str = ''
    body: str = ''
    sender: str = ''
    attachments: List[Attachment] = field(default_factory=list)


@dataclass
class NormalizedText:
    bank_account: BankAccount
    text: str
    skipped_attachments: List[Attachment] = field(default_factory=list)


def decode_content(content):
    if isinstance(content, str):
        return content
    for encoding in FALLBACK_ENCODINGS:
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    # latin-1 decodes any byte sequence, the loop always returns
    raise AssertionError('unreachable')


def normalize_text(text):
    text = unicodedata.normalize('NFC', text)
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    return text.replace('\u00a0', ' ').replace('\u202f', ' ')


def find_bank_account(recipient) -> Optional[BankAccount]:
    _, address = parseaddr(recipient or '')
    address = address.strip().lower()
    if not address:
        return None
    return BankAccount.query.filter(
        func.lower(BankAccount.payment_email) == address,
        BankAccount.is_active.is_(True),
    ).first()


def build_text(notification):
    parts = []
    if notification.sender:
        parts.append(f"From: {notification.sender}")
    if notification.subject:
        parts.append(f"Subject: {notification.subject}")
    parts.append('')
    parts.append(notification.body or '')

    text_attachments = [a for a in notification.attachments if a.is_text]
    if text_attachments:
        parts.append('')
        parts.append('--- ATTACHMENTS ---')
        for attachment in text_attachments:
            parts.append(f"{attachment.filename}:")
            parts.append(decode_content(attachment.content))

    return normalize_text('\n'.join(parts))


def ingest(notification: Notification) -> NormalizedText:
    account = find_bank_account(notification.to)
    if account is None:
        logger.warning("no_matching_account", recipient=notification.to)
        raise NoMatchingAccount(notification.to)

    skipped = [a for a in notification.attachments if not a.is_text]
    if skipped:
        logger.info("attachments_not_parsed", bank_account_id=account.id,
                    filenames=[a.filename for a in skipped])

    return NormalizedText(bank_account=account, text=build_text(notification), skipped_attachments=skipped)
