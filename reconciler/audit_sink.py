import base64
import json
import os
from datetime import datetime, timezone

from reconciler.logger import get_logger

logger = get_logger(__name__)


def _serialize_attachment(attachment):
    content = attachment.content
    if isinstance(content, bytes):
        return {
            "filename": attachment.filename,
            "content_type": attachment.content_type,
            "content_base64": base64.b64encode(content).decode('ascii'),
        }
    return {
        "filename": attachment.filename,
        "content_type": attachment.content_type,
        "content": content,
    }


def save_payload_for_debugging(directory, notification, bank_account_id=None):
    """Write the raw notification as JSON. Returns the file path or None.

    Failures are logged and swallowed, reconciliation continues without the copy.
    """
    try:
        os.makedirs(directory, exist_ok=True)
        now = datetime.now(timezone.utc)
        stamp = now.strftime('%Y%m%dT%H%M%S%f')
        filename = f"payment-email-{bank_account_id or 'unknown'}-{stamp}.json"
        path = os.path.join(directory, filename)

        payload = {
            "from": notification.sender,
            "to": notification.to,
            "subject": notification.subject,
            "body": notification.body,
            "attachments": [_serialize_attachment(a) for a in notification.attachments],
            "bank_account_id": bank_account_id,
            "received_at": now.isoformat(),
        }
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
    except (OSError, TypeError, ValueError):
        logger.warning("debug_payload_not_saved", directory=directory, exc_info=True)
        return None

    logger.debug("debug_payload_saved", path=path)
    return path
