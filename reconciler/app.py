import base64
import binascii
from decimal import Decimal

from flask import Blueprint, Flask, current_app, jsonify, request

from reconciler.applier import resolve_manually
from reconciler.config import MAX_LOOKBACK_DAYS, default_settings
from reconciler.errors import ManualResolutionError, NoMatchingAccount, PersistenceError
from reconciler.ingest import Attachment, Notification
from reconciler.logger import configure_logging, get_logger
from reconciler.models import db
from reconciler.service import (
    list_matches,
    list_transactions,
    manual_review_queue,
    matching_stats,
    process_bank_statement_email,
    process_notification,
)

logger = get_logger(__name__)

bp = Blueprint('payment_matching', __name__, url_prefix='/api/payment-matching')

MAX_PAGE_SIZE = 200


def create_app(config=None):
    app = Flask(__name__)
    app.config.update(default_settings())
    if config:
        app.config.update(config)
    app.config['RECONCILE_AMOUNT_EPSILON'] = Decimal(str(app.config['RECONCILE_AMOUNT_EPSILON']))
    app.config['RECONCILE_LOOKBACK_DAYS'] = min(int(app.config['RECONCILE_LOOKBACK_DAYS']), MAX_LOOKBACK_DAYS)

    configure_logging(app.config['LOG_LEVEL'], app.config['LOG_JSON'])
    db.init_app(app)
    app.register_blueprint(bp)
    return app


class BadPayload(ValueError):
    pass


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadPayload("Request body must be a JSON object")
    return data


def _required(data, key, kind=str):
    value = data.get(key)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise BadPayload(f"Field '{key}' is required")
    return value


def _company_id():
    company_id = request.args.get('company_id', type=int)
    if company_id is None:
        raise BadPayload("Query parameter 'company_id' is required")
    return company_id


def _pagination():
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)
    if not 1 <= limit <= MAX_PAGE_SIZE or offset < 0:
        raise BadPayload(f"'limit' must be 1-{MAX_PAGE_SIZE} and 'offset' non-negative")
    return limit, offset


def _matched_filter():
    matched = request.args.get('matched')
    if matched is None:
        return None
    if matched not in ('true', 'false'):
        raise BadPayload("Query parameter 'matched' must be 'true' or 'false'")
    return matched == 'true'


def _attachment(item):
    if not isinstance(item, dict):
        raise BadPayload("Attachment must be an object")
    content = item.get('content') or ''
    if item.get('encoding') == 'base64':
        try:
            content = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError):
            raise BadPayload(f"Attachment {item.get('filename')!r} is not valid base64")
    return Attachment(
        filename=item.get('filename') or 'attachment',
        content_type=item.get('contentType') or item.get('content_type') or 'application/octet-stream',
        content=content,
    )


def notification_from_json(data):
    attachments = data.get('attachments') or []
    if not isinstance(attachments, list):
        raise BadPayload("Field 'attachments' must be a list")
    return Notification(
        to=_required(data, 'to'),
        sender=data.get('from') or '',
        subject=data.get('subject') or '',
        body=data.get('body') or '',
        attachments=[_attachment(a) for a in attachments],
    )


@bp.errorhandler(BadPayload)
def handle_bad_payload(e):
    return jsonify({"success": False, "message": str(e)}), 400


@bp.errorhandler(NoMatchingAccount)
def handle_no_account(e):
    return jsonify({"success": False, "message": str(e)}), 404


@bp.errorhandler(ManualResolutionError)
def handle_manual_resolution(e):
    return jsonify({"success": False, "message": str(e)}), 409


@bp.errorhandler(PersistenceError)
def handle_persistence(e):
    logger.error("persistence_error", error=str(e))
    return jsonify({"success": False, "message": "Database unavailable, retry later"}), 503


@bp.route('/webhook', methods=['POST'])
def webhook():
    notification = notification_from_json(_json_body())
    result = process_notification(notification)
    return jsonify({
        "success": True,
        "message": f"Processed {result.processed} payments, {result.matched} matched",
        **result.as_dict(),
    })


@bp.route('/process-email', methods=['POST'])
def process_email():
    data = _json_body()
    result = process_bank_statement_email(
        _required(data, 'emailContent'),
        _required(data, 'bankAccountId', int),
        _required(data, 'companyId', int),
    )
    return jsonify({
        "success": True,
        "message": f"Processed {result.processed} payments, {result.matched} matched",
        "data": result.as_dict(),
    })


@bp.route('/stats', methods=['GET'])
def get_status():
    # Summary of matching results
    return jsonify(matching_stats(_company_id()))


@bp.route('/manual-review', methods=['GET'])
def get_manual_review():
    # List of transactions needing manual intervention
    return jsonify(manual_review_queue(_company_id()))


@bp.route('/transactions', methods=['GET'])
def get_transactions():
    limit, offset = _pagination()
    data = list_transactions(_company_id(), matched=_matched_filter(), limit=limit, offset=offset)
    return jsonify({"success": True, "data": data})


@bp.route('/matches', methods=['GET'])
def get_matches():
    # Match history from the audit trail
    limit, offset = _pagination()
    return jsonify({"success": True, "data": list_matches(_company_id(), limit=limit, offset=offset)})


@bp.route('/confirm-match', methods=['POST'])
def confirm_match():
    data = _json_body()
    tx = resolve_manually(
        _required(data, 'transaction_id', int),
        _required(data, 'invoice_id', int),
        user_id=data.get('user_id'),
        epsilon=current_app.config['RECONCILE_AMOUNT_EPSILON'],
    )
    return jsonify({"status": "success", "transaction_id": tx.id, "match_status": tx.match_status})


if __name__ == '__main__':
    create_app().run(port=8000, debug=True)
