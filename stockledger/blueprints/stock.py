"""Stock blueprint: movement ledger and stock queries - Multi-Organization JSON API."""
from datetime import date, datetime
from flask import Blueprint, current_app, g, jsonify, request

from stockledger.exceptions import ValidationError
from stockledger.middleware import require_organization
from stockledger.repositories.base import MovementFilters, SnapshotFilters
from stockledger.services.ledger_service import MovementLedger, parse_movement_type
from stockledger.services.query_service import PRODUCT_PICKER_LIMIT, StockQueryService
from stockledger.services.quick_action_service import QuickActionService

stock_bp = Blueprint('stock', __name__, url_prefix='/api/stock')


def get_ledger():
    """MovementLedger wired to the application's unit of work factory."""
    config = current_app.config
    return MovementLedger(
        current_app.extensions['stock_uow_factory'],
        max_retries=config.get('STOCK_LEDGER_MAX_RETRIES', 3),
        retry_backoff=config.get('STOCK_LEDGER_RETRY_BACKOFF', 0.05)
    )


def get_query_service():
    config = current_app.config
    return StockQueryService(
        current_app.extensions['stock_uow_factory'],
        low_stock_threshold=config.get('LOW_STOCK_THRESHOLD', 10),
        default_page_size=config.get('DEFAULT_PAGE_SIZE', 20),
        max_page_size=config.get('MAX_PAGE_SIZE', 100)
    )


def _json_payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError('Request body must be a JSON object')
    return payload


def _parse_int(value, field_name):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be an integer")


def _parse_bool(value):
    return str(value).strip().lower() in ('1', 'true', 'yes')


def _parse_datetime(value, field_name):
    """Accept YYYY-MM-DD (whole day) or an ISO 8601 datetime."""
    if value is None or value == '':
        return None
    value = str(value).strip()
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO 8601 date or datetime")


def _page_args():
    return request.args.get('page', 1), request.args.get('pageSize')


@stock_bp.route('/movements', methods=['POST'])
@require_organization
def create_movement():
    """Record an ENTRY or EXIT movement (organization-scoped)."""
    payload = _json_payload()

    occurred_at = _parse_datetime(payload.get('occurredAt'), 'occurredAt')
    if isinstance(occurred_at, date) and not isinstance(occurred_at, datetime):
        occurred_at = datetime.combine(occurred_at, datetime.min.time())

    result = get_ledger().record_movement(
        organization_id=g.organization_id,
        product_id=payload.get('productId'),
        user_id=payload.get('userId'),
        movement_type=payload.get('type'),
        quantity=payload.get('quantity'),
        unit_of_measure=payload.get('unitOfMeasure'),
        observation=payload.get('observation'),
        occurred_at=occurred_at
    )

    return jsonify({'status': 'success', 'data': result.to_dict()}), 201


@stock_bp.route('/quick-entry', methods=['POST'])
@require_organization
def quick_entry():
    """Single-item stock entry form."""
    payload = _json_payload()
    outcome = QuickActionService(get_ledger()).quick_entry(
        organization_id=g.organization_id,
        product_id=payload.get('productId'),
        user_id=payload.get('userId'),
        quantity=payload.get('quantity'),
        unit_of_measure=payload.get('unitOfMeasure'),
        observation=payload.get('observation')
    )
    return jsonify({'status': 'success', 'message': outcome.message, 'data': outcome.to_dict()}), 201


@stock_bp.route('/quick-exit', methods=['POST'])
@require_organization
def quick_exit():
    """Single-item stock exit form."""
    payload = _json_payload()
    outcome = QuickActionService(get_ledger()).quick_exit(
        organization_id=g.organization_id,
        product_id=payload.get('productId'),
        user_id=payload.get('userId'),
        quantity=payload.get('quantity'),
        unit_of_measure=payload.get('unitOfMeasure'),
        observation=payload.get('observation')
    )
    return jsonify({'status': 'success', 'message': outcome.message, 'data': outcome.to_dict()}), 201


@stock_bp.route('/movements', methods=['GET'])
@require_organization
def list_movements():
    """List movements, newest first (organization-scoped)."""
    movement_type = request.args.get('type', '').strip()
    filters = MovementFilters(
        product_id=_parse_int(request.args.get('productId'), 'productId'),
        user_id=request.args.get('userId', '').strip() or None,
        type=parse_movement_type(movement_type) if movement_type else None,
        date_from=_parse_datetime(request.args.get('dateFrom'), 'dateFrom'),
        date_to=_parse_datetime(request.args.get('dateTo'), 'dateTo'),
        product_name=request.args.get('productName')
    )
    page, page_size = _page_args()

    result = get_query_service().list_movements(g.organization_id, filters, page, page_size)
    return jsonify({'status': 'success', 'data': result.to_dict(lambda row: row.to_dict())})


@stock_bp.route('/snapshots', methods=['GET'])
@require_organization
def list_snapshots():
    """List current stock per product, most recently updated first."""
    filters = SnapshotFilters(
        product_id=_parse_int(request.args.get('productId'), 'productId'),
        product_name=request.args.get('productName'),
        zero_stock=_parse_bool(request.args.get('zeroStock', 'false')),
        low_stock=_parse_bool(request.args.get('lowStock', 'false')),
        threshold=request.args.get('threshold') or None
    )
    page, page_size = _page_args()

    result = get_query_service().list_snapshots(g.organization_id, filters, page, page_size)
    return jsonify({'status': 'success', 'data': result.to_dict(lambda row: row.to_dict())})


@stock_bp.route('/statistics', methods=['GET'])
@require_organization
def statistics():
    """Stock counters for the dashboard cards."""
    stats = get_query_service().get_statistics(
        g.organization_id,
        threshold=request.args.get('threshold') or None
    )
    return jsonify({'status': 'success', 'data': stats})


@stock_bp.route('/products', methods=['GET'])
@require_organization
def products_with_stock():
    """Product picker: active products with their current quantity."""
    limit = _parse_int(request.args.get('limit'), 'limit') or PRODUCT_PICKER_LIMIT
    rows = get_query_service().list_products_with_stock(
        g.organization_id,
        search=request.args.get('q'),
        limit=limit
    )
    return jsonify({'status': 'success', 'data': [row.to_dict() for row in rows]})
