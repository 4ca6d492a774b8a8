"""
Flask routes for the LegacyVault API.

All /api endpoints act for the owner named by the upstream gateway in the
X-User-Id header and answer with a JSON envelope carrying an 'ok' flag.
"""

from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from legacyvault import db, store
from legacyvault.allocations import (
    AllocationSet, asset_locks, commit_set, load_allocations, remove_recipient, validate_set
)
from legacyvault.audit_logger import AuditCategory, log_entity_change
from legacyvault.errors import (
    AcknowledgementRequired, AllocationValidationError, InvalidStatusTransition,
    NotFound, PersistenceFailure
)
from legacyvault.lifecycle import finalize, save_content, submit_for_review
from legacyvault.models import WillType
from legacyvault.review import generate_review_summary
from legacyvault.security import (
    csrf, current_owner_id, current_owner_name, owner_required, sanitize_payload,
    rate_limit_finalize, rate_limit_read, rate_limit_validate, rate_limit_write
)
from legacyvault.validation import (
    MAX_RECIPIENT_NAME_LENGTH, WILL_FREE_TEXT_FIELDS, ValidationResult, validate_asset_payload,
    validate_recipient_payload, validate_string, validate_will_content
)


# Create blueprints
main_bp = Blueprint('main', __name__)
api_bp = Blueprint('api', __name__, url_prefix='/api')

# Identity travels in a header, not a cookie
csrf.exempt(api_bp)


def _json_body(default=None, preserve=()):
    """Parse and sanitize the JSON body. Returns None if it is missing."""
    payload = request.get_json(silent=True)
    if payload is None:
        return default
    return sanitize_payload(payload, preserve=preserve)


def _missing_payload():
    return jsonify({
        'ok': False,
        'errors': [{'field': '', 'message': 'No JSON payload provided', 'code': 'missing_payload'}]
    }), 400


def _allocation_rows(payload):
    """Accept either a bare list or {'allocations': [...]}."""
    if isinstance(payload, dict):
        return payload.get('allocations', [])
    return payload


# Main routes
@main_bp.route('/health')
def health():
    """Liveness check including a round trip to the database."""
    try:
        db.session.execute(text('SELECT 1'))
    except SQLAlchemyError as e:
        current_app.logger.error(f'Health check failed: {str(e)}')
        return jsonify({'ok': False, 'status': 'unavailable'}), 503
    return jsonify({'ok': True, 'status': 'healthy'}), 200


# Assets
@api_bp.route('/assets', methods=['GET'])
@rate_limit_read()
@owner_required
def list_assets():
    """List the owner's assets."""
    assets = store.list_assets(current_owner_id())
    return jsonify({'ok': True, 'assets': [a.to_dict() for a in assets]}), 200


@api_bp.route('/assets', methods=['POST'])
@rate_limit_write()
@owner_required
def create_asset():
    """Create an asset."""
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    result = validate_asset_payload(payload)
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    owner_id = current_owner_id()
    asset = store.create_asset(owner_id, payload)
    log_entity_change(owner_id, 'asset', asset.id, AuditCategory.CREATE)
    return jsonify({'ok': True, 'asset': asset.to_dict()}), 201


@api_bp.route('/assets/<asset_id>', methods=['GET'])
@rate_limit_read()
@owner_required
def get_asset(asset_id: str):
    """Fetch one asset with its allocations."""
    asset = store.get_asset(current_owner_id(), asset_id)
    return jsonify({'ok': True, 'asset': asset.to_dict(include_allocations=True)}), 200


@api_bp.route('/assets/<asset_id>', methods=['PATCH'])
@rate_limit_write()
@owner_required
def update_asset(asset_id: str):
    """Update the fields present in the payload."""
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    result = validate_asset_payload(payload, partial=True)
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    owner_id = current_owner_id()
    asset = store.update_asset(owner_id, asset_id, payload)
    log_entity_change(owner_id, 'asset', asset.id, AuditCategory.UPDATE)
    return jsonify({'ok': True, 'asset': asset.to_dict()}), 200


@api_bp.route('/assets/<asset_id>', methods=['DELETE'])
@rate_limit_write()
@owner_required
def delete_asset(asset_id: str):
    """Delete an asset together with its allocations."""
    owner_id = current_owner_id()
    store.delete_asset(owner_id, asset_id)
    asset_locks.discard(asset_id)
    log_entity_change(owner_id, 'asset', asset_id, AuditCategory.DELETE)
    return jsonify({'ok': True}), 200


# Recipients
@api_bp.route('/recipients', methods=['GET'])
@rate_limit_read()
@owner_required
def list_recipients():
    """List the owner's recipients."""
    recipients = store.list_recipients(current_owner_id())
    return jsonify({'ok': True, 'recipients': [r.to_dict() for r in recipients]}), 200


@api_bp.route('/recipients', methods=['POST'])
@rate_limit_write()
@owner_required
def create_recipient():
    """Create a recipient."""
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    result = validate_recipient_payload(payload)
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    owner_id = current_owner_id()
    recipient = store.create_recipient(owner_id, payload)
    log_entity_change(owner_id, 'recipient', recipient.id, AuditCategory.CREATE)
    return jsonify({'ok': True, 'recipient': recipient.to_dict()}), 201


@api_bp.route('/recipients/<recipient_id>', methods=['GET'])
@rate_limit_read()
@owner_required
def get_recipient(recipient_id: str):
    recipient = store.get_recipient(current_owner_id(), recipient_id)
    return jsonify({'ok': True, 'recipient': recipient.to_dict()}), 200


@api_bp.route('/recipients/<recipient_id>', methods=['PATCH'])
@rate_limit_write()
@owner_required
def update_recipient(recipient_id: str):
    """Update the fields present in the payload."""
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    result = validate_recipient_payload(payload, partial=True)
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    owner_id = current_owner_id()
    recipient = store.update_recipient(owner_id, recipient_id, payload)
    log_entity_change(owner_id, 'recipient', recipient.id, AuditCategory.UPDATE)
    return jsonify({'ok': True, 'recipient': recipient.to_dict()}), 200


@api_bp.route('/recipients/<recipient_id>', methods=['DELETE'])
@rate_limit_write()
@owner_required
def delete_recipient(recipient_id: str):
    """Delete a recipient. Their allocation rows go with them."""
    owner_id = current_owner_id()
    store.delete_recipient(owner_id, recipient_id)
    log_entity_change(owner_id, 'recipient', recipient_id, AuditCategory.DELETE)
    return jsonify({'ok': True}), 200


# Allocations
@api_bp.route('/allocations', methods=['GET'])
@rate_limit_read()
@owner_required
def list_allocations():
    """Every allocation row across the owner's assets."""
    allocations = store.list_allocations(owner_id=current_owner_id())
    return jsonify({'ok': True, 'allocations': [a.to_dict() for a in allocations]}), 200


@api_bp.route('/assets/<asset_id>/allocations', methods=['GET'])
@rate_limit_read()
@owner_required
def get_asset_allocations(asset_id: str):
    """Stored allocation set for an asset (empty when unassigned)."""
    allocation_set = load_allocations(asset_id, owner_id=current_owner_id())
    return jsonify({'ok': True, 'asset_id': asset_id, **allocation_set.to_dict()}), 200


@api_bp.route('/assets/<asset_id>/allocations/validate', methods=['POST'])
@rate_limit_validate()
@owner_required
def validate_asset_allocations(asset_id: str):
    """Check an allocation set without writing it."""
    payload = _json_body(default=[])
    allocation_set = validate_set(_allocation_rows(payload))
    return jsonify({'ok': True, 'asset_id': asset_id, **allocation_set.to_dict()}), 200


@api_bp.route('/assets/<asset_id>/allocations', methods=['PUT'])
@rate_limit_write()
@owner_required
def commit_asset_allocations(asset_id: str):
    """Replace the asset's allocations. An empty list clears them."""
    payload = _json_body()
    if payload is None:
        return _missing_payload()

    persisted = commit_set(current_owner_id(), asset_id, _allocation_rows(payload))
    allocation_set = AllocationSet.from_allocations(persisted)
    return jsonify({
        'ok': True,
        'asset_id': asset_id,
        **allocation_set.to_dict(),
        'allocations': [a.to_dict() for a in persisted],
    }), 200


@api_bp.route('/assets/<asset_id>/allocations/remove-recipient', methods=['POST'])
@rate_limit_validate()
@owner_required
def remove_allocation_recipient(asset_id: str):
    """
    Drop one recipient from the asset's allocations in an edit buffer.

    Nothing is saved; the client edits the returned rows and commits them
    with PUT once they total 100% again (or are empty).
    """
    payload = _json_body()
    if not isinstance(payload, dict) or not payload.get('recipient_id'):
        return jsonify({
            'ok': False,
            'errors': [{'field': 'recipient_id', 'message': 'This field is required', 'code': 'required'}]
        }), 422

    owner_id = current_owner_id()
    store.get_asset(owner_id, asset_id)
    allocation_set = remove_recipient(asset_id, payload['recipient_id'], owner_id=owner_id)
    return jsonify({'ok': True, 'asset_id': asset_id, 'saved': False, **allocation_set.to_dict()}), 200


# Wills
@api_bp.route('/wills', methods=['GET'])
@rate_limit_read()
@owner_required
def list_wills():
    """The owner's wills, one per creation method at most."""
    wills = store.list_wills(current_owner_id())
    return jsonify({'ok': True, 'wills': [w.to_dict() for w in wills]}), 200


@api_bp.route('/wills/<will_type>', methods=['GET'])
@rate_limit_read()
@owner_required
def get_will(will_type: str):
    """The owner's will for one creation method."""
    will = None
    if will_type in [t.value for t in WillType]:
        will = store.get_will(current_owner_id(), will_type)
    if will is None:
        raise NotFound('will', will_type)
    return jsonify({'ok': True, 'will': will.to_dict()}), 200


@api_bp.route('/wills/<will_type>', methods=['PUT'])
@rate_limit_write()
@owner_required
def put_will(will_type: str):
    """Create or update the owner's will for a creation method."""
    payload = _json_body(preserve=WILL_FREE_TEXT_FIELDS)
    if payload is None:
        return _missing_payload()

    result = validate_will_content(will_type, payload)
    if not result.is_valid:
        return jsonify(result.to_dict()), 422

    will, created = save_content(current_owner_id(), will_type, payload)
    return jsonify({'ok': True, 'created': created, 'will': will.to_dict()}), 201 if created else 200


@api_bp.route('/wills/<will_id>/review', methods=['POST'])
@rate_limit_write()
@owner_required
def review_will(will_id: str):
    """Move a will into review."""
    will = submit_for_review(current_owner_id(), will_id)
    return jsonify({'ok': True, 'will': will.to_dict()}), 200


@api_bp.route('/wills/<will_id>/finalize', methods=['POST'])
@rate_limit_finalize()
@owner_required
def finalize_will(will_id: str):
    """
    Complete a will and email its recipients.

    The body must carry "acknowledged": true. Email failures do not fail the
    request; they come back as a warning next to the completed will.
    """
    payload = _json_body(default={})
    if not isinstance(payload, dict):
        payload = {}

    owner_name = payload.get('owner_name') or current_owner_name()
    if owner_name:
        result = ValidationResult()
        if not validate_string(owner_name, 'owner_name', result,
                               max_length=MAX_RECIPIENT_NAME_LENGTH, section='will'):
            return jsonify(result.to_dict()), 422

    outcome = finalize(
        current_owner_id(),
        will_id,
        acknowledged=payload.get('acknowledged'),
        owner_name=owner_name
    )
    return jsonify({'ok': True, **outcome.to_dict()}), 200


@api_bp.route('/review', methods=['GET'])
@rate_limit_read()
@owner_required
def review_summary():
    """Pre-finalize review of the owner's latest will, assets and recipients."""
    summary = generate_review_summary(current_owner_id())
    return jsonify({'ok': True, 'review': summary.to_dict()}), 200


# Error handlers
@api_bp.errorhandler(AllocationValidationError)
@api_bp.errorhandler(AcknowledgementRequired)
@api_bp.errorhandler(InvalidStatusTransition)
def domain_validation_error(error):
    """Handle rejected input. Nothing was written."""
    return jsonify({'ok': False, 'errors': [error.to_dict()]}), 422


@api_bp.errorhandler(NotFound)
def domain_not_found(error):
    """Handle a resource missing for this owner."""
    return jsonify({'ok': False, 'errors': [error.to_dict()]}), 404


@api_bp.errorhandler(PersistenceFailure)
def persistence_failure(error):
    """Handle store failures. The caller must re-fetch before retrying."""
    return jsonify({
        'ok': False,
        'errors': [error.to_dict()],
        'refetch': True,
        'resource_id': error.resource_id
    }), 503


@main_bp.errorhandler(404)
@api_bp.errorhandler(404)
def not_found(error):
    """Handle 404 errors."""
    return jsonify({'ok': False, 'error': 'Not found'}), 404


@main_bp.errorhandler(500)
@api_bp.errorhandler(500)
def internal_error(error):
    """Handle 500 errors."""
    db.session.rollback()
    return jsonify({'ok': False, 'error': 'Internal server error'}), 500


@main_bp.errorhandler(429)
@api_bp.errorhandler(429)
def rate_limit_handler(error):
    """Handle rate limit errors."""
    return jsonify({
        'ok': False,
        'error': 'Rate limit exceeded. Please try again later.'
    }), 429
