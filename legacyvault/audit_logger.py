"""
Audit logging module for immutable audit trail.

All significant actions are logged with integrity verification.
This module is append-only - records are never modified or deleted.
"""

import json
from datetime import datetime
from typing import Dict, Any, Optional
from flask import request, current_app, has_request_context
from sqlalchemy.exc import SQLAlchemyError

from legacyvault import db
from legacyvault.models import AuditLog


class AuditAction:
    """Constants for audit actions."""
    # Will actions
    WILL_CREATED = 'will_created'
    WILL_UPDATED = 'will_updated'
    WILL_SUBMITTED_FOR_REVIEW = 'will_submitted_for_review'
    WILL_FINALIZED = 'will_finalized'

    # Allocation actions
    ALLOCATIONS_COMMITTED = 'allocations_committed'
    ALLOCATIONS_REJECTED = 'allocations_rejected'
    ALLOCATIONS_COMMIT_FAILED = 'allocations_commit_failed'

    # Asset and recipient actions
    ASSET_CREATED = 'asset_created'
    ASSET_UPDATED = 'asset_updated'
    ASSET_DELETED = 'asset_deleted'
    RECIPIENT_CREATED = 'recipient_created'
    RECIPIENT_UPDATED = 'recipient_updated'
    RECIPIENT_DELETED = 'recipient_deleted'

    # Email actions
    EMAIL_SENT = 'email_sent'
    EMAIL_FAILED = 'email_failed'


class AuditCategory:
    """Constants for audit action categories."""
    CREATE = 'create'
    READ = 'read'
    UPDATE = 'update'
    DELETE = 'delete'
    SEND = 'send'
    SYSTEM = 'system'


ENTITY_ACTIONS = {
    ('asset', AuditCategory.CREATE): AuditAction.ASSET_CREATED,
    ('asset', AuditCategory.UPDATE): AuditAction.ASSET_UPDATED,
    ('asset', AuditCategory.DELETE): AuditAction.ASSET_DELETED,
    ('recipient', AuditCategory.CREATE): AuditAction.RECIPIENT_CREATED,
    ('recipient', AuditCategory.UPDATE): AuditAction.RECIPIENT_UPDATED,
    ('recipient', AuditCategory.DELETE): AuditAction.RECIPIENT_DELETED,
}


def log_action(
    action: str,
    action_category: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    actor_type: str = 'system',
    actor_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    success: bool = True,
    error_message: Optional[str] = None
) -> Optional[AuditLog]:
    """
    Log an action to the audit trail.

    Args:
        action: The action performed (use AuditAction constants)
        action_category: Category of action (use AuditCategory constants)
        resource_type: Type of resource affected
        resource_id: Identifier of the resource
        owner_id: Owner of the affected resource
        actor_type: Type of actor ('user', 'system')
        actor_id: Identifier of the actor (user id, IP, etc.)
        details: Additional structured details
        success: Whether the action succeeded
        error_message: Error message if action failed

    Returns:
        The created AuditLog record, or None if it could not be written
    """
    try:
        # Get request context if available
        ip_address = None
        user_agent = None

        if has_request_context():
            ip_address = request.remote_addr
            user_agent = request.headers.get('User-Agent')

            # Infer actor from request if not provided
            if actor_type == 'user' and not actor_id:
                actor_id = owner_id or ip_address

        audit_log = AuditLog(
            timestamp=datetime.utcnow(),
            action=action,
            action_category=action_category,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            owner_id=owner_id,
            actor_type=actor_type,
            actor_id=actor_id,
            details_json=json.dumps(details, sort_keys=True, default=str) if details else None,
            success=success,
            error_message=error_message,
            ip_address=ip_address,
            user_agent=user_agent
        )

        # Compute integrity hash
        audit_log.integrity_hash = audit_log.compute_integrity_hash()

        # Save to database
        db.session.add(audit_log)
        db.session.commit()

        return audit_log

    except SQLAlchemyError as e:
        db.session.rollback()
        # Audit logging must not break the operation being audited
        current_app.logger.error(f'Failed to create audit log: {str(e)}')
        return None


def log_will_saved(owner_id: str, will_id: str, will_type: str, created: bool) -> Optional[AuditLog]:
    """Log a will content save."""
    return log_action(
        action=AuditAction.WILL_CREATED if created else AuditAction.WILL_UPDATED,
        action_category=AuditCategory.CREATE if created else AuditCategory.UPDATE,
        resource_type='will',
        resource_id=will_id,
        owner_id=owner_id,
        actor_type='user',
        details={'type': will_type}
    )


def log_will_submitted_for_review(owner_id: str, will_id: str) -> Optional[AuditLog]:
    """Log a will moving to review."""
    return log_action(
        action=AuditAction.WILL_SUBMITTED_FOR_REVIEW,
        action_category=AuditCategory.UPDATE,
        resource_type='will',
        resource_id=will_id,
        owner_id=owner_id,
        actor_type='user'
    )


def log_will_finalized(owner_id: str, will_id: str, sent: int, total: int,
                       repeat: bool = False) -> Optional[AuditLog]:
    """Log will finalization with its notification outcome."""
    return log_action(
        action=AuditAction.WILL_FINALIZED,
        action_category=AuditCategory.UPDATE,
        resource_type='will',
        resource_id=will_id,
        owner_id=owner_id,
        actor_type='user',
        details={'notifications_sent': sent, 'notifications_total': total, 'repeat': repeat}
    )


def log_allocations_committed(owner_id: str, asset_id: str, allocation_set,
                              success: bool = True, error: str = None) -> Optional[AuditLog]:
    """Log an allocation set commit (or a failed attempt)."""
    return log_action(
        action=AuditAction.ALLOCATIONS_COMMITTED if success else AuditAction.ALLOCATIONS_COMMIT_FAILED,
        action_category=AuditCategory.UPDATE,
        resource_type='allocation_set',
        resource_id=asset_id,
        owner_id=owner_id,
        actor_type='user',
        details={
            'rows': [
                {'recipient_id': row.recipient_id, 'percentage': str(row.percentage)}
                for row in allocation_set
            ]
        },
        success=success,
        error_message=error
    )


def log_allocations_rejected(owner_id: str, asset_id: str, error) -> Optional[AuditLog]:
    """Log an allocation set that failed validation."""
    return log_action(
        action=AuditAction.ALLOCATIONS_REJECTED,
        action_category=AuditCategory.SYSTEM,
        resource_type='allocation_set',
        resource_id=asset_id,
        owner_id=owner_id,
        actor_type='user',
        details=error.to_dict(),
        success=False,
        error_message=error.message
    )


def log_entity_change(owner_id: str, resource_type: str, resource_id: str,
                      action_category: str) -> Optional[AuditLog]:
    """Log creation, update or deletion of an asset or recipient."""
    return log_action(
        action=ENTITY_ACTIONS[(resource_type, action_category)],
        action_category=action_category,
        resource_type=resource_type,
        resource_id=resource_id,
        owner_id=owner_id,
        actor_type='user'
    )


def log_email_sent(owner_id: str, will_id: str, recipient: str, success: bool,
                   error: str = None) -> Optional[AuditLog]:
    """Log email delivery."""
    return log_action(
        action=AuditAction.EMAIL_SENT if success else AuditAction.EMAIL_FAILED,
        action_category=AuditCategory.SEND,
        resource_type='email',
        resource_id=recipient,
        owner_id=owner_id,
        actor_type='system',
        details={'recipient': recipient, 'will_id': will_id},
        success=success,
        error_message=error
    )


def verify_audit_integrity() -> tuple:
    """
    Verify integrity of all audit log records.

    Returns:
        Tuple of (valid_count, invalid_count, invalid_ids)
    """
    logs = AuditLog.query.all()
    valid_count = 0
    invalid_count = 0
    invalid_ids = []

    for log in logs:
        if log.verify_integrity():
            valid_count += 1
        else:
            invalid_count += 1
            invalid_ids.append(log.id)

    return valid_count, invalid_count, invalid_ids


def get_audit_trail(owner_id: str) -> list:
    """
    Get complete audit trail for an owner.

    Args:
        owner_id: The owner's user id

    Returns:
        List of audit log dictionaries, oldest first
    """
    logs = AuditLog.query.filter_by(owner_id=owner_id) \
                         .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc()) \
                         .all()
    return [log.to_dict() for log in logs]
