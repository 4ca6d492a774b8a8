"""
Will Lifecycle Manager

Status only ever moves forward:

    draft -> in_progress -> review -> completed

- save_content creates or updates the owner's single will for a creation
  method and moves a draft to in_progress.
- submit_for_review moves a will to review.
- finalize marks the will completed and then notifies recipients. A failed
  notification never undoes the completion.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from legacyvault import db, store
from legacyvault.audit_logger import (
    log_will_finalized, log_will_saved, log_will_submitted_for_review
)
from legacyvault.errors import (
    AcknowledgementRequired, InvalidStatusTransition, NotificationPartialFailure
)
from legacyvault.models import DEFAULT_WILL_TITLES, Will, WillStatus, WillType, new_id
from legacyvault.notifications import NotificationDispatcher, NotificationReport

CONTENT_FIELDS = ('content', 'transcript', 'audio_url', 'video_url', 'notes')
DEFAULT_OWNER_NAME = 'A LegacyVault user'


@dataclass
class FinalizeResult:
    """Outcome of finalize: the completed will plus the notification report."""
    will: Will
    report: NotificationReport
    warning: Optional[NotificationPartialFailure] = None
    repeat: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'will': self.will.to_dict(),
            'notifications': self.report.to_dict(),
            'warning': self.warning.to_dict() if self.warning else None,
            'repeat': self.repeat,
        }


def advance_status(will: Will, target: WillStatus) -> bool:
    """
    Move a will forward to target.

    Returns:
        True if the status changed, False if it was already at target

    Raises:
        InvalidStatusTransition: If target is behind the current status
    """
    current = will.status_enum
    if target.rank < current.rank:
        raise InvalidStatusTransition(current.value, target.value)
    if target == current:
        return False
    will.status = target.value
    return True


def save_content(owner_id: str, will_type: str, payload: Dict[str, Any]) -> tuple:
    """
    Create or update the owner's will for a creation method.

    Args:
        owner_id: Owner of the will
        will_type: One of audio, video, chat, text
        payload: Validated content/media fields (and optional title)

    Returns:
        Tuple of (will, created)

    Raises:
        PersistenceFailure: If the store write fails
    """
    will_type = WillType(will_type).value
    will = store.get_will(owner_id, will_type)
    created = will is None

    if created:
        will = Will(
            id=new_id(),
            user_id=owner_id,
            type=will_type,
            title=payload.get('title') or DEFAULT_WILL_TITLES[will_type],
            status=WillStatus.IN_PROGRESS.value
        )
        db.session.add(will)
    else:
        if will.status == WillStatus.DRAFT.value:
            advance_status(will, WillStatus.IN_PROGRESS)
        if payload.get('title'):
            will.title = payload['title']

    for key in CONTENT_FIELDS:
        if key in payload:
            setattr(will, key, payload[key])

    will.updated_at = datetime.utcnow()
    store.commit('save will content', will.id)

    current_app.logger.info(
        f'{"Created" if created else "Updated"} {will_type} will {will.id} for owner {owner_id}'
    )
    log_will_saved(owner_id, will.id, will_type, created)
    return will, created


def submit_for_review(owner_id: str, will_id: str) -> Will:
    """
    Move a will into review.

    Raises:
        NotFound: If the will does not exist for this owner
        InvalidStatusTransition: If the will is already completed
    """
    will = store.get_will_by_id(owner_id, will_id)
    if advance_status(will, WillStatus.REVIEW):
        will.updated_at = datetime.utcnow()
        store.commit('submit will for review', will_id)
        log_will_submitted_for_review(owner_id, will_id)
    return will


def finalize(owner_id: str, will_id: str, acknowledged: bool,
             owner_name: Optional[str] = None,
             dispatcher: Optional[NotificationDispatcher] = None) -> FinalizeResult:
    """
    Mark a will completed and notify its recipients.

    Finalizing an already completed will is allowed and sends the
    notifications again; the first finalized_at timestamp is kept.

    Args:
        owner_id: Owner of the will
        will_id: Will to finalize
        acknowledged: The owner confirmed the will is complete
        owner_name: Name used in the notification emails
        dispatcher: Notification dispatcher (defaults to SMTP delivery)

    Returns:
        FinalizeResult; its warning is set when some emails failed

    Raises:
        AcknowledgementRequired: If acknowledged is not True
        NotFound: If the will does not exist for this owner
        PersistenceFailure: If the status update fails
    """
    if acknowledged is not True:
        raise AcknowledgementRequired()

    will = store.get_will_by_id(owner_id, will_id)
    repeat = will.is_completed
    if repeat:
        current_app.logger.warning(f'Will {will_id} is already completed; re-sending notifications')

    now = datetime.utcnow()
    advance_status(will, WillStatus.COMPLETED)
    if will.finalized_at is None:
        will.finalized_at = now
    will.updated_at = now
    store.commit('finalize will', will_id)

    dispatcher = dispatcher or NotificationDispatcher()
    warning = None
    try:
        report = dispatcher.notify(owner_id, will.id, will.title, owner_name or DEFAULT_OWNER_NAME)
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f'Could not load recipients to notify for will {will_id}: {str(e)}')
        report = NotificationReport()
        warning = NotificationPartialFailure(0, 0, [{'error': str(e)}])

    if report.failures:
        warning = NotificationPartialFailure(
            report.sent, report.total, [f.to_dict() for f in report.failures]
        )
        current_app.logger.warning(f'Will {will_id} finalized with notification failures: {warning.message}')

    log_will_finalized(owner_id, will_id, report.sent, report.total, repeat=repeat)
    return FinalizeResult(will=will, report=report, warning=warning, repeat=repeat)
