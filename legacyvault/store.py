"""
Persistent store access.

Every read and write is scoped to an owning user: a row belonging to another
owner behaves exactly like a missing row. Allocations have no owner column of
their own and are scoped through their asset.

Entity writes commit immediately. The two allocation write helpers
(``delete_allocations_for_asset`` and ``insert_allocations``) only flush, so
the allocation engine can run them inside one transaction.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from legacyvault import db
from legacyvault.errors import NotFound, PersistenceFailure
from legacyvault.models import Allocation, Asset, AssetCategory, Recipient, Will
from legacyvault.validation import coerce_to_decimal


ASSET_FIELDS = ('name', 'category', 'description', 'estimated_value', 'currency',
                'location', 'documents_url', 'will_id')
RECIPIENT_FIELDS = ('full_name', 'email', 'phone', 'relationship', 'address')


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def commit(action: str, resource_id: Optional[str] = None) -> None:
    """Commit the session, mapping store errors to PersistenceFailure."""
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        current_app.logger.error(f'Store write failed ({action}): {str(e)}')
        raise PersistenceFailure(f'Failed to {action}', resource_id=resource_id) from e


# Wills

def get_will(owner_id: str, will_type: str) -> Optional[Will]:
    """Look up the owner's will for a creation method."""
    return Will.query.filter_by(user_id=owner_id, type=will_type).first()


def get_will_by_id(owner_id: str, will_id: str) -> Will:
    """
    Fetch a will by id.

    Raises:
        NotFound: If the will does not exist for this owner
    """
    will = Will.query.filter_by(user_id=owner_id, id=will_id).first()
    if will is None:
        raise NotFound('will', will_id)
    return will


def list_wills(owner_id: str) -> List[Will]:
    """List the owner's wills, most recently updated first."""
    return Will.query.filter_by(user_id=owner_id).order_by(Will.updated_at.desc()).all()


def latest_will(owner_id: str) -> Optional[Will]:
    """The owner's most recently updated will, if any."""
    return Will.query.filter_by(user_id=owner_id).order_by(Will.updated_at.desc()).first()


# Assets

def list_assets(owner_id: str) -> List[Asset]:
    """List the owner's assets, newest first."""
    return Asset.query.filter_by(user_id=owner_id).order_by(Asset.created_at.desc()).all()


def get_asset(owner_id: str, asset_id: str) -> Asset:
    """
    Fetch an asset by id.

    Raises:
        NotFound: If the asset does not exist for this owner
    """
    asset = find_asset(owner_id, asset_id)
    if asset is None:
        raise NotFound('asset', asset_id)
    return asset


def find_asset(owner_id: str, asset_id: str) -> Optional[Asset]:
    """Fetch an asset by id, or None."""
    return Asset.query.filter_by(user_id=owner_id, id=asset_id).first()


def _apply_asset_fields(asset: Asset, owner_id: str, data: Dict[str, Any]) -> None:
    for key in ASSET_FIELDS:
        if key not in data:
            continue
        value = _blank_to_none(data[key])
        if key == 'estimated_value' and value is not None:
            value = coerce_to_decimal(value).quantize(Decimal('0.01'))
        if key == 'currency' and value is not None:
            value = value.upper()
        if key == 'category' and value is None:
            value = AssetCategory.OTHER.value
        if key == 'will_id' and value is not None:
            get_will_by_id(owner_id, value)
        setattr(asset, key, value)


def create_asset(owner_id: str, data: Dict[str, Any]) -> Asset:
    """Insert a new asset for the owner from a validated payload."""
    asset = Asset(user_id=owner_id)
    _apply_asset_fields(asset, owner_id, data)
    db.session.add(asset)
    commit('create asset')
    return asset


def update_asset(owner_id: str, asset_id: str, data: Dict[str, Any]) -> Asset:
    """Update an owner's asset from a validated (partial) payload."""
    asset = get_asset(owner_id, asset_id)
    _apply_asset_fields(asset, owner_id, data)
    commit('update asset', asset_id)
    return asset


def delete_asset(owner_id: str, asset_id: str) -> None:
    """Delete an asset. Its allocations cascade."""
    asset = get_asset(owner_id, asset_id)
    db.session.delete(asset)
    commit('delete asset', asset_id)


# Recipients

def list_recipients(owner_id: str) -> List[Recipient]:
    """List the owner's recipients ordered by name."""
    return Recipient.query.filter_by(user_id=owner_id).order_by(Recipient.full_name.asc()).all()


def list_notifiable_recipients(owner_id: str) -> List[Recipient]:
    """Recipients with an email address, the only ones finalize notifies."""
    return Recipient.query.filter(
        Recipient.user_id == owner_id,
        Recipient.email.isnot(None),
        Recipient.email != ''
    ).order_by(Recipient.full_name.asc()).all()


def get_recipient(owner_id: str, recipient_id: str) -> Recipient:
    """
    Fetch a recipient by id.

    Raises:
        NotFound: If the recipient does not exist for this owner
    """
    recipient = Recipient.query.filter_by(user_id=owner_id, id=recipient_id).first()
    if recipient is None:
        raise NotFound('recipient', recipient_id)
    return recipient


def _apply_recipient_fields(recipient: Recipient, data: Dict[str, Any]) -> None:
    for key in RECIPIENT_FIELDS:
        if key in data:
            setattr(recipient, key, _blank_to_none(data[key]))


def create_recipient(owner_id: str, data: Dict[str, Any]) -> Recipient:
    """Insert a new recipient for the owner. Recipients start unverified."""
    recipient = Recipient(user_id=owner_id, is_verified=False)
    _apply_recipient_fields(recipient, data)
    db.session.add(recipient)
    commit('create recipient')
    return recipient


def update_recipient(owner_id: str, recipient_id: str, data: Dict[str, Any]) -> Recipient:
    """Update an owner's recipient from a validated (partial) payload."""
    recipient = get_recipient(owner_id, recipient_id)
    _apply_recipient_fields(recipient, data)
    commit('update recipient', recipient_id)
    return recipient


def delete_recipient(owner_id: str, recipient_id: str) -> None:
    """Delete a recipient. Allocations referencing it cascade."""
    recipient = get_recipient(owner_id, recipient_id)
    db.session.delete(recipient)
    commit('delete recipient', recipient_id)


# Allocations

def list_allocations(owner_id: Optional[str] = None, asset_id: Optional[str] = None) -> List[Allocation]:
    """
    List allocation rows for an owner, an asset, or both.

    Args:
        owner_id: Restrict to assets owned by this user
        asset_id: Restrict to one asset

    Returns:
        Allocation rows in insertion order (empty for an unknown asset)
    """
    if owner_id is None and asset_id is None:
        raise ValueError('owner_id or asset_id is required')

    query = Allocation.query
    if owner_id is not None:
        query = query.join(Asset, Allocation.asset_id == Asset.id).filter(Asset.user_id == owner_id)
    if asset_id is not None:
        query = query.filter(Allocation.asset_id == asset_id)
    return query.order_by(Allocation.created_at.asc(), Allocation.id.asc()).all()


def delete_allocations_for_asset(asset_id: str) -> int:
    """Delete every allocation row for an asset. Flushes, does not commit."""
    deleted = Allocation.query.filter_by(asset_id=asset_id).delete(synchronize_session=False)
    db.session.flush()
    return deleted


def insert_allocations(asset_id: str, rows: Iterable[Any]) -> List[Allocation]:
    """
    Insert allocation rows for an asset. Flushes, does not commit.

    Args:
        asset_id: Target asset
        rows: Objects with recipient_id, percentage and notes attributes

    Returns:
        The new Allocation rows
    """
    created = []
    now = datetime.utcnow()
    for index, row in enumerate(rows):
        allocation = Allocation(
            asset_id=asset_id,
            recipient_id=row.recipient_id,
            allocation_percentage=row.percentage,
            notes=row.notes,
            created_at=now + timedelta(microseconds=index)
        )
        db.session.add(allocation)
        created.append(allocation)
    db.session.flush()
    return created
