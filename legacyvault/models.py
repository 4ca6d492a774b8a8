"""
Database models for the LegacyVault application.

Every row is owned by exactly one user (``user_id``). Users themselves live
in the upstream identity provider, so owner references are opaque strings.

Enhanced with:
- Closed enumerations for will type, will status and asset category
- Store-level uniqueness for (owner, will type) and (asset, recipient)
- Percentage check constraint on allocations
- Audit trail integration
"""

import json
import uuid
from datetime import datetime
from enum import Enum as PyEnum

from legacyvault import db
from legacyvault.utils import calculate_sha256


def new_id() -> str:
    """Generate an opaque identifier for a new row."""
    return str(uuid.uuid4())


class WillType(PyEnum):
    """Creation method of a will. One will per type per owner."""
    AUDIO = 'audio'
    VIDEO = 'video'
    CHAT = 'chat'
    TEXT = 'text'


class WillStatus(PyEnum):
    """Will lifecycle states, in order. There is no transition backwards."""
    DRAFT = 'draft'
    IN_PROGRESS = 'in_progress'
    REVIEW = 'review'
    COMPLETED = 'completed'

    @property
    def rank(self) -> int:
        return list(WillStatus).index(self)


class AssetCategory(PyEnum):
    """Closed set of asset categories."""
    PROPERTY = 'property'
    INVESTMENT = 'investment'
    BANK_ACCOUNT = 'bank_account'
    VEHICLE = 'vehicle'
    JEWELRY = 'jewelry'
    DIGITAL_ASSET = 'digital_asset'
    INSURANCE = 'insurance'
    BUSINESS = 'business'
    OTHER = 'other'


DEFAULT_WILL_TITLES = {
    WillType.AUDIO.value: 'My Audio Will',
    WillType.VIDEO.value: 'My Video Will',
    WillType.CHAT.value: 'My Chat-Based Will',
    WillType.TEXT.value: 'My Written Will',
}


def _iso(value):
    return value.isoformat() if value else None


class Will(db.Model):
    """
    A recorded or written set of final wishes.

    At most one will exists per (owner, type); content saves for the same
    creation method update that row in place.
    """
    __tablename__ = 'wills'
    __table_args__ = (
        db.UniqueConstraint('user_id', 'type', name='uq_wills_user_type'),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(128), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False, default='My Will')
    type = db.Column(db.String(10), nullable=False, default=WillType.TEXT.value)
    status = db.Column(db.String(20), nullable=False, default=WillStatus.DRAFT.value)

    # Content and media references
    content = db.Column(db.Text, nullable=True)
    transcript = db.Column(db.Text, nullable=True)
    audio_url = db.Column(db.String(500), nullable=True)
    video_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    finalized_at = db.Column(db.DateTime, nullable=True)

    assets = db.relationship('Asset', backref='will', lazy='select', passive_deletes=True)

    def __repr__(self):
        return f'<Will {self.id} {self.type} - {self.status}>'

    @property
    def status_enum(self) -> WillStatus:
        return WillStatus(self.status)

    @property
    def is_completed(self) -> bool:
        return self.status == WillStatus.COMPLETED.value

    def to_dict(self):
        """Convert will to dictionary for API responses."""
        return {
            'id': self.id,
            'title': self.title,
            'type': self.type,
            'status': self.status,
            'content': self.content,
            'transcript': self.transcript,
            'audio_url': self.audio_url,
            'video_url': self.video_url,
            'notes': self.notes,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
            'finalized_at': _iso(self.finalized_at),
        }


class Recipient(db.Model):
    """A person or entity designated to receive asset shares."""
    __tablename__ = 'recipients'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(128), nullable=False, index=True)

    full_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    relationship = db.Column(db.String(50), nullable=True)  # free text
    address = db.Column(db.Text, nullable=True)

    is_verified = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    allocations = db.relationship(
        'Allocation', back_populates='recipient',
        cascade='all, delete-orphan', passive_deletes=True
    )

    def __repr__(self):
        return f'<Recipient {self.id} - {self.full_name}>'

    def to_dict(self):
        """Convert recipient to dictionary for API responses."""
        return {
            'id': self.id,
            'full_name': self.full_name,
            'email': self.email,
            'phone': self.phone,
            'relationship': self.relationship,
            'address': self.address,
            'is_verified': self.is_verified,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }


class Asset(db.Model):
    """An item of value the owner wants to bequeath."""
    __tablename__ = 'assets'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    will_id = db.Column(db.String(36), db.ForeignKey('wills.id', ondelete='SET NULL'), nullable=True, index=True)

    name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(20), nullable=False, default=AssetCategory.OTHER.value)
    description = db.Column(db.Text, nullable=True)
    estimated_value = db.Column(db.Numeric(15, 2), nullable=True)
    currency = db.Column(db.String(3), nullable=True, default='USD')
    location = db.Column(db.String(200), nullable=True)
    documents_url = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    allocations = db.relationship(
        'Allocation', back_populates='asset',
        cascade='all, delete-orphan', passive_deletes=True,
        order_by='Allocation.created_at'
    )

    def __repr__(self):
        return f'<Asset {self.id} - {self.name}>'

    def to_dict(self, include_allocations=False):
        """Convert asset to dictionary for API responses."""
        data = {
            'id': self.id,
            'will_id': self.will_id,
            'name': self.name,
            'category': self.category,
            'description': self.description,
            'estimated_value': float(self.estimated_value) if self.estimated_value is not None else None,
            'currency': self.currency,
            'location': self.location,
            'documents_url': self.documents_url,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at),
        }
        if include_allocations:
            data['allocations'] = [a.to_dict() for a in self.allocations]
        return data


class Allocation(db.Model):
    """
    A percentage share of one asset assigned to one recipient.

    The full set of rows for an asset is replaced as a unit by the
    allocation engine; rows are never updated in place.
    """
    __tablename__ = 'asset_allocations'
    __table_args__ = (
        db.UniqueConstraint('asset_id', 'recipient_id', name='uq_allocation_asset_recipient'),
        db.CheckConstraint(
            'allocation_percentage > 0 AND allocation_percentage <= 100',
            name='ck_allocation_percentage_range'
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    asset_id = db.Column(db.String(36), db.ForeignKey('assets.id', ondelete='CASCADE'), nullable=False, index=True)
    recipient_id = db.Column(db.String(36), db.ForeignKey('recipients.id', ondelete='CASCADE'), nullable=False, index=True)

    allocation_percentage = db.Column(db.Numeric(5, 2), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    asset = db.relationship('Asset', back_populates='allocations')
    recipient = db.relationship('Recipient', back_populates='allocations')

    def __repr__(self):
        return f'<Allocation {self.asset_id} -> {self.recipient_id} {self.allocation_percentage}%>'

    def to_dict(self):
        """Convert allocation to dictionary for API responses."""
        return {
            'id': self.id,
            'asset_id': self.asset_id,
            'recipient_id': self.recipient_id,
            'recipient_name': self.recipient.full_name if self.recipient else None,
            'percentage': float(self.allocation_percentage),
            'notes': self.notes,
            'created_at': _iso(self.created_at),
        }


class AuditLog(db.Model):
    """
    Immutable audit trail for all significant actions.

    This table is append-only. Records are never modified or deleted.
    """
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)

    # When the action occurred
    timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    # Who performed the action
    actor_type = db.Column(db.String(20), nullable=False)  # 'user', 'system'
    actor_id = db.Column(db.String(128), nullable=True)
    owner_id = db.Column(db.String(128), nullable=True, index=True)

    # What was done
    action = db.Column(db.String(50), nullable=False)  # 'will_finalized', 'allocations_committed', etc.
    action_category = db.Column(db.String(20), nullable=False)  # 'create', 'update', 'delete', 'send', ...

    # What was affected
    resource_type = db.Column(db.String(50), nullable=False)  # 'will', 'asset', 'allocation_set', 'email'
    resource_id = db.Column(db.String(100), nullable=True)

    # Details (structured JSON)
    details_json = db.Column(db.Text, nullable=True)

    # Outcome
    success = db.Column(db.Boolean, nullable=False)
    error_message = db.Column(db.Text, nullable=True)

    # Request context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    # Integrity hash (prevents tampering)
    integrity_hash = db.Column(db.String(64), nullable=False)

    def __repr__(self):
        return f'<AuditLog {self.id} - {self.action} by {self.actor_type}>'

    def to_dict(self):
        """Convert audit log to dictionary."""
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat(),
            'actor_type': self.actor_type,
            'actor_id': self.actor_id,
            'owner_id': self.owner_id,
            'action': self.action,
            'action_category': self.action_category,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': json.loads(self.details_json) if self.details_json else None,
            'success': self.success,
            'error_message': self.error_message
        }

    def compute_integrity_hash(self):
        """Compute hash of this record's content for tamper detection."""
        content = f"{self.timestamp}{self.actor_type}{self.actor_id}{self.owner_id}{self.action}{self.resource_type}{self.resource_id}{self.details_json}"
        return calculate_sha256(content.encode())

    def verify_integrity(self):
        """Verify this record has not been tampered with."""
        return self.integrity_hash == self.compute_integrity_hash()
