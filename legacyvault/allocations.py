"""
Allocation Consistency Engine

Maintains, for each asset, the set of (recipient, percentage) rows that say
who inherits what share of it.

Rules enforced before anything is written:
- every percentage is a number in (0, 100], normalised to two decimals
- a recipient appears at most once per asset
- a non-empty set sums to exactly 100; an empty set means "unassigned"

A commit always replaces the asset's whole set (delete then insert inside one
transaction) and never updates rows in place, so moving a share from one
recipient to another cannot leave a half-applied state behind. Commits for
the same asset are serialised by a per-asset lock.
"""

import threading
from contextlib import contextmanager
from collections import Counter
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from legacyvault import db, store
from legacyvault.audit_logger import log_allocations_committed, log_allocations_rejected
from legacyvault.errors import (
    AllocationNotComplete, AllocationValidationError, DuplicateRecipient,
    InvalidPercentage, PersistenceFailure, RecipientRequired
)
from legacyvault.models import Allocation
from legacyvault.validation import is_valid_percentage, parse_percentage

FULL_ALLOCATION = Decimal('100')


@dataclass(frozen=True)
class AllocationRow:
    """One recipient's share of an asset, as held in an edit buffer."""
    recipient_id: str
    percentage: Any
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AllocationRow':
        if not isinstance(data, dict):
            raise AllocationValidationError('Each allocation must be a JSON object')
        recipient_id = data.get('recipient_id', data.get('recipientId'))
        percentage = data.get('percentage', data.get('allocation_percentage'))
        notes = data.get('notes') or None
        return cls(
            recipient_id=str(recipient_id).strip() if recipient_id is not None else '',
            percentage=percentage,
            notes=notes
        )

    @classmethod
    def from_allocation(cls, allocation: Allocation) -> 'AllocationRow':
        return cls(
            recipient_id=allocation.recipient_id,
            percentage=parse_percentage(allocation.allocation_percentage),
            notes=allocation.notes
        )

    @property
    def parsed_percentage(self) -> Optional[Decimal]:
        return parse_percentage(self.percentage)

    def to_dict(self) -> Dict[str, Any]:
        parsed = self.parsed_percentage
        return {
            'recipient_id': self.recipient_id,
            'percentage': float(parsed) if parsed is not None else self.percentage,
            'notes': self.notes,
        }


@dataclass(frozen=True)
class AllocationSet:
    """
    Short-lived edit buffer for one asset's allocations.

    Every edit returns a new set. Nothing here touches the store; the buffer
    is handed to commit_set once the user saves.
    """
    rows: Tuple[AllocationRow, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: Any) -> 'AllocationSet':
        """Build a buffer from a JSON list of {recipient_id, percentage, notes}."""
        if payload is None:
            return cls()
        if isinstance(payload, AllocationSet):
            return payload
        if not isinstance(payload, (list, tuple)):
            raise AllocationValidationError('Allocations must be a list')
        rows = []
        for item in payload:
            rows.append(item if isinstance(item, AllocationRow) else AllocationRow.from_dict(item))
        return cls(tuple(rows))

    @classmethod
    def from_allocations(cls, allocations: Iterable[Allocation]) -> 'AllocationSet':
        return cls(tuple(AllocationRow.from_allocation(a) for a in allocations))

    def __iter__(self) -> Iterator[AllocationRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def recipient_ids(self) -> List[str]:
        return [row.recipient_id for row in self.rows]

    @property
    def total(self) -> Decimal:
        """Sum of the parseable percentages. Unparseable rows count as 0."""
        total = Decimal('0.00')
        for row in self.rows:
            parsed = row.parsed_percentage
            if parsed is not None:
                total += parsed
        return total

    @property
    def is_complete(self) -> bool:
        """True when the set is empty or sums to exactly 100."""
        return not self.rows or self.total == FULL_ALLOCATION

    def with_row(self, recipient_id: str, percentage: Any = None, notes: Optional[str] = None) -> 'AllocationSet':
        """
        Add a row for a recipient.

        Raises:
            DuplicateRecipient: If the recipient already has a row
        """
        if recipient_id in self.recipient_ids:
            raise DuplicateRecipient(recipient_id, len(self.rows))
        return AllocationSet(self.rows + (AllocationRow(recipient_id, percentage, notes),))

    def with_percentage(self, recipient_id: str, percentage: Any) -> 'AllocationSet':
        """Change one recipient's percentage. Unknown recipients are ignored."""
        return AllocationSet(tuple(
            replace(row, percentage=percentage) if row.recipient_id == recipient_id else row
            for row in self.rows
        ))

    def without(self, recipient_id: str) -> 'AllocationSet':
        """Drop a recipient's row. The remaining total is not re-validated."""
        return AllocationSet(tuple(row for row in self.rows if row.recipient_id != recipient_id))

    def available_recipients(self, recipient_ids: Iterable[str]) -> List[str]:
        """Recipients from a pool that do not have a row yet."""
        assigned = set(self.recipient_ids)
        return [rid for rid in recipient_ids if rid not in assigned]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allocations': [row.to_dict() for row in self.rows],
            'total': float(self.total),
            'is_complete': self.is_complete,
        }


class AssetLockRegistry:
    """Per-asset locks so two saves for the same asset never interleave."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, asset_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(asset_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[asset_id] = lock
            return lock

    def discard(self, asset_id: str) -> None:
        """Forget a deleted asset's lock unless a save is holding it."""
        with self._guard:
            lock = self._locks.get(asset_id)
            if lock is not None and not lock.locked():
                del self._locks[asset_id]

    @contextmanager
    def hold(self, asset_id: str, timeout: Optional[float] = None):
        """
        Hold the asset's lock for the duration of the block.

        Raises:
            PersistenceFailure: If the lock is not acquired within timeout
        """
        lock = self.lock_for(asset_id)
        acquired = lock.acquire(timeout=timeout) if timeout is not None else lock.acquire()
        if not acquired:
            raise PersistenceFailure(
                'Another save for this asset is still in progress', resource_id=asset_id
            )
        try:
            yield
        finally:
            lock.release()


asset_locks = AssetLockRegistry()


def validate_set(rows: Any) -> AllocationSet:
    """
    Validate an allocation set before commit.

    Args:
        rows: An AllocationSet, or a list of rows / row dicts

    Returns:
        The set with every percentage normalised to a two-decimal Decimal

    Raises:
        InvalidPercentage: A row's percentage is not a number in (0, 100]
        RecipientRequired: A row does not name a recipient
        DuplicateRecipient: Two rows share a recipient
        AllocationNotComplete: A non-empty set does not total exactly 100
    """
    allocation_set = AllocationSet.from_payload(rows)
    normalised = []
    seen = set()

    for index, row in enumerate(allocation_set):
        parsed = row.parsed_percentage
        if not is_valid_percentage(parsed):
            raise InvalidPercentage(index, row.percentage, row.recipient_id or None)
        if not row.recipient_id:
            raise RecipientRequired(index)
        if row.recipient_id in seen:
            raise DuplicateRecipient(row.recipient_id, index)
        seen.add(row.recipient_id)
        normalised.append(replace(row, percentage=parsed))

    result = AllocationSet(tuple(normalised))
    if result.rows and result.total != FULL_ALLOCATION:
        raise AllocationNotComplete(result.total)
    return result


def load_allocations(asset_id: str, owner_id: Optional[str] = None) -> AllocationSet:
    """
    Fetch the stored allocations for an asset.

    Returns an empty set when the asset has no rows, does not exist, or
    belongs to another owner.
    """
    return AllocationSet.from_allocations(store.list_allocations(owner_id=owner_id, asset_id=asset_id))


def remove_recipient(asset_id: str, recipient_id: str, owner_id: Optional[str] = None) -> AllocationSet:
    """
    Load an asset's stored rows and drop one recipient from them.

    The result is an edit buffer: the stored rows are untouched and the
    buffer may no longer total 100 until the next commit_set.
    """
    return load_allocations(asset_id, owner_id=owner_id).without(recipient_id)


def _signature(rows: Iterable[AllocationRow]) -> Counter:
    return Counter((row.recipient_id, parse_percentage(row.percentage)) for row in rows)


def commit_set(owner_id: str, asset_id: str, rows: Any) -> List[Allocation]:
    """
    Replace an asset's allocations with a validated set.

    Validation and ownership checks run before any write. The delete and
    insert phases share one transaction, and the stored rows are read back
    afterwards to confirm they match what was submitted.

    Args:
        owner_id: Owner of the asset and recipients
        asset_id: Asset whose allocations are replaced
        rows: New allocation set (an empty set clears the asset)

    Returns:
        The persisted Allocation rows

    Raises:
        AllocationValidationError: The set failed validation (nothing written)
        NotFound: The asset or a recipient does not exist for this owner
        PersistenceFailure: The write failed; re-fetch before retrying
    """
    try:
        allocation_set = validate_set(rows)
    except AllocationValidationError as e:
        current_app.logger.info(f'Allocation set rejected for asset {asset_id}: {e.message}')
        log_allocations_rejected(owner_id, asset_id, e)
        raise

    store.get_asset(owner_id, asset_id)
    for recipient_id in allocation_set.recipient_ids:
        store.get_recipient(owner_id, recipient_id)

    timeout = current_app.config.get('STORE_TIMEOUT_SECONDS')
    with asset_locks.hold(asset_id, timeout=timeout):
        try:
            removed = store.delete_allocations_for_asset(asset_id)
            store.insert_allocations(asset_id, allocation_set)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            current_app.logger.error(f'Allocation commit failed for asset {asset_id}: {str(e)}')
            log_allocations_committed(owner_id, asset_id, allocation_set, success=False, error=str(e))
            raise PersistenceFailure(
                'Failed to save allocations; reload this asset before trying again',
                resource_id=asset_id
            ) from e

        persisted = store.list_allocations(asset_id=asset_id)

    if _signature(AllocationRow.from_allocation(a) for a in persisted) != _signature(allocation_set):
        current_app.logger.error(f'Allocation read-back mismatch for asset {asset_id}')
        log_allocations_committed(owner_id, asset_id, allocation_set, success=False,
                                  error='read-back mismatch')
        raise PersistenceFailure(
            'Saved allocations do not match the submitted set; reload this asset',
            resource_id=asset_id
        )

    current_app.logger.info(
        f'Committed {len(persisted)} allocation(s) for asset {asset_id} (replaced {removed})'
    )
    log_allocations_committed(owner_id, asset_id, allocation_set, success=True)
    return persisted
