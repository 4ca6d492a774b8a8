"""
Error kinds raised by the allocation engine and the will lifecycle.

Validation errors are raised before any write. PersistenceFailure means the
stored state may not match what the caller expects and must be re-fetched.
NotificationPartialFailure is never raised by finalize; it is attached to the
finalize result as a warning.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional


class LegacyVaultError(Exception):
    """Base class for domain errors."""
    code = 'error'
    field = ''

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Error entry in the same shape as validation errors."""
        return {'field': self.field, 'message': self.message, 'code': self.code}


class AllocationValidationError(LegacyVaultError):
    """An allocation set was rejected before any write."""
    code = 'invalid_allocation'


class InvalidPercentage(AllocationValidationError):
    """A row's percentage is not a number in (0, 100]."""
    code = 'invalid_percentage'

    def __init__(self, row_index: int, value: Any, recipient_id: Optional[str] = None):
        self.row_index = row_index
        self.value = value
        self.recipient_id = recipient_id
        self.field = f'allocations[{row_index}].percentage'
        super().__init__(
            f'Allocation {row_index + 1} must be greater than 0% and at most 100% (got {value!r})'
        )


class RecipientRequired(AllocationValidationError):
    """A row does not name a recipient."""
    code = 'recipient_required'

    def __init__(self, row_index: int):
        self.row_index = row_index
        self.field = f'allocations[{row_index}].recipient_id'
        super().__init__(f'Allocation {row_index + 1} must name a recipient')


class DuplicateRecipient(AllocationValidationError):
    """Two rows reference the same recipient."""
    code = 'duplicate_recipient'

    def __init__(self, recipient_id: str, row_index: int):
        self.recipient_id = recipient_id
        self.row_index = row_index
        self.field = f'allocations[{row_index}].recipient_id'
        super().__init__(f'Recipient {recipient_id} already has an allocation for this asset')


class AllocationNotComplete(AllocationValidationError):
    """A non-empty set does not sum to exactly 100."""
    code = 'allocation_not_complete'
    field = 'allocations'

    def __init__(self, total: Decimal):
        self.total = total
        super().__init__(f'Allocations must total 100% (current: {total}%)')


class AcknowledgementRequired(LegacyVaultError):
    """Finalize was requested without the explicit acknowledgment."""
    code = 'acknowledgement_required'
    field = 'acknowledged'

    def __init__(self):
        super().__init__('You must confirm that your will is complete before finalizing')


class InvalidStatusTransition(LegacyVaultError):
    """A will status change would move backwards."""
    code = 'invalid_status_transition'
    field = 'status'

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f'Cannot move a will from {current} to {target}')


class NotFound(LegacyVaultError):
    """An asset, recipient or will does not exist for this owner."""
    code = 'not_found'

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f'{resource_type.capitalize()} not found: {resource_id}')


class PersistenceFailure(LegacyVaultError):
    """
    A store write failed or timed out.

    For allocation commits the asset's allocation state must be treated as
    unknown and re-fetched before retrying.
    """
    code = 'persistence_failure'

    def __init__(self, message: str, resource_id: Optional[str] = None):
        self.resource_id = resource_id
        super().__init__(message)


class NotificationPartialFailure(LegacyVaultError):
    """Some recipient emails were not sent. Informational only."""
    code = 'notification_partial_failure'

    def __init__(self, sent: int, total: int, failures: List[Dict[str, Any]]):
        self.sent = sent
        self.total = total
        self.failures = failures
        super().__init__(f'Sent {sent} of {total} recipient notifications')

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({'sent': self.sent, 'total': self.total, 'failures': self.failures})
        return data
