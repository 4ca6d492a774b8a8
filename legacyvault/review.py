"""
Review Summary Module

Builds the pre-finalize overview of an owner's estate: the latest will,
the asset catalogue, the recipients, and how each asset is allocated, along
with warnings about anything that is missing.

The summary is read-only and generated entirely from stored state.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from legacyvault import store
from legacyvault.allocations import AllocationSet, FULL_ALLOCATION
from legacyvault.models import Asset, Recipient, Will, WillType
from legacyvault.utils import format_currency, format_date, format_percentage, join_names, pluralize


class RiskLevel(str, Enum):
    """Severity levels for review warnings."""
    INFO = 'info'
    WARNING = 'warning'


class SectionStatus(str, Enum):
    COMPLETE = 'complete'
    PENDING = 'pending'


WILL_TYPE_LABELS = {
    WillType.AUDIO.value: 'Audio Recording',
    WillType.VIDEO.value: 'Video Recording',
    WillType.CHAT.value: 'Chat-based Will',
    WillType.TEXT.value: 'Written Will',
}


@dataclass
class ReviewSection:
    """One line of the review checklist."""
    key: str
    title: str
    status: SectionStatus
    detail: str
    order: int = 0


@dataclass
class ReviewWarning:
    """Something the owner should look at before finalizing."""
    level: RiskLevel
    category: str
    title: str
    message: str
    suggestion: Optional[str] = None


@dataclass
class AssetAllocationOverview:
    """How one asset is shared out."""
    asset_id: str
    asset_name: str
    total: Decimal
    shares: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def state(self) -> str:
        if not self.shares:
            return 'unassigned'
        if self.total == FULL_ALLOCATION:
            return 'complete'
        return 'incomplete'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'asset_id': self.asset_id,
            'asset_name': self.asset_name,
            'total': float(self.total),
            'total_display': format_percentage(self.total),
            'state': self.state,
            'shares': self.shares,
        }


@dataclass
class WillReview:
    """Complete review summary for an owner."""
    will: Optional[Will] = None
    sections: List[ReviewSection] = field(default_factory=list)
    allocations: List[AssetAllocationOverview] = field(default_factory=list)
    warnings: List[ReviewWarning] = field(default_factory=list)

    @property
    def can_finalize(self) -> bool:
        return self.will is not None and not self.will.is_completed

    def to_dict(self) -> Dict[str, Any]:
        """Convert review to dictionary for API response."""
        return {
            'will': self.will.to_dict() if self.will else None,
            'sections': [
                {
                    'key': s.key,
                    'title': s.title,
                    'status': s.status.value,
                    'detail': s.detail,
                }
                for s in sorted(self.sections, key=lambda x: x.order)
            ],
            'allocations': [a.to_dict() for a in self.allocations],
            'warnings': [
                {
                    'level': w.level.value,
                    'category': w.category,
                    'title': w.title,
                    'message': w.message,
                    'suggestion': w.suggestion,
                }
                for w in self.warnings
            ],
            'warning_counts': {
                'info': len([w for w in self.warnings if w.level == RiskLevel.INFO]),
                'warning': len([w for w in self.warnings if w.level == RiskLevel.WARNING]),
            },
            'can_finalize': self.can_finalize,
        }


def generate_review_summary(owner_id: str) -> WillReview:
    """
    Generate the review summary for an owner's most recently updated will.

    Args:
        owner_id: The owner's user id

    Returns:
        WillReview with sections, allocation overview and warnings
    """
    will = store.latest_will(owner_id)
    assets = store.list_assets(owner_id)
    recipients = store.list_recipients(owner_id)
    allocations = store.list_allocations(owner_id=owner_id)

    review = WillReview(will=will)
    review.sections = [
        _will_section(will),
        _assets_section(assets),
        _recipients_section(recipients),
    ]
    review.allocations = _allocation_overview(assets, recipients, allocations)
    review.warnings = _generate_warnings(will, assets, recipients, review.allocations)
    return review


def _will_section(will: Optional[Will]) -> ReviewSection:
    if will is None:
        return ReviewSection('will', 'Not created', SectionStatus.PENDING, 'No will created yet', order=1)
    return ReviewSection(
        key='will',
        title=WILL_TYPE_LABELS.get(will.type, will.type),
        status=SectionStatus.COMPLETE,
        detail=f'{will.title}, last updated {format_date(will.updated_at)}',
        order=1
    )


def _total_value(assets: List[Asset]) -> str:
    """Sum estimated values per currency, e.g. '$1,500 + €200'."""
    totals = defaultdict(Decimal)
    for asset in assets:
        if asset.estimated_value is not None:
            totals[asset.currency or 'USD'] += Decimal(asset.estimated_value)
    if not totals:
        return 'no estimated value'
    return ' + '.join(format_currency(amount, code) for code, amount in sorted(totals.items()))


def _assets_section(assets: List[Asset]) -> ReviewSection:
    return ReviewSection(
        key='assets',
        title='Assets',
        status=SectionStatus.COMPLETE if assets else SectionStatus.PENDING,
        detail=f'{pluralize(len(assets), "asset")}, {_total_value(assets)} total',
        order=2
    )


def _recipients_section(recipients: List[Recipient]) -> ReviewSection:
    verified = len([r for r in recipients if r.is_verified])
    return ReviewSection(
        key='recipients',
        title='Recipients',
        status=SectionStatus.COMPLETE if recipients else SectionStatus.PENDING,
        detail=f'{pluralize(len(recipients), "recipient")}, {verified} verified',
        order=3
    )


def _allocation_overview(assets, recipients, allocations) -> List[AssetAllocationOverview]:
    names = {r.id: r.full_name for r in recipients}
    by_asset = defaultdict(list)
    for allocation in allocations:
        by_asset[allocation.asset_id].append(allocation)

    overview = []
    for asset in assets:
        rows = by_asset.get(asset.id, [])
        allocation_set = AllocationSet.from_allocations(rows)
        overview.append(AssetAllocationOverview(
            asset_id=asset.id,
            asset_name=asset.name,
            total=allocation_set.total,
            shares=[
                {
                    'recipient_id': row.recipient_id,
                    'recipient_name': names.get(row.recipient_id, 'Unknown'),
                    'percentage': float(row.percentage),
                }
                for row in allocation_set
            ]
        ))
    return overview


def _generate_warnings(will, assets, recipients, overview) -> List[ReviewWarning]:
    warnings = []

    if will is None:
        warnings.append(ReviewWarning(
            level=RiskLevel.WARNING,
            category='will',
            title='No will recorded',
            message='You have not recorded or written a will yet.',
            suggestion='Create a will by audio, video, chat or text before finalizing.'
        ))
    elif will.is_completed:
        warnings.append(ReviewWarning(
            level=RiskLevel.INFO,
            category='will',
            title='Will already finalized',
            message=f'This will was finalized on {format_date(will.finalized_at)}.',
        ))

    if not assets:
        warnings.append(ReviewWarning(
            level=RiskLevel.WARNING,
            category='assets',
            title='No assets listed',
            message='Your will does not list any assets.',
            suggestion='Add the property, accounts and belongings you want to pass on.'
        ))

    if not recipients:
        warnings.append(ReviewWarning(
            level=RiskLevel.WARNING,
            category='recipients',
            title='No recipients designated',
            message='Nobody has been named to receive your assets.',
            suggestion='Add at least one recipient.'
        ))

    unassigned = [o.asset_name for o in overview if o.state == 'unassigned']
    if unassigned:
        warnings.append(ReviewWarning(
            level=RiskLevel.WARNING,
            category='allocations',
            title='Assets without allocations',
            message=f'{join_names(unassigned)} {"has" if len(unassigned) == 1 else "have"} not been allocated to anyone.',
            suggestion='Allocate 100% of each asset among your recipients.'
        ))

    incomplete = [o.asset_name for o in overview if o.state == 'incomplete']
    if incomplete:
        warnings.append(ReviewWarning(
            level=RiskLevel.WARNING,
            category='allocations',
            title='Allocations do not total 100%',
            message=f'Allocations for {join_names(incomplete)} do not add up to 100%.',
            suggestion='Review and save the allocations for these assets again.'
        ))

    no_email = [r.full_name for r in recipients if not r.email]
    if no_email:
        warnings.append(ReviewWarning(
            level=RiskLevel.INFO,
            category='recipients',
            title='Recipients without email',
            message=f'{join_names(no_email)} will not be notified when you finalize because no email address is on file.',
            suggestion='Add an email address so they can be told about your will.'
        ))

    return warnings
