"""
Tests for the review summary.
"""

import unittest

from legacyvault import store
from legacyvault.allocations import commit_set
from legacyvault.conftest import OWNER_ID
from legacyvault.lifecycle import finalize, save_content
from legacyvault.review import generate_review_summary
from legacyvault.utils import format_currency, format_percentage, join_names, pluralize


def warning_titles(review):
    return [w.title for w in review.warnings]


class TestEmptyEstate:
    def test_everything_pending(self, app):
        review = generate_review_summary(OWNER_ID)
        data = review.to_dict()

        assert data['will'] is None
        assert [s['status'] for s in data['sections']] == ['pending', 'pending', 'pending']
        assert data['sections'][0]['detail'] == 'No will created yet'
        assert data['can_finalize'] is False
        assert 'No will recorded' in warning_titles(review)
        assert 'No assets listed' in warning_titles(review)
        assert 'No recipients designated' in warning_titles(review)


class TestPopulatedEstate:
    def test_sections_complete(self, asset, recipients):
        save_content(OWNER_ID, 'audio', {'transcript': 'hello'})
        data = generate_review_summary(OWNER_ID).to_dict()

        sections = {s['key']: s for s in data['sections']}
        assert sections['will']['title'] == 'Audio Recording'
        assert sections['will']['status'] == 'complete'
        assert sections['assets']['detail'] == '1 asset, $450,000 total'
        assert sections['recipients']['detail'] == '2 recipients, 0 verified'
        assert data['can_finalize'] is True

    def test_allocation_overview(self, asset, recipients):
        alice, bob = recipients
        commit_set(OWNER_ID, asset.id, [
            {'recipient_id': alice.id, 'percentage': 75},
            {'recipient_id': bob.id, 'percentage': 25},
        ])
        unallocated = store.create_asset(OWNER_ID, {'name': 'Car', 'category': 'vehicle'})

        review = generate_review_summary(OWNER_ID)
        overview = {o['asset_name']: o for o in review.to_dict()['allocations']}

        assert overview['Family Home']['state'] == 'complete'
        assert overview['Family Home']['total'] == 100.0
        assert [s['recipient_name'] for s in overview['Family Home']['shares']] == ['Alice Example', 'Bob Example']
        assert overview['Car']['state'] == 'unassigned'
        assert unallocated.name in [w.message for w in review.warnings if w.title == 'Assets without allocations'][0]

    def test_recipient_without_email_is_flagged(self, asset, recipients):
        review = generate_review_summary(OWNER_ID)
        warning = [w for w in review.warnings if w.title == 'Recipients without email'][0]
        assert warning.level.value == 'info'
        assert 'Bob Example' in warning.message

    def test_mixed_currencies_are_totalled_separately(self, asset):
        store.create_asset(OWNER_ID, {'name': 'Flat', 'estimated_value': 200, 'currency': 'EUR'})
        data = generate_review_summary(OWNER_ID).to_dict()
        assets_section = [s for s in data['sections'] if s['key'] == 'assets'][0]
        assert assets_section['detail'] == '2 assets, €200 + $450,000 total'

    def test_completed_will_cannot_be_finalized_from_review(self, app, smtp):
        will, _ = save_content(OWNER_ID, 'text', {'content': 'x'})
        finalize(OWNER_ID, will.id, acknowledged=True)
        review = generate_review_summary(OWNER_ID)
        assert review.can_finalize is False
        assert 'Will already finalized' in warning_titles(review)


class TestFormatting(unittest.TestCase):
    def test_format_currency(self):
        self.assertEqual(format_currency(1500), '$1,500')
        self.assertEqual(format_currency(1500.5, 'GBP'), '£1,500.50')
        self.assertEqual(format_currency(10, 'CHF'), '10 CHF')
        self.assertEqual(format_currency(None), '')

    def test_format_percentage(self):
        self.assertEqual(format_percentage(50), '50%')
        self.assertEqual(format_percentage(33.33), '33.33%')

    def test_join_names(self):
        self.assertEqual(join_names(['A']), 'A')
        self.assertEqual(join_names(['A', 'B']), 'A and B')
        self.assertEqual(join_names(['A', 'B', 'C']), 'A, B and C')
        self.assertEqual(join_names([]), '')

    def test_pluralize(self):
        self.assertEqual(pluralize(1, 'asset'), '1 asset')
        self.assertEqual(pluralize(0, 'asset'), '0 assets')
