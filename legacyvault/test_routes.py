"""
Tests for the JSON API.
"""

from legacyvault.allocations import asset_locks
from legacyvault.audit_logger import get_audit_trail
from legacyvault.errors import PersistenceFailure


def create_recipient(client, headers, name, email=None):
    payload = {'full_name': name}
    if email:
        payload['email'] = email
    response = client.post('/api/recipients', json=payload, headers=headers)
    assert response.status_code == 201
    return response.get_json()['recipient']['id']


def create_asset(client, headers, name='Family Home'):
    response = client.post('/api/assets', json={'name': name, 'category': 'property'}, headers=headers)
    assert response.status_code == 201
    return response.get_json()['asset']['id']


class TestHealth:
    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'ok': True, 'status': 'healthy'}


class TestAssetEndpoints:
    def test_crud(self, client, headers):
        asset_id = create_asset(client, headers)

        response = client.get('/api/assets', headers=headers)
        assert [a['id'] for a in response.get_json()['assets']] == [asset_id]

        response = client.patch(f'/api/assets/{asset_id}', json={'estimated_value': 1000}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()['asset']['estimated_value'] == 1000.0

        response = client.get(f'/api/assets/{asset_id}', headers=headers)
        assert response.get_json()['asset']['allocations'] == []

        response = client.delete(f'/api/assets/{asset_id}', headers=headers)
        assert response.status_code == 200
        assert client.get(f'/api/assets/{asset_id}', headers=headers).status_code == 404

    def test_invalid_payload_returns_422(self, client, headers):
        response = client.post('/api/assets', json={'category': 'spaceship'}, headers=headers)
        assert response.status_code == 422
        fields = {e['field'] for e in response.get_json()['errors']}
        assert fields == {'name', 'category'}

    def test_missing_body_returns_400(self, client, headers):
        response = client.post('/api/assets', data='not json', headers=headers)
        assert response.status_code == 400

    def test_other_owner_gets_404(self, client, headers, other_headers):
        asset_id = create_asset(client, headers)
        assert client.get(f'/api/assets/{asset_id}', headers=other_headers).status_code == 404
        assert client.delete(f'/api/assets/{asset_id}', headers=other_headers).status_code == 404

    def test_changes_are_audited(self, client, headers):
        asset_id = create_asset(client, headers)
        client.delete(f'/api/assets/{asset_id}', headers=headers)
        actions = [e['action'] for e in get_audit_trail(headers['X-User-Id'])]
        assert actions == ['asset_created', 'asset_deleted']

    def test_delete_releases_allocation_lock(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')
        client.put(f'/api/assets/{asset_id}/allocations', headers=headers,
                   json=[{'recipient_id': r1, 'percentage': 100}])
        assert asset_id in asset_locks._locks

        client.delete(f'/api/assets/{asset_id}', headers=headers)
        assert asset_id not in asset_locks._locks


class TestRecipientEndpoints:
    def test_crud(self, client, headers):
        recipient_id = create_recipient(client, headers, 'Alice Example', 'alice@example.com')

        response = client.patch(f'/api/recipients/{recipient_id}', json={'relationship': 'Niece'},
                                headers=headers)
        assert response.get_json()['recipient']['relationship'] == 'Niece'

        response = client.get(f'/api/recipients/{recipient_id}', headers=headers)
        assert response.get_json()['recipient']['email'] == 'alice@example.com'

        assert client.delete(f'/api/recipients/{recipient_id}', headers=headers).status_code == 200
        assert client.get('/api/recipients', headers=headers).get_json()['recipients'] == []

    def test_invalid_email(self, client, headers):
        response = client.post('/api/recipients', json={'full_name': 'A', 'email': 'nope'}, headers=headers)
        assert response.status_code == 422
        assert response.get_json()['errors'][0]['field'] == 'email'

    def test_changes_are_audited(self, client, headers):
        recipient_id = create_recipient(client, headers, 'Alice Example')
        client.patch(f'/api/recipients/{recipient_id}', json={'relationship': 'Niece'}, headers=headers)
        client.delete(f'/api/recipients/{recipient_id}', headers=headers)
        actions = [e['action'] for e in get_audit_trail(headers['X-User-Id'])]
        assert actions == ['recipient_created', 'recipient_updated', 'recipient_deleted']


class TestAllocationEndpoints:
    def test_commit_and_load(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')
        r2 = create_recipient(client, headers, 'Bob')

        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers, json={
            'allocations': [{'recipient_id': r1, 'percentage': 60}, {'recipient_id': r2, 'percentage': 40}]
        })
        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 100.0
        assert data['is_complete'] is True
        assert [a['recipient_name'] for a in data['allocations']] == ['Alice', 'Bob']

        response = client.get(f'/api/assets/{asset_id}/allocations', headers=headers)
        loaded = response.get_json()
        assert [(a['recipient_id'], a['percentage']) for a in loaded['allocations']] == [(r1, 60.0), (r2, 40.0)]

        response = client.get('/api/allocations', headers=headers)
        assert len(response.get_json()['allocations']) == 2

    def test_incomplete_set_rejected_with_current_total(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')
        r2 = create_recipient(client, headers, 'Bob')

        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers, json=[
            {'recipient_id': r1, 'percentage': 60}, {'recipient_id': r2, 'percentage': 50}
        ])
        assert response.status_code == 422
        error = response.get_json()['errors'][0]
        assert error['code'] == 'allocation_not_complete'
        assert error['message'] == 'Allocations must total 100% (current: 110.00%)'

        loaded = client.get(f'/api/assets/{asset_id}/allocations', headers=headers).get_json()
        assert loaded['allocations'] == []

    def test_duplicate_and_invalid_rows(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')

        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers, json=[
            {'recipient_id': r1, 'percentage': 50}, {'recipient_id': r1, 'percentage': 50}
        ])
        assert response.get_json()['errors'][0]['code'] == 'duplicate_recipient'

        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers, json=[
            {'recipient_id': r1, 'percentage': 0}
        ])
        assert response.status_code == 422
        assert response.get_json()['errors'][0]['field'] == 'allocations[0].percentage'

    def test_oversized_percentage_returns_422(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')

        for value in ('1e30', '1e999999', 1e30):
            rows = [{'recipient_id': r1, 'percentage': value}]
            for method, url in ((client.put, f'/api/assets/{asset_id}/allocations'),
                                (client.post, f'/api/assets/{asset_id}/allocations/validate')):
                response = method(url, headers=headers, json=rows)
                assert response.status_code == 422
                error = response.get_json()['errors'][0]
                assert error['code'] == 'invalid_percentage'
                assert error['field'] == 'allocations[0].percentage'

        loaded = client.get(f'/api/assets/{asset_id}/allocations', headers=headers).get_json()
        assert loaded['allocations'] == []

    def test_empty_set_clears(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')
        client.put(f'/api/assets/{asset_id}/allocations', headers=headers,
                   json=[{'recipient_id': r1, 'percentage': 100}])

        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers, json=[])
        assert response.status_code == 200
        assert response.get_json()['allocations'] == []

    def test_validate_does_not_write(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')

        response = client.post(f'/api/assets/{asset_id}/allocations/validate', headers=headers,
                               json=[{'recipient_id': r1, 'percentage': '100'}])
        assert response.status_code == 200
        assert response.get_json()['is_complete'] is True

        response = client.post(f'/api/assets/{asset_id}/allocations/validate', headers=headers,
                               json=[{'recipient_id': r1, 'percentage': 99}])
        assert response.status_code == 422

        loaded = client.get(f'/api/assets/{asset_id}/allocations', headers=headers).get_json()
        assert loaded['allocations'] == []

    def test_remove_recipient_returns_unsaved_buffer(self, client, headers):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')
        r2 = create_recipient(client, headers, 'Bob')
        client.put(f'/api/assets/{asset_id}/allocations', headers=headers, json=[
            {'recipient_id': r1, 'percentage': 60}, {'recipient_id': r2, 'percentage': 40}
        ])

        response = client.post(f'/api/assets/{asset_id}/allocations/remove-recipient', headers=headers,
                               json={'recipient_id': r1})
        data = response.get_json()
        assert response.status_code == 200
        assert data['saved'] is False
        assert data['total'] == 40.0
        assert data['is_complete'] is False

        loaded = client.get(f'/api/assets/{asset_id}/allocations', headers=headers).get_json()
        assert loaded['total'] == 100.0

    def test_remove_recipient_requires_object_body(self, client, headers):
        asset_id = create_asset(client, headers)
        for body in (['r1'], {}, {'recipient_id': ''}):
            response = client.post(f'/api/assets/{asset_id}/allocations/remove-recipient',
                                   headers=headers, json=body)
            assert response.status_code == 422
            assert response.get_json()['errors'][0]['field'] == 'recipient_id'

    def test_unknown_recipient_returns_404(self, client, headers):
        asset_id = create_asset(client, headers)
        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers,
                              json=[{'recipient_id': 'ghost', 'percentage': 100}])
        assert response.status_code == 404

    def test_persistence_failure_returns_503_with_refetch(self, client, headers, monkeypatch):
        asset_id = create_asset(client, headers)
        r1 = create_recipient(client, headers, 'Alice')

        def failing_commit(owner_id, asset_id, rows):
            raise PersistenceFailure('Failed to save allocations', resource_id=asset_id)

        monkeypatch.setattr('legacyvault.routes.commit_set', failing_commit)
        response = client.put(f'/api/assets/{asset_id}/allocations', headers=headers,
                              json=[{'recipient_id': r1, 'percentage': 100}])
        assert response.status_code == 503
        data = response.get_json()
        assert data['refetch'] is True
        assert data['resource_id'] == asset_id


class TestWillEndpoints:
    def test_save_then_update(self, client, headers):
        response = client.put('/api/wills/text', json={'content': 'v1'}, headers=headers)
        assert response.status_code == 201
        will = response.get_json()['will']
        assert will['status'] == 'in_progress'

        response = client.put('/api/wills/text', json={'content': 'v2'}, headers=headers)
        assert response.status_code == 200
        assert response.get_json()['will']['id'] == will['id']

        response = client.get('/api/wills/text', headers=headers)
        assert response.get_json()['will']['content'] == 'v2'
        assert len(client.get('/api/wills', headers=headers).get_json()['wills']) == 1

    def test_free_text_is_stored_verbatim(self, client, headers):
        content = 'My sons = equal heirs; if x <3 and y > 2 then split.'
        transcript = '  Split it onward = fairly <see note>  '
        response = client.put('/api/wills/text', headers=headers,
                              json={'content': content, 'transcript': transcript})
        assert response.status_code == 201

        will = client.get('/api/wills/text', headers=headers).get_json()['will']
        assert will['content'] == content
        assert will['transcript'] == transcript

    def test_unknown_type(self, client, headers):
        assert client.put('/api/wills/hologram', json={'content': 'x'}, headers=headers).status_code == 422
        assert client.get('/api/wills/hologram', headers=headers).status_code == 404
        assert client.get('/api/wills/audio', headers=headers).status_code == 404

    def test_review_then_finalize(self, client, headers, smtp):
        create_recipient(client, headers, 'Alice', 'alice@example.com')
        create_recipient(client, headers, 'Bob')
        will_id = client.put('/api/wills/chat', json={'content': 'x'}, headers=headers).get_json()['will']['id']

        response = client.post(f'/api/wills/{will_id}/review', headers=headers)
        assert response.get_json()['will']['status'] == 'review'

        response = client.post(f'/api/wills/{will_id}/finalize', headers=headers,
                               json={'acknowledged': True, 'owner_name': 'Carol Owner'})
        assert response.status_code == 200
        data = response.get_json()
        assert data['will']['status'] == 'completed'
        assert data['notifications']['sent'] == 1
        assert data['notifications']['total'] == 1
        assert data['warning'] is None

        response = client.post(f'/api/wills/{will_id}/review', headers=headers)
        assert response.status_code == 422
        assert response.get_json()['errors'][0]['code'] == 'invalid_status_transition'

    def test_finalize_requires_acknowledgement(self, client, headers, smtp):
        will_id = client.put('/api/wills/text', json={'content': 'x'}, headers=headers).get_json()['will']['id']
        for body in ({}, {'acknowledged': False}, {'acknowledged': 'yes'}):
            response = client.post(f'/api/wills/{will_id}/finalize', headers=headers, json=body)
            assert response.status_code == 422
            assert response.get_json()['errors'][0]['code'] == 'acknowledgement_required'

    def test_finalize_reports_failed_emails_as_warning(self, client, headers, smtp):
        create_recipient(client, headers, 'Alice', 'alice@example.com')
        smtp.fail_for = {'alice@example.com'}
        will_id = client.put('/api/wills/text', json={'content': 'x'}, headers=headers).get_json()['will']['id']

        response = client.post(f'/api/wills/{will_id}/finalize', headers=headers, json={'acknowledged': True})
        assert response.status_code == 200
        data = response.get_json()
        assert data['will']['status'] == 'completed'
        assert data['warning']['code'] == 'notification_partial_failure'
        assert data['warning']['sent'] == 0
        assert data['warning']['total'] == 1

    def test_owner_name_from_gateway_header(self, client, headers, smtp):
        create_recipient(client, headers, 'Alice', 'alice@example.com')
        will_id = client.put('/api/wills/text', json={'content': 'x'}, headers=headers).get_json()['will']['id']
        client.post(f'/api/wills/{will_id}/finalize', json={'acknowledged': True},
                    headers={**headers, 'X-User-Name': 'Dana Owner'})
        assert smtp.sent[0]['Subject'] == "Important: You've been named in Dana Owner's Digital Will"

    def test_finalize_unknown_will(self, client, headers, smtp):
        response = client.post('/api/wills/nope/finalize', headers=headers, json={'acknowledged': True})
        assert response.status_code == 404


class TestReviewEndpoint:
    def test_review_summary(self, client, headers):
        create_asset(client, headers)
        response = client.get('/api/review', headers=headers)
        assert response.status_code == 200
        review = response.get_json()['review']
        assert review['can_finalize'] is False
        assert {s['key'] for s in review['sections']} == {'will', 'assets', 'recipients'}
