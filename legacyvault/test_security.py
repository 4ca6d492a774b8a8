"""
Security Tests

Tests for security features:
- Input sanitization
- Owner identification
- Security headers
- CSRF exemption of the JSON API
"""

import unittest

from legacyvault.security import parse_owner_id, sanitize_string, sanitize_payload


class TestInputSanitization(unittest.TestCase):
    """Test input sanitization functions."""

    def test_sanitize_string_removes_dangerous_chars(self):
        """Test that dangerous characters are removed."""
        dangerous = '<script>alert("xss")</script>'
        sanitized = sanitize_string(dangerous)
        self.assertNotIn('<', sanitized)
        self.assertNotIn('>', sanitized)

    def test_sanitize_string_preserves_safe_text(self):
        """Test that safe text is preserved."""
        safe = 'John O\'Connor-Smith'
        sanitized = sanitize_string(safe)
        self.assertEqual(sanitized, safe)

    def test_sanitize_string_handles_unicode(self):
        """Test handling of unicode characters."""
        unicode_text = 'José García-Müller'
        sanitized = sanitize_string(unicode_text)
        self.assertEqual(sanitized, unicode_text)

    def test_sanitize_string_trims_whitespace(self):
        """Test that whitespace is trimmed."""
        self.assertEqual(sanitize_string('  John Smith  '), 'John Smith')

    def test_sanitize_string_empty_input(self):
        """Test handling of empty input."""
        self.assertEqual(sanitize_string(''), '')
        self.assertEqual(sanitize_string(None), '')

    def test_sanitize_payload_nested(self):
        """Test sanitization of allocation lists inside a payload."""
        payload = {
            'allocations': [
                {'recipient_id': '<b>r1</b>', 'percentage': 60, 'notes': '<img src=x onerror=alert(1)>'},
                {'recipient_id': 'r2', 'percentage': '40'},
            ],
            'acknowledged': True,
        }

        sanitized = sanitize_payload(payload)

        self.assertEqual(sanitized['allocations'][0]['recipient_id'], 'r1')
        self.assertNotIn('<', sanitized['allocations'][0]['notes'])
        self.assertEqual(sanitized['allocations'][0]['percentage'], 60)
        self.assertEqual(sanitized['allocations'][1]['percentage'], '40')
        self.assertIs(sanitized['acknowledged'], True)

    def test_sanitize_payload_preserves_types(self):
        """Test that non-string types are preserved."""
        payload = {
            'string': 'test',
            'integer': 42,
            'float': 3.14,
            'boolean': True,
            'null': None,
            'list': [1, 2, 3]
        }

        sanitized = sanitize_payload(payload)

        self.assertEqual(sanitized['string'], 'test')
        self.assertEqual(sanitized['integer'], 42)
        self.assertEqual(sanitized['float'], 3.14)
        self.assertEqual(sanitized['boolean'], True)
        self.assertIsNone(sanitized['null'])
        self.assertEqual(sanitized['list'], [1, 2, 3])

    def test_sanitize_top_level_list(self):
        self.assertEqual(sanitize_payload(['<i>a</i>', 1]), ['a', 1])

    def test_sanitize_payload_preserves_named_keys(self):
        text = 'My sons = equal heirs; if x <3 and y > 2 then split.'
        sanitized = sanitize_payload({'content': text, 'title': '<b>Will</b>'}, preserve=('content',))
        self.assertEqual(sanitized['content'], text)
        self.assertEqual(sanitized['title'], 'Will')


class TestOwnerIdParsing(unittest.TestCase):
    def test_accepts_typical_ids(self):
        self.assertEqual(parse_owner_id('3f2b8c1e-9d4a-4c1b-8e2f-0a1b2c3d4e5f'),
                         '3f2b8c1e-9d4a-4c1b-8e2f-0a1b2c3d4e5f')
        self.assertEqual(parse_owner_id('auth0|12345'), 'auth0|12345')
        self.assertEqual(parse_owner_id('  user-1 '), 'user-1')

    def test_rejects_missing_or_malformed(self):
        self.assertIsNone(parse_owner_id(None))
        self.assertIsNone(parse_owner_id(''))
        self.assertIsNone(parse_owner_id('   '))
        self.assertIsNone(parse_owner_id('user 1'))
        self.assertIsNone(parse_owner_id('<script>'))
        self.assertIsNone(parse_owner_id('a' * 129))


class TestRequestSecurity:
    def test_missing_owner_header_is_unauthorized(self, client):
        response = client.get('/api/assets')
        assert response.status_code == 401
        data = response.get_json()
        assert data['ok'] is False
        assert data['errors'][0]['code'] == 'unauthenticated'

    def test_security_headers_present(self, client, headers):
        response = client.get('/api/assets', headers=headers)
        assert response.headers['X-Content-Type-Options'] == 'nosniff'
        assert response.headers['X-Frame-Options'] == 'DENY'
        assert response.headers['Cache-Control'] == 'no-store'

    def test_api_is_csrf_exempt(self, app, headers):
        app.config['WTF_CSRF_ENABLED'] = True
        response = app.test_client().post('/api/recipients', json={'full_name': 'Alice'}, headers=headers)
        assert response.status_code == 201

    def test_posted_html_is_stripped(self, client, headers):
        response = client.post('/api/recipients', headers=headers, json={
            'full_name': '<script>alert(1)</script>Alice <b>Example</b>'
        })
        assert response.status_code == 201
        assert response.get_json()['recipient']['full_name'] == 'Alice Example'


if __name__ == '__main__':
    unittest.main()
