"""
Shared pytest fixtures: an app on in-memory SQLite and a fake SMTP server.
"""

import smtplib

import pytest

from legacyvault import create_app, db, store


OWNER_ID = 'owner-1'
OTHER_OWNER_ID = 'owner-2'


class FakeSMTP:
    """Stands in for smtplib.SMTP and records every message sent."""
    sent = []
    fail_for = set()

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        if msg['To'] in self.fail_for:
            raise smtplib.SMTPRecipientsRefused({msg['To']: (550, b'mailbox unavailable')})
        self.sent.append(msg)


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'WTF_CSRF_ENABLED': False,
        'RATELIMIT_ENABLED': False,
        'SMTP_HOST': 'smtp.test.local',
        'SMTP_PORT': 2525,
        'SMTP_USE_TLS': False,
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def headers():
    return {'X-User-Id': OWNER_ID}


@pytest.fixture
def other_headers():
    return {'X-User-Id': OTHER_OWNER_ID}


@pytest.fixture
def smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_for = set()
    monkeypatch.setattr(smtplib, 'SMTP', FakeSMTP)
    return FakeSMTP


@pytest.fixture
def asset(app):
    return store.create_asset(OWNER_ID, {
        'name': 'Family Home',
        'category': 'property',
        'estimated_value': 450000,
        'currency': 'USD',
    })


@pytest.fixture
def recipients(app):
    alice = store.create_recipient(OWNER_ID, {
        'full_name': 'Alice Example', 'email': 'alice@example.com', 'relationship': 'Daughter'
    })
    bob = store.create_recipient(OWNER_ID, {
        'full_name': 'Bob Example', 'relationship': 'Son'
    })
    return alice, bob
