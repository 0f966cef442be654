"""Shared fixtures for the validation engine tests."""

from datetime import datetime, timedelta

import pytest

from config import TestConfig
from tontine import create_app
from tontine.extensions import db
from tontine.models import User, Group
from tontine.services.identity_service import principal_for
from tontine.services.notification_service import NotificationEvent, NotificationResult
from tontine.services.validation_service import ValidationWorkflow

START = datetime(2026, 1, 5, 9, 0, 0)
REASON = "Member asked to close the account"


class FixedClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start=START):
        self.current = start

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)
        return self.current


class RecordingNotifier:
    """Keeps every notification, including plaintext codes."""

    channel = 'recording'

    def __init__(self):
        self.sent = []

    def notify(self, principal, event, payload):
        self.sent.append((principal, event, dict(payload)))
        return NotificationResult(True, self.channel, None)

    def events_for(self, principal_id):
        return [event for principal, event, _ in self.sent if principal.id == principal_id]

    def code_for(self, principal_id):
        """Latest code delivered to a principal."""
        for principal, event, payload in reversed(self.sent):
            if principal.id == principal_id and event is NotificationEvent.CODE_ISSUED:
                return payload['code']
        return None


class RecordingAudit:

    def __init__(self):
        self.records = []

    def record(self, principal, action, resource_ref, outcome, details=None):
        self.records.append({
            'actor': principal,
            'action': action,
            'resource_ref': resource_ref,
            'outcome': outcome,
            'details': details,
        })

    def actions(self):
        return [r['action'] for r in self.records]


def wrong_code(code):
    return '000000' if code != '000000' else '111111'


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def workflow(notifier, audit, clock):
    return ValidationWorkflow(notifier=notifier, audit=audit, clock=clock)


@pytest.fixture
def app(workflow):
    app = create_app(TestConfig, workflow=workflow)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture
def make_user(app):
    """Factory for users; call it inside an app context."""
    def _make(name, role, email=None, password='secret123', **fields):
        user = User(name=name, email=email or f"{name.lower()}@example.com", role=role, **fields)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def admin(ctx, make_user):
    return principal_for(make_user('Awa', 'Admin'))


@pytest.fixture
def treasurer(ctx, make_user):
    return principal_for(make_user('Ibrahima', 'Tresorier'))


@pytest.fixture
def member_user(ctx, make_user):
    return make_user('Moussa', 'Membre', phone='+221770000000')


@pytest.fixture
def member(member_user):
    return principal_for(member_user)


@pytest.fixture
def group(ctx, admin):
    group = Group(name='Tontine des Amis', created_by=admin.id)
    db.session.add(group)
    db.session.commit()
    return group


@pytest.fixture
def open_request(workflow, admin, treasurer):
    """Open a request as the admin and return it."""
    def _open(action_type, resource_id, reason=REASON, **kwargs):
        result = workflow.create(action_type, resource_id, admin, reason, **kwargs)
        assert result.ok, result.message
        return result.request
    return _open


@pytest.fixture
def approve(workflow, notifier, admin, treasurer):
    """Run both approval steps on an open request."""
    def _approve(request):
        first = workflow.verify_party(request.id, admin, notifier.code_for(admin.id))
        assert first.ok, first.message
        second = workflow.verify_party(request.id, treasurer, notifier.code_for(treasurer.id))
        assert second.ok, second.message
        return second.request
    return _approve
