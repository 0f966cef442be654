"""Tests for the JSON endpoints."""

import pytest

from conftest import REASON, wrong_code
from tontine.extensions import db
from tontine.models import Group, GroupStatus, User

PASSWORD = 'secret123'


@pytest.fixture
def accounts(app, make_user):
    with app.app_context():
        admin = make_user('Awa', 'Admin', password=PASSWORD)
        treasurer = make_user('Ibrahima', 'Tresorier', password=PASSWORD)
        member = make_user('Moussa', 'Membre', password=PASSWORD)
        group = Group(name='Tontine des Amis', created_by=admin.id)
        db.session.add(group)
        db.session.commit()
        return {
            'admin': admin.id,
            'treasurer': treasurer.id,
            'member': member.id,
            'group': group.id,
        }


@pytest.fixture
def login(app, accounts):
    """Return a test client logged in as the given account."""
    emails = {
        'admin': 'awa@example.com',
        'treasurer': 'ibrahima@example.com',
        'member': 'moussa@example.com',
    }

    def _login(who):
        client = app.test_client()
        response = client.post('/auth/login', json={'email': emails[who], 'password': PASSWORD})
        assert response.status_code == 200
        return client
    return _login


def open_block_request(client, group_id):
    response = client.post('/validations', json={
        'action_type': 'block-group',
        'resource_id': group_id,
        'reason': REASON,
    })
    assert response.status_code == 201
    return response.get_json()['request']['id']


class TestAuth:

    def test_bad_password(self, app, accounts):
        response = app.test_client().post('/auth/login', json={
            'email': 'awa@example.com', 'password': 'wrong'
        })
        assert response.status_code == 401

    def test_role_is_normalized(self, login):
        response = login('treasurer').get('/auth/me')
        assert response.get_json()['role'] == 'treasurer'

    def test_login_required(self, app, accounts):
        response = app.test_client().post('/validations', json={})
        assert response.status_code == 401

    def test_deactivated_session_is_dropped(self, app, login, accounts):
        client = login('member')
        with app.app_context():
            db.session.get(User, accounts['member']).is_active = False
            db.session.commit()

        assert client.get('/auth/me').status_code == 401


class TestValidationEndpoints:

    def test_full_flow(self, login, notifier, accounts, app):
        admin, treasurer = login('admin'), login('treasurer')
        request_id = open_block_request(admin, accounts['group'])

        response = admin.post(f'/validations/{request_id}/verify',
                              json={'code': notifier.code_for(accounts['admin'])})
        assert response.status_code == 200
        assert response.get_json()['request']['status'] == 'stage1_verified'

        response = treasurer.post(f'/validations/{request_id}/verify',
                                  json={'code': notifier.code_for(accounts['treasurer'])})
        assert response.get_json()['request']['status'] == 'completed'

        response = admin.post(f"/admin/groups/{accounts['group']}/block",
                              json={'validation_request_id': request_id})
        assert response.status_code == 200
        assert response.get_json()['request']['consumed'] is True

        response = admin.post(f"/admin/groups/{accounts['group']}/block",
                              json={'validation_request_id': request_id})
        assert response.status_code == 409
        assert response.get_json()['outcome'] == 'already_consumed'

        with app.app_context():
            assert db.session.get(Group, accounts['group']).status == GroupStatus.BLOCKED.value

    def test_wrong_code_reports_attempts(self, login, notifier, accounts):
        admin = login('admin')
        request_id = open_block_request(admin, accounts['group'])
        code = notifier.code_for(accounts['admin'])

        response = admin.post(f'/validations/{request_id}/verify', json={'code': wrong_code(code)})
        assert response.status_code == 400
        assert response.get_json()['attempts_remaining'] == 2

    def test_duplicate(self, login, accounts):
        admin = login('admin')
        open_block_request(admin, accounts['group'])

        response = admin.post('/validations', json={
            'action_type': 'block-group', 'resource_id': accounts['group'], 'reason': REASON,
        })
        assert response.status_code == 409
        assert response.get_json()['outcome'] == 'duplicate_pending'

    def test_bad_resource_id(self, login):
        response = login('admin').post('/validations', json={
            'action_type': 'block-group', 'resource_id': 'abc', 'reason': REASON,
        })
        assert response.status_code == 400

    def test_member_cannot_create(self, login, accounts):
        response = login('member').post('/validations', json={
            'action_type': 'block-group', 'resource_id': accounts['group'], 'reason': REASON,
        })
        assert response.status_code == 403

    def test_reject(self, login, accounts):
        request_id = open_block_request(login('admin'), accounts['group'])

        response = login('treasurer').post(f'/validations/{request_id}/reject',
                                           json={'reason': 'not legitimate'})
        assert response.status_code == 200
        assert response.get_json()['request']['status'] == 'rejected'

    def test_resend(self, login, notifier, accounts):
        admin = login('admin')
        request_id = open_block_request(admin, accounts['group'])

        response = admin.post(f'/validations/{request_id}/resend')
        assert response.status_code == 200
        assert response.get_json()['attempts_remaining'] == 3

    def test_expired_is_gone(self, login, notifier, clock, accounts):
        admin = login('admin')
        request_id = open_block_request(admin, accounts['group'])
        clock.advance(minutes=16)

        response = admin.post(f'/validations/{request_id}/verify',
                              json={'code': notifier.code_for(accounts['admin'])})
        assert response.status_code == 410

    def test_details_and_lists(self, login, accounts):
        admin, treasurer, member = login('admin'), login('treasurer'), login('member')
        request_id = open_block_request(admin, accounts['group'])

        assert admin.get(f'/validations/{request_id}').status_code == 200
        assert member.get(f'/validations/{request_id}').status_code == 403
        assert admin.get('/validations/999').status_code == 404

        pending = treasurer.get('/validations/pending').get_json()
        assert [r['id'] for r in pending['requests']] == [request_id]

        mine = admin.get('/validations/mine?status=pending').get_json()
        assert mine['total'] == 1

    def test_stats(self, login, accounts):
        admin = login('admin')
        open_block_request(admin, accounts['group'])

        assert admin.get('/validations/stats').get_json()['pending'] == 1
        assert login('member').get('/validations/stats').status_code == 403
        assert admin.get('/validations/stats?since=yesterday').status_code == 400


class TestAdminEndpoints:

    def test_requires_validation_request(self, login, accounts):
        response = login('admin').post(f"/admin/groups/{accounts['group']}/block", json={})
        assert response.status_code == 400

    def test_unknown_action(self, login, accounts):
        response = login('admin').post(f"/admin/accounts/{accounts['member']}/promote",
                                       json={'validation_request_id': 1})
        assert response.status_code == 404

    def test_pending_request_does_not_authorize(self, login, accounts):
        admin = login('admin')
        request_id = open_block_request(admin, accounts['group'])

        response = admin.post(f"/admin/groups/{accounts['group']}/block",
                              json={'validation_request_id': request_id})
        assert response.status_code == 409
        assert response.get_json()['outcome'] == 'wrong_state'

    def test_request_for_other_action(self, login, notifier, accounts):
        admin, treasurer = login('admin'), login('treasurer')
        request_id = open_block_request(admin, accounts['group'])
        admin.post(f'/validations/{request_id}/verify',
                   json={'code': notifier.code_for(accounts['admin'])})
        treasurer.post(f'/validations/{request_id}/verify',
                       json={'code': notifier.code_for(accounts['treasurer'])})

        response = admin.post(f"/admin/groups/{accounts['group']}/delete",
                              json={'validation_request_id': request_id})
        assert response.status_code == 403

    def test_impossible_action(self, login, notifier, accounts):
        admin, treasurer = login('admin'), login('treasurer')
        response = admin.post('/validations', json={
            'action_type': 'unblock-group', 'resource_id': accounts['group'], 'reason': REASON,
        })
        request_id = response.get_json()['request']['id']
        admin.post(f'/validations/{request_id}/verify',
                   json={'code': notifier.code_for(accounts['admin'])})
        treasurer.post(f'/validations/{request_id}/verify',
                       json={'code': notifier.code_for(accounts['treasurer'])})

        response = admin.post(f"/admin/groups/{accounts['group']}/unblock",
                              json={'validation_request_id': request_id})
        assert response.status_code == 422


class TestCli:

    def test_expire_validations(self, app, login, clock, accounts):
        open_block_request(login('admin'), accounts['group'])
        clock.advance(hours=25)

        result = app.test_cli_runner().invoke(args=['expire-validations'])
        assert 'Expired 1 validation request(s)' in result.output

        result = app.test_cli_runner().invoke(args=['expire-validations'])
        assert 'Expired 0 validation request(s)' in result.output
