from __future__ import annotations

import time
from unittest.mock import MagicMock, patch

from sqlalchemy import select

from coatcheck.config import settings
from coatcheck.models import AuthEvent, User
from coatcheck.security.oidc import TokenSet
from coatcheck.security.passwords import hash_password
from coatcheck.security.sessions import DatabaseSessionStore
from coatcheck.services.auth_service import LoginFailed, authenticate_local
from coatcheck.services.user_service import ensure_local_admin, upsert_federated_user
from tests.support import ApiTestCase, DatabaseTestCase


class LocalLoginTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.user = self.add_user('manager', username='Sam', password_hash=hash_password('correct horse'))

    def test_success_sets_cookie_and_regenerates_session(self) -> None:
        old_token = self.store_session({'kind': 'oidc_pending', 'state': 's', 'nonce': 'n'})

        response = self.client.post('/api/login', json={'username': 'sam', 'password': 'correct horse'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['user']['level'], 'manager')
        new_token = response.cookies.get(settings.session_cookie_name)
        self.assertTrue(new_token)
        self.assertNotEqual(new_token, old_token)
        self.db.expire_all()
        self.assertIsNone(DatabaseSessionStore(self.db).get(old_token))
        self.use_token(new_token)
        self.assertEqual(self.client.get('/api/dashboard').status_code, 200)

    def test_session_cookie_attributes(self) -> None:
        response = self.client.post('/api/login', json={'username': 'sam', 'password': 'correct horse'})

        cookie = response.headers['set-cookie']
        attributes = [part.strip().lower() for part in cookie.split(';')]
        self.assertTrue(cookie.startswith(f'{settings.session_cookie_name}='))
        self.assertIn('httponly', attributes)
        self.assertIn('samesite=lax', attributes)
        self.assertIn('max-age=604800', attributes)
        self.assertNotIn('secure', attributes)

    def test_session_cookie_is_secure_in_production(self) -> None:
        with patch.object(settings, 'environment', 'production'):
            response = self.client.post('/api/login', json={'username': 'sam', 'password': 'correct horse'})

        self.assertEqual(response.status_code, 200)
        attributes = [part.strip().lower() for part in response.headers['set-cookie'].split(';')]
        self.assertIn('secure', attributes)
        self.assertIn('httponly', attributes)

    def test_bad_password_and_unknown_user_share_message(self) -> None:
        bad = self.client.post('/api/login', json={'username': 'sam', 'password': 'wrong'})
        unknown = self.client.post('/api/login', json={'username': 'nobody', 'password': 'wrong'})

        self.assertEqual(bad.status_code, 401)
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(bad.json()['detail'], 'Invalid username or password')
        self.assertEqual(unknown.json()['detail'], 'Invalid username or password')
        self.db.expire_all()
        reasons = self.db.execute(select(AuthEvent.failure_reason).order_by(AuthEvent.id)).scalars().all()
        self.assertEqual(reasons, ['BAD_PASSWORD', 'UNKNOWN_USERNAME'])

    def test_internal_failure_is_a_server_error(self) -> None:
        with patch('coatcheck.services.auth_service.find_user_by_username', side_effect=RuntimeError('db down')):
            response = self.client.post('/api/login', json={'username': 'sam', 'password': 'correct horse'})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['detail'], 'Authentication error')

    def test_validation_errors_do_not_echo_secrets(self) -> None:
        response = self.client.post('/api/login', json={'username': 'sam'})

        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body['detail'], 'Invalid request')
        self.assertEqual(body['errors'], [{'field': 'password', 'message': 'Invalid value'}])

    def test_logout_destroys_session(self) -> None:
        self.client.post('/api/login', json={'username': 'sam', 'password': 'correct horse'})

        response = self.client.post('/api/logout')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get('/api/user').status_code, 401)


class LocalAdminLoginTests(ApiTestCase):
    def test_backdoor_login(self) -> None:
        ensure_local_admin(self.db, None)
        self.db.commit()

        with patch.object(settings, 'local_admin_password', 's3cret-pass'):
            response = self.client.post('/api/login/admin', json={'username': 'ADMIN', 'password': 's3cret-pass'})

        self.assertEqual(response.status_code, 200)
        me = self.client.get('/api/user').json()
        self.assertEqual(me['id'], 'local-admin')
        self.assertEqual(me['level'], 'local-admin')
        self.assertTrue(me['isLocalAdmin'])

    def test_wrong_password(self) -> None:
        ensure_local_admin(self.db, None)
        self.db.commit()

        with patch.object(settings, 'local_admin_password', 's3cret-pass'):
            response = self.client.post('/api/login/admin', json={'username': 'admin', 'password': 'guess'})

        self.assertEqual(response.status_code, 401)

    def test_missing_row_is_reported(self) -> None:
        with patch.object(settings, 'local_admin_password', 's3cret-pass'):
            response = self.client.post('/api/login/admin', json={'username': 'admin', 'password': 's3cret-pass'})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['detail'], 'Local admin not configured')

    def test_expired_backdoor_session_is_not_refreshed(self) -> None:
        admin, _ = ensure_local_admin(self.db, None)
        self.db.commit()
        self.store_session(
            {
                'kind': 'federated',
                'claims': {'sub': admin.id},
                'is_local_admin': True,
                'role': 'admin',
                'level': 'local-admin',
                'expires_at': int(time.time()) - 5,
                'refresh_token': None,
            }
        )

        response = self.client.get('/api/user')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['detail'], 'Session expired')


class FederatedSessionTests(ApiTestCase):
    def _expired_session(self, refresh_token: str | None) -> str:
        user = upsert_federated_user(self.db, {'sub': 'oidc|42', 'email': 'pat@example.com'})
        user.role = 'manager'
        self.db.commit()
        return self.store_session(
            {
                'kind': 'federated',
                'claims': {'sub': 'oidc|42', 'email': 'pat@example.com'},
                'is_local_admin': False,
                'role': 'manager',
                'level': 'manager',
                'expires_at': int(time.time()) - 5,
                'access_token': 'old-access',
                'refresh_token': refresh_token,
            }
        )

    def test_expired_session_is_refreshed(self) -> None:
        token = self._expired_session('refresh-1')
        client = MagicMock()
        client.refresh.return_value = TokenSet(access_token='new-access', refresh_token=None, expires_at=int(time.time()) + 3600)

        with patch('coatcheck.auth.get_oidc_client', return_value=client):
            response = self.client.get('/api/user')

        self.assertEqual(response.status_code, 200)
        client.refresh.assert_called_once_with('refresh-1')
        self.db.expire_all()
        stored = DatabaseSessionStore(self.db).get(token)
        self.assertEqual(stored['access_token'], 'new-access')
        self.assertEqual(stored['refresh_token'], 'refresh-1')

    def test_missing_refresh_token_is_unauthorized(self) -> None:
        self._expired_session(None)

        with patch('coatcheck.auth.get_oidc_client', return_value=MagicMock()):
            response = self.client.get('/api/user')

        self.assertEqual(response.status_code, 401)

    def test_refresh_failure_is_unauthorized(self) -> None:
        self._expired_session('refresh-1')
        client = MagicMock()
        client.refresh.side_effect = ValueError('OIDC token refresh failed with 400')

        with patch('coatcheck.auth.get_oidc_client', return_value=client):
            response = self.client.get('/api/user')

        self.assertEqual(response.status_code, 401)


class FederatedUserTests(DatabaseTestCase):
    def test_new_users_start_read_only_and_keep_role_on_relogin(self) -> None:
        user = upsert_federated_user(self.db, {'sub': 'oidc|7', 'email': 'a@example.com', 'first_name': 'Ann'})
        self.assertEqual(user.role, 'read-only')
        user.role = 'employee'
        self.db.commit()

        again = upsert_federated_user(self.db, {'sub': 'oidc|7', 'email': 'ann@example.com', 'first_name': 'Ann'})

        self.assertEqual(again.role, 'employee')
        self.assertEqual(again.email, 'ann@example.com')

    def test_local_password_check_without_hash_fails(self) -> None:
        upsert_federated_user(self.db, {'sub': 'oidc|8'})
        user = self.db.get(User, 'oidc|8')
        user.username = 'fed'
        self.db.commit()

        with self.assertRaises(LoginFailed) as ctx:
            authenticate_local(self.db, 'fed', 'anything')

        self.assertEqual(str(ctx.exception), 'Invalid username or password')


class OidcCallbackTests(ApiTestCase):
    def test_callback_rejects_state_mismatch(self) -> None:
        self.store_session({'kind': 'oidc_pending', 'state': 'expected', 'nonce': 'n'})

        with patch('coatcheck.routers.auth.get_oidc_client', return_value=MagicMock()):
            response = self.client.get('/api/callback', params={'code': 'c', 'state': 'other'}, follow_redirects=False)

        self.assertEqual(response.status_code, 401)

    def test_callback_creates_user_and_session(self) -> None:
        old_token = self.store_session({'kind': 'oidc_pending', 'state': 'expected', 'nonce': 'n'})
        client = MagicMock()
        client.exchange_code.return_value = TokenSet(
            access_token='access', refresh_token='refresh', expires_at=int(time.time()) + 3600
        )
        client.userinfo.return_value = {'sub': 'oidc|9', 'email': 'kim@example.com', 'given_name': 'Kim'}

        with patch('coatcheck.routers.auth.get_oidc_client', return_value=client):
            response = self.client.get(
                '/api/callback', params={'code': 'c', 'state': 'expected'}, follow_redirects=False
            )

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response.headers['location'], '/')
        new_token = response.cookies.get(settings.session_cookie_name)
        self.assertNotEqual(new_token, old_token)
        self.db.expire_all()
        user = self.db.get(User, 'oidc|9')
        self.assertEqual(user.role, 'read-only')
        self.assertEqual(user.first_name, 'Kim')
        self.use_token(new_token)
        me = self.client.get('/api/user').json()
        self.assertEqual(me['level'], 'read-only')
