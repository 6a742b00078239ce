from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from coatcheck.models import WebSession
from coatcheck.security.sessions import DatabaseSessionStore, MemorySessionStore, session_key
from tests.support import DatabaseTestCase


class MemorySessionStoreTests(unittest.TestCase):
    def test_set_get_destroy(self) -> None:
        store = MemorySessionStore()
        store.set('tok', {'kind': 'local', 'id': 'u1'})

        self.assertEqual(store.get('tok'), {'kind': 'local', 'id': 'u1'})
        store.destroy('tok')
        self.assertIsNone(store.get('tok'))

    def test_returned_payload_is_a_copy(self) -> None:
        store = MemorySessionStore()
        store.set('tok', {'claims': {'sub': 'a'}})

        store.get('tok')['claims']['sub'] = 'b'

        self.assertEqual(store.get('tok'), {'claims': {'sub': 'a'}})

    def test_expired_sessions_are_dropped(self) -> None:
        store = MemorySessionStore()
        store.set('tok', {'kind': 'local'}, expires_at=datetime.now(tz=timezone.utc) - timedelta(seconds=1))

        self.assertIsNone(store.get('tok'))
        self.assertEqual(len(store), 0)

    def test_regenerate_issues_new_token(self) -> None:
        store = MemorySessionStore()
        store.set('old', {'kind': 'oidc_pending'})

        token = store.regenerate('old', {'kind': 'local', 'id': 'u1'})

        self.assertNotEqual(token, 'old')
        self.assertIsNone(store.get('old'))
        self.assertEqual(store.get(token), {'kind': 'local', 'id': 'u1'})


class DatabaseSessionStoreTests(DatabaseTestCase):
    def test_stores_hmac_of_token_not_token(self) -> None:
        store = DatabaseSessionStore(self.db, ip='10.0.0.1', user_agent='tests')
        store.set('plain-token', {'kind': 'local', 'id': 'u1'})
        self.db.commit()

        row = self.db.execute(select(WebSession)).scalar_one()
        self.assertEqual(row.sid, session_key('plain-token'))
        self.assertNotEqual(row.sid, 'plain-token')
        self.assertEqual(row.ip, '10.0.0.1')
        self.assertEqual(store.get('plain-token'), {'kind': 'local', 'id': 'u1'})

    def test_default_expiry_is_seven_days(self) -> None:
        store = DatabaseSessionStore(self.db)
        store.set('tok', {'kind': 'local'})
        row = self.db.execute(select(WebSession)).scalar_one()

        expire = row.expire if row.expire.tzinfo else row.expire.replace(tzinfo=timezone.utc)
        remaining = expire - datetime.now(tz=timezone.utc)
        self.assertGreater(remaining, timedelta(days=6, hours=23))
        self.assertLessEqual(remaining, timedelta(days=7))

    def test_expired_rows_are_removed_on_read(self) -> None:
        store = DatabaseSessionStore(self.db)
        store.set('tok', {'kind': 'local'}, expires_at=datetime.now(tz=timezone.utc) - timedelta(minutes=1))

        self.assertIsNone(store.get('tok'))
        self.assertEqual(self.db.execute(select(WebSession)).scalars().all(), [])

    def test_regenerate_and_purge(self) -> None:
        store = DatabaseSessionStore(self.db)
        store.set('old', {'kind': 'oidc_pending'})
        store.set('stale', {'kind': 'local'}, expires_at=datetime.now(tz=timezone.utc) - timedelta(days=1))

        token = store.regenerate('old', {'kind': 'local', 'id': 'u1'})
        purged = store.purge_expired()

        self.assertIsNone(store.get('old'))
        self.assertEqual(store.get(token)['id'], 'u1')
        self.assertEqual(purged, 1)


if __name__ == '__main__':
    unittest.main()
