from __future__ import annotations

import unittest
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coatcheck.config import settings
from coatcheck.db import get_db
from coatcheck.main import app
from coatcheck.models import Base, Service, User
from coatcheck.security.sessions import DatabaseSessionStore, new_session_token
from coatcheck.services.auth_service import local_session_payload


def make_session_factory():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return engine, sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class DatabaseTestCase(unittest.TestCase):
    """In-memory SQLite database shared by the test and any requests it makes."""

    def setUp(self) -> None:
        self.engine, self.session_factory = make_session_factory()
        self.db = self.session_factory()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def add_service(self, service_id: str, name: str, price: str, category: str = 'powder') -> Service:
        service = Service(id=service_id, name=name, category=category, price=Decimal(price))
        self.db.add(service)
        self.db.commit()
        return service

    def add_user(
        self,
        role: str = 'admin',
        *,
        user_id: str | None = None,
        is_local_admin: int = 0,
        username: str | None = None,
        password_hash: str | None = None,
    ) -> User:
        user = User(
            role=role,
            is_local_admin=is_local_admin,
            username=username,
            password_hash=password_hash,
            first_name=role.title(),
            last_name='Tester',
        )
        if user_id:
            user.id = user_id
        self.db.add(user)
        self.db.commit()
        return user


class ApiTestCase(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()

        def override_get_db():
            with self.session_factory() as db:
                yield db

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        super().tearDown()

    def store_session(self, payload: dict, token: str | None = None) -> str:
        token = token or new_session_token()
        DatabaseSessionStore(self.db).set(token, payload)
        self.db.commit()
        self.use_token(token)
        return token

    def use_token(self, token: str) -> None:
        self.client.cookies.clear()
        self.client.cookies.set(settings.session_cookie_name, token)

    def sign_in(self, user: User) -> str:
        return self.store_session(local_session_payload(user))

    def sign_in_as(self, role: str, **kwargs) -> User:
        user = self.add_user(role, **kwargs)
        self.sign_in(user)
        return user

    def refreshed(self, entity, entity_id):
        self.db.expire_all()
        return self.db.get(entity, entity_id)
