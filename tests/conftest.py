from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient
from jose import JWTError

import database
import main
from auth import get_verifier
from payments import PaymentError, get_payments


class FakeVerifier:
    """Maps bearer tokens straight to emails."""

    def __init__(self):
        self.tokens = {}

    def verify(self, token):
        if token not in self.tokens:
            raise JWTError("Signature verification failed.")
        return self.tokens[token]


class FakePayments:
    def __init__(self):
        self.sessions = {}
        self.created = []

    def create_checkout_session(self, **kwargs):
        self.created.append(kwargs)
        session_id = f"cs_test_{len(self.created)}"
        return {"id": session_id, "url": f"https://checkout.stripe.com/c/pay/{session_id}"}

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise PaymentError(f"No such checkout.session: {session_id}")
        return self.sessions[session_id]


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["bookcourier_test"]
    monkeypatch.setattr(database, "db", mock_db)
    database.ensure_indexes()
    return mock_db


@pytest.fixture
def verifier():
    return FakeVerifier()


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def client(db, verifier, payments):
    main.app.dependency_overrides[get_verifier] = lambda: (lambda: verifier)
    main.app.dependency_overrides[get_payments] = lambda: payments
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def login(db, verifier):
    """Store a user with the given role and return auth headers for it."""

    def _login(email, role="user", stored=True):
        if stored:
            db["users"].insert_one({"email": email, "name": email.split("@")[0], "role": role})
        token = f"token-{email}"
        verifier.tokens[token] = email
        return {"Authorization": f"Bearer {token}"}

    return _login


@pytest.fixture
def add_book(db):
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _add(bookName="Book", category="fiction", price=10.0, status="published",
             createdBy="lib@example.com", day=0):
        result = db["books"].insert_one({
            "bookName": bookName,
            "category": category,
            "price": price,
            "status": status,
            "createdBy": createdBy,
            "createdAt": base + timedelta(days=day),
        })
        return str(result.inserted_id)

    return _add
