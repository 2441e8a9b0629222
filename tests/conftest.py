import os

os.environ.setdefault("JWT_SECRET", "test-secret")

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from passlib.context import CryptContext

import database
import emails
import security
from database import utcnow
from main import app
from schemas import Product, Role, User, Variant


class FakeConnection:
    """Stands in for an admin websocket."""

    def __init__(self):
        self.events = []

    async def send_json(self, data):
        self.events.append(data)


@pytest.fixture
def db(monkeypatch):
    mock = mongomock.MongoClient().brownie_test
    database.ensure_indexes(mock)
    monkeypatch.setattr(database, "db", mock)
    return mock


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch):
    monkeypatch.setattr(security, "password_ctx", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    sent = []

    def fake_send(to, subject, html):
        sent.append({"to": to, "subject": subject, "html": html})
        return "email-id"

    monkeypatch.setattr(emails, "send_email", fake_send)
    return sent


@pytest.fixture
def pushed():
    connection = FakeConnection()
    app.state.hub.register(connection)
    yield connection.events
    app.state.hub.unregister(connection)


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(email="customer@example.com", password="secret123", role=Role.CUSTOMER,
              verified=True, name="Casey"):
        doc = User(name=name, email=email, password=security.hash_password(password), role=role,
                   is_verified=verified).model_dump()
        doc["created_at"] = doc["updated_at"] = utcnow()
        doc["_id"] = db["user"].insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role=Role.ADMIN, name="Ada")


def auth(user):
    return {"Authorization": f"Bearer {security.create_token(user)}"}


@pytest.fixture
def make_product(db):
    def _make(name="Classic Fudge", variants=None, category="classic"):
        variants = variants or [{"name": "Box of 6", "price": 300, "stock_quantity": 50}]
        doc = Product(
            name=name,
            description="Rich and chewy",
            image="https://example.com/brownie.jpg",
            category=category,
            variants=[Variant(**v) for v in variants],
        ).model_dump()
        doc["created_at"] = doc["updated_at"] = utcnow()
        doc["_id"] = db["product"].insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def make_coupon(db):
    def _make(code="SWEET50", **fields):
        doc = {
            "code": code,
            "type": "fixed",
            "value": 50,
            "max_uses": None,
            "used_count": 0,
            "expiry_date": None,
            "is_active": True,
            "new_users_only": False,
            "created_at": utcnow(),
        }
        doc.update(fields)
        doc["_id"] = db["coupon"].insert_one(doc).inserted_id
        return doc
    return _make


def order_body(product, quantity=1, variant="Box of 6", **extra):
    body = {
        "items": [{
            "productId": str(product["_id"]),
            "name": product["name"],
            "price": 300,
            "quantity": quantity,
            "variantName": variant,
        }],
        "totalAmount": 300 * quantity,
        "paymentMethod": "gcash",
        "paymentStatus": "paid",
    }
    body.update(extra)
    return body


def variant_of(db, product_id, name="Box of 6"):
    product = db["product"].find_one({"_id": ObjectId(product_id)})
    return next(v for v in product["variants"] if v["name"] == name)
