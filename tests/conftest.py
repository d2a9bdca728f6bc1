import mongomock
import pytest
from fastapi.testclient import TestClient

from access import create_session_token, get_db
from database import Database
from main import app
from schemas import Category, Product, User


def login(db, open_id, role="user"):
    """Register a user directly and return headers carrying their session token."""
    db.create_document("user", User(open_id=open_id, name=open_id.title(), role=role))
    return {"Authorization": f"Bearer {create_session_token(open_id, name=open_id.title())}"}


def user_id(db, open_id):
    return db["user"].find_one({"open_id": open_id})["_id"]


@pytest.fixture
def db():
    database = Database(mongomock.MongoClient(), "toolstore_test")
    database.ensure_indexes()
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_headers(db):
    return login(db, "alice")


@pytest.fixture
def other_headers(db):
    return login(db, "bob")


@pytest.fixture
def admin_headers(db):
    return login(db, "root", role="admin")


@pytest.fixture
def catalog(db):
    courses = db.create_document("category", Category(name="Courses"))
    tools = db.create_document("category", Category(name="Tools"))
    products = {
        "course": db.create_document("product", Product(
            category_id=courses, name="Web Hacking Course", description="Learn XSS and SQLi", price=4999)),
        "recon": db.create_document("product", Product(
            category_id=tools, name="Recon Kit", description="Subdomain scanner for web targets", price=1999)),
        "hidden": db.create_document("product", Product(
            category_id=tools, name="Old Scanner", description="Retired", price=999, is_active=False)),
    }
    return {"courses": courses, "tools": tools, **products}
