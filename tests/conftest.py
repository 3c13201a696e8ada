import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from config import Settings, get_settings
from database import create_document, get_db
from errors import ErrorResponse
from geocoder import get_geocoder
from mailer import get_mailer
from main import app
from schemas import Bootcamp, Course, Review, User

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)

LOCATION = {
    "type": "Point",
    "coordinates": [-71.104028, 42.350846],
    "formattedAddress": "233 Bay State Rd, Boston, MA 02215-1405, US",
    "street": "233 Bay State Rd",
    "city": "Boston",
    "state": "MA",
    "zipcode": "02215-1405",
    "country": "US",
}


class FakeGeocoder:
    def __init__(self):
        self.calls = []

    def geocode(self, address):
        self.calls.append(address)
        if address == "nowhere":
            return None
        return dict(LOCATION)


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, text):
        if self.fail:
            raise ErrorResponse("Email could not be sent", 500)
        self.sent.append({"to": to, "subject": subject, "text": text})


@pytest.fixture
def db():
    return mongomock.MongoClient()["bootcamps_test"]


@pytest.fixture
def settings(tmp_path):
    return Settings(secret_key="test-secret", file_upload_path=str(tmp_path / "uploads"))


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(db, settings, geocoder, mailer):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(role="user", email=None, name="Test User"):
        email = email or f"{role}-{uuid.uuid4().hex[:8]}@example.com"
        user = User(name=name, email=email, role=role, password_hash=PASSWORD_HASH)
        return create_document(db, "user", user)
    return _make


@pytest.fixture
def auth_headers(settings):
    def _headers(user):
        token = create_access_token(str(user["_id"]), settings)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def make_bootcamp(db):
    def _make(owner, **fields):
        data = {
            "name": f"Bootcamp {uuid.uuid4().hex[:8]}",
            "description": "Full stack web development",
            "careers": ["Web Development"],
            "location": LOCATION,
            "user": str(owner["_id"]),
        }
        data.update(fields)
        return create_document(db, "bootcamp", Bootcamp(**data))
    return _make


@pytest.fixture
def make_course(db):
    def _make(bootcamp, **fields):
        data = {
            "title": "Front End Web Development",
            "description": "HTML, CSS and JavaScript",
            "weeks": 8,
            "tuition": 8000,
            "minimumSkill": "beginner",
            "bootcamp": str(bootcamp["_id"]),
            "user": bootcamp["user"],
        }
        data.update(fields)
        return create_document(db, "course", Course(**data))
    return _make


@pytest.fixture
def make_review(db):
    def _make(bootcamp, author, **fields):
        data = {
            "title": "Learned a ton",
            "text": "Great instructors and a solid curriculum.",
            "rating": 8,
            "bootcamp": str(bootcamp["_id"]),
            "user": str(author["_id"]),
        }
        data.update(fields)
        return create_document(db, "review", Review(**data))
    return _make
