import pytest

from app import create_app
from logic import ATTACK, DEFENSE, MIDFIELD
from models import db
from services import ClubService

SQUAD = [
    ('Ana', DEFENSE),
    ('Bruno', MIDFIELD),
    ('Carla', ATTACK),
    ('Davi', DEFENSE),
]


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'CLUB_PASSWORD': '',
        'CLUB_AUTH_SECRET': '',
    })
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def service(app):
    with app.app_context():
        yield ClubService(db.session)


@pytest.fixture
def squad(service):
    """Four players with ids 1-4, in SQUAD order."""
    return [service.create_player(name, pos).id for name, pos in SQUAD]


@pytest.fixture
def match(service):
    return service.create_match('2026-05-04', '19:00', 20)
