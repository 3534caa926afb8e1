import os

# avant tout import du service : pas de PostgreSQL ni de broker en test
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EVENTS_ENABLED"] = "0"
os.environ["LOCAL_TZ"] = "UTC"

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from roomcredits.booking.app import app
from roomcredits.booking.db import get_session, init_db, make_engine
from roomcredits.booking.models import Room, User


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def seed(session):
    focus_a = Room(name="Focus A", capacity=1, category="focus")
    focus_b = Room(name="Focus B", capacity=2, category="focus")
    board = Room(name="Board Room", capacity=8, category="conference")
    alice = User(name="Alice", email="alice@example.com", current_credits=10)
    bob = User(name="Bob", email="bob@example.com", current_credits=10)
    carol = User(name="Carol", email="carol@example.com", current_credits=1)
    session.add_all([focus_a, focus_b, board, alice, bob, carol])
    session.commit()
    return SimpleNamespace(
        focus_a=focus_a.id,
        focus_b=focus_b.id,
        board=board.id,
        alice=alice.id,
        bob=bob.id,
        carol=carol.id,
    )


@pytest.fixture
def client(engine):
    def override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override
    yield TestClient(app)
    app.dependency_overrides.clear()
