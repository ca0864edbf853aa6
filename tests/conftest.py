import fakeredis
import mongomock
import pytest

from database_controller import DatabaseController
from movie_data_errors import NotFoundError

STOCK_IMAGE_ID = "65f000000000000000000001"


class DummyImageStore:
    def __init__(self, images=None):
        self.images = dict(images or {})
        self.store_calls = []

    def random_image_id(self):
        return next(iter(self.images), None)

    def read_image(self, hex_id):
        if hex_id not in self.images:
            raise NotFoundError("Image not found")
        return self.images[hex_id]

    def store_stock_images(self, directory, count):
        self.store_calls.append((directory, count))
        return []


SESSIONS = {"alice-session": "alice", "bob-session": "bob"}


@pytest.fixture
def database():
    return mongomock.MongoClient()["reel_rating_test"]


@pytest.fixture
def image_store():
    return DummyImageStore({STOCK_IMAGE_ID: (b"jpeg-bytes", "image/jpeg")})


@pytest.fixture
def controller(database, image_store):
    return DatabaseController(database, image_store=image_store)


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis()


@pytest.fixture
def client(monkeypatch, controller, redis_client):
    import movie_data

    monkeypatch.setattr(movie_data, "controller", controller)
    monkeypatch.setattr(movie_data, "r", redis_client)
    monkeypatch.setattr(movie_data, "get_username", lambda session_id, *args: SESSIONS.get(session_id))
    movie_data.app.config["TESTING"] = True
    return movie_data.app.test_client()
