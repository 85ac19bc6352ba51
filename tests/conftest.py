import io

import mongomock
import pytest
from flask_jwt_extended import create_access_token

from backend.app import create_app
from backend.auth import create_admin_account
from backend.errors import UploadFailed
from backend.media import MediaStorage, StoredImage, validate_image

ADMIN_EMAIL = "admin@dreamhouse.test"
ADMIN_PASSWORD = "correct horse battery staple"
JWT_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class RecordingStorage(MediaStorage):
    """Cloud-like media backend that records calls instead of uploading."""

    name = "recording"

    def __init__(self):
        self.stored = []
        self.deleted = []
        self.fail_store = False
        self.fail_delete = False

    def store(self, image_file) -> StoredImage:
        validate_image(image_file)
        if self.fail_store:
            raise UploadFailed("media service unavailable")
        key = f"dream-house-products/image-{len(self.stored) + 1}"
        self.stored.append(key)
        return StoredImage(url=f"https://res.cloudinary.test/{key}.png", key=key)

    def delete(self, key):
        self.deleted.append(key)
        if self.fail_delete:
            raise RuntimeError("media service unavailable")


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def media():
    return RecordingStorage()


@pytest.fixture
def app(db, media, tmp_path):
    return create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": JWT_SECRET,
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        },
        db=db,
        media_storage=media,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_account(db):
    return create_admin_account(db.users, ADMIN_EMAIL, ADMIN_PASSWORD, rounds=4)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(app, admin_account):
    with app.app_context():
        token = create_access_token(
            identity=str(admin_account["_id"]), additional_claims={"isAdmin": True}
        )
    return bearer(token)


@pytest.fixture
def user_headers(app):
    with app.app_context():
        token = create_access_token(
            identity="5f0000000000000000000001", additional_claims={"isAdmin": False}
        )
    return bearer(token)


def image_upload(filename="photo.png", content=b"\x89PNG\r\n\x1a\nfake"):
    return (io.BytesIO(content), filename)


@pytest.fixture
def create_product(client, admin_headers):
    def _create(**fields):
        payload = {"name": "Oak Table", "category": "Furniture"}
        payload.update(fields)
        response = client.post(
            "/api/products",
            data=payload,
            headers=admin_headers,
            content_type="multipart/form-data",
        )
        assert response.status_code == 201, response.get_json()
        return response.get_json()["product"]

    return _create
