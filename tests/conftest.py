"""
Pytest fixtures for Tubely tests.

Every test gets its own SQLite database and directories under tmp_path. The
object store, ffprobe and ffmpeg are replaced by in-process fakes so the
upload pipeline can run without network access or native tools.
"""

import shutil
from contextlib import ExitStack
from dataclasses import replace
from pathlib import Path
from typing import Optional

import pytest
from fastapi.testclient import TestClient

from api.common import limiter
from api.main import create_app
from api.storage import ObjectStore, StoreDeleteError, StoreWriteError
from config import Settings
from media.inspector import Dimensions, ProbeError
from media.repackager import RepackageError, fast_start_output_path

TEST_BUCKET = "tubely-test-bucket"
TEST_REGION = "us-east-2"
TEST_JWT_SECRET = "test-secret-key-that-is-long-enough"

# Minimal ISO BMFF header: a 24-byte ftyp box with major brand mp42
MP4_HEADER = b"\x00\x00\x00\x18ftypmp42\x00\x00\x00\x00mp42isom"
PNG_HEADER = b"\x89PNG\r\n\x1a\n"
JPEG_HEADER = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00"


class FakeObjectStore(ObjectStore):
    """Records puts and deletes in memory; signs with a predictable URL."""

    def __init__(self):
        super().__init__(client=None, put_timeout=30.0)
        self.objects = {}
        self.puts = []
        self.deletes = []
        self.put_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.sign_error: Optional[Exception] = None

    async def put(self, bucket, key, path, content_type):
        if self.put_error is not None:
            raise self.put_error
        data = Path(path).read_bytes()
        self.puts.append({"bucket": bucket, "key": key, "content_type": content_type, "data": data, "path": path})
        self.objects[(bucket, key)] = data

    async def delete(self, bucket, key):
        self.deletes.append((bucket, key))
        if self.delete_error is not None:
            raise self.delete_error
        self.objects.pop((bucket, key), None)

    def sign(self, bucket, key, ttl):
        if self.sign_error is not None:
            raise self.sign_error
        return f"https://{bucket}.s3.example.com{key}?X-Amz-Expires={ttl}&X-Amz-Signature=fake"


class FakeInspector:
    """Returns canned dimensions instead of running ffprobe."""

    def __init__(self, width: int = 1920, height: int = 1080):
        self.dimensions = Dimensions(width, height)
        self.error: Optional[Exception] = None
        self.calls = []

    async def probe(self, path):
        self.calls.append(Path(path))
        if self.error is not None:
            raise self.error
        return self.dimensions


class FakeRepackager:
    """Copies the input to the fast-start output path instead of running ffmpeg."""

    def __init__(self):
        self.error: Optional[Exception] = None
        self.calls = []
        self.outputs = []

    async def repackage(self, input_path):
        input_path = Path(input_path)
        self.calls.append(input_path)
        if self.error is not None:
            raise self.error
        output_path = fast_start_output_path(input_path)
        shutil.copyfile(input_path, output_path)
        self.outputs.append(output_path)
        return output_path


def make_mp4(size: int = 4096) -> bytes:
    return MP4_HEADER + b"\x00\x00\x00\x08free" + b"\x00" * max(0, size - len(MP4_HEADER) - 8)


def make_png(size: int = 256) -> bytes:
    return PNG_HEADER + b"\x00" * max(0, size - len(PNG_HEADER))


def make_jpeg(size: int = 256) -> bytes:
    return JPEG_HEADER + b"\x00" * max(0, size - len(JPEG_HEADER))


@pytest.fixture
def mp4_bytes() -> bytes:
    return make_mp4()


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    temp_dir = tmp_path / "tmp"
    temp_dir.mkdir()
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        s3_bucket=TEST_BUCKET,
        s3_region=TEST_REGION,
        database_url=f"sqlite:///{tmp_path / 'tubely.db'}",
        platform="dev",
        filepath_root=tmp_path / "app",
        assets_root=tmp_path / "assets",
        public_url="http://localhost:8091",
        temp_dir=temp_dir,
    )


@pytest.fixture
def fake_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def fake_inspector() -> FakeInspector:
    return FakeInspector()


@pytest.fixture
def fake_repackager() -> FakeRepackager:
    return FakeRepackager()


@pytest.fixture
def make_client(settings, fake_store, fake_inspector, fake_repackager):
    """Factory for test clients; keyword arguments override Settings fields."""
    stack = ExitStack()

    def _make(raise_server_exceptions: bool = True, **overrides) -> TestClient:
        app = create_app(
            settings=replace(settings, **overrides),
            objects=fake_store,
            inspector=fake_inspector,
            repackager=fake_repackager,
        )
        limiter.reset()
        return stack.enter_context(TestClient(app, raise_server_exceptions=raise_server_exceptions))

    yield _make
    stack.close()


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


def signup_and_login(client: TestClient, email: str, password: str = "correct horse battery staple") -> dict:
    response = client.post("/api/users", json={"email": email, "password": password})
    assert response.status_code == 201, response.text
    response = client.post("/api/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    data = response.json()
    data["password"] = password
    data["headers"] = {"Authorization": f"Bearer {data['token']}"}
    return data


@pytest.fixture
def user(client) -> dict:
    return signup_and_login(client, "owner@example.com")


@pytest.fixture
def other_user(client) -> dict:
    return signup_and_login(client, "someone-else@example.com")


@pytest.fixture
def video(client, user) -> dict:
    response = client.post(
        "/api/videos",
        json={"title": "Boots in the wild", "description": "A short clip"},
        headers=user["headers"],
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def probe_error() -> ProbeError:
    return ProbeError("ffprobe exited with code 1: moov atom not found")


@pytest.fixture
def repackage_error() -> RepackageError:
    return RepackageError("ffmpeg exited with code 1: Invalid data found when processing input")


@pytest.fixture
def store_write_error() -> StoreWriteError:
    return StoreWriteError("Upload timed out after 30.0s")


@pytest.fixture
def store_delete_error() -> StoreDeleteError:
    return StoreDeleteError("Access Denied")
