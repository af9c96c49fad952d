import httpx
import pytest

import fakes
from fakes import FakeRunStore, FakeStorage
from app.services.media_uploader import MediaUploader


@pytest.fixture(autouse=True)
def reset_calls():
    fakes.calls.clear()
    yield
    fakes.calls.clear()


@pytest.fixture(autouse=True)
def public_base_url_env(monkeypatch):
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://conductor.test")


@pytest.fixture
def store():
    return FakeRunStore()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def uploader(store, storage):
    return MediaUploader(store, storage)


@pytest.fixture
def http_mock(monkeypatch):
    """
    Route every httpx.AsyncClient through a MockTransport.

    Set ``http_mock["handler"]`` to a function taking an httpx.Request and
    returning an httpx.Response; sent requests collect in ``http_mock["requests"]``.
    """
    state = {"handler": None, "requests": []}
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        state["requests"].append(request)
        return state["handler"](request)

    def client_factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", client_factory)
    return state
