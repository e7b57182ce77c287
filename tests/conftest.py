"""
Shared fixtures.

HTTP goes through a real requests.Session with FakeTransport mounted on the
test API origin, so response hooks (the 401 interceptor) run exactly as they
do in production. No network access is needed.
"""

import json
import threading
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from requests.adapters import BaseAdapter

from core.api_client import StorybookAPIClient
from core.credential_cache import AUTH_FLAG_KEY, USER_KEY, StoredCredentialCache
from core.interceptor import UnauthorizedResponseInterceptor
from core.storage import MemoryStorage
from services.credit_service import CreditBalanceReconciler, CreditLedger, CreditService
from services.session_service import SessionStateMachine


API_ORIGIN = "http://storybook.test"


class FakeTransport(BaseAdapter):
    """
    In-process transport adapter answering from registered routes.

    A route answers with a fixed status/body, raises an exception, or calls
    a handler ``handler(call) -> (status, body)``. Unregistered routes
    answer 404.
    """

    def __init__(self):
        super().__init__()
        self._routes = {}
        self._lock = threading.Lock()
        self.calls = []

    def add(self, method, path, status=200, json_body=None, exc=None, handler=None):
        self._routes[(method.upper(), path)] = {
            "status": status,
            "body": json_body,
            "exc": exc,
            "handler": handler,
        }

    def calls_to(self, method, path):
        with self._lock:
            return [c for c in self.calls if c["method"] == method.upper() and c["path"] == path]

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        parsed = urlparse(request.url)
        body = request.body
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        call = {
            "method": request.method,
            "path": parsed.path,
            "params": {k: v[0] for k, v in parse_qs(parsed.query).items()},
            "json": json.loads(body) if body else None,
        }
        with self._lock:
            self.calls.append(call)

        route = self._routes.get((request.method, parsed.path))
        if route is None:
            return self._response(request, 404, {"success": False, "message": "Not found"})
        if route["exc"] is not None:
            raise route["exc"]
        if route["handler"] is not None:
            status, payload = route["handler"](call)
            return self._response(request, status, payload)
        return self._response(request, route["status"], route["body"])

    def close(self):
        pass

    @staticmethod
    def _response(request, status, payload):
        response = requests.Response()
        response.status_code = status
        response.url = request.url
        response.request = request
        response.encoding = "utf-8"
        if payload is None:
            response._content = b""
        elif isinstance(payload, (bytes, str)):
            response._content = payload.encode("utf-8") if isinstance(payload, str) else payload
        else:
            response._content = json.dumps(payload).encode("utf-8")
            response.headers["Content-Type"] = "application/json"
        return response


def user_payload(**overrides):
    """A user record as the API sends it."""
    user = {
        "id": 1,
        "email": "a@b.com",
        "firstName": "Ada",
        "lastName": "Lovelace",
        "creditsBalance": 100,
        "preferredLanguage": "en",
        "isEmailVerified": True,
    }
    user.update(overrides)
    return user


def seed_cached_user(storage, user):
    """Write a stored credential pair the way a previous process left it."""
    storage.set(USER_KEY, json.dumps(user))
    storage.set(AUTH_FLAG_KEY, "true")


@pytest.fixture
def fake_api():
    return FakeTransport()


@pytest.fixture
def http_session(fake_api):
    session = requests.Session()
    session.mount(f"{API_ORIGIN}/", fake_api)
    return session


@pytest.fixture
def api_client(http_session):
    return StorybookAPIClient(API_ORIGIN, timeout_seconds=5, session=http_session)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cache(storage):
    return StoredCredentialCache(storage)


@pytest.fixture
def ledger():
    return CreditLedger()


@pytest.fixture
def make_session(api_client, cache, ledger):
    """
    Build the session machine wired like create_app() does.

    Call it after seeding storage so hydration sees the seeded pair.
    """

    def _make():
        machine = SessionStateMachine(api_client, cache, ledger)
        interceptor = UnauthorizedResponseInterceptor(
            get_session=machine.snapshot,
            force_clear=machine.forced_clear,
        )
        api_client.add_response_hook(interceptor)
        machine.interceptor = interceptor
        return machine

    return _make


@pytest.fixture
def reconciler(ledger):
    return CreditBalanceReconciler(ledger)


@pytest.fixture
def credit_service(api_client, ledger, reconciler):
    return CreditService(api_client, ledger, reconciler, history_page_size=20)


@pytest.fixture
def app(http_session):
    from app import create_app

    flask_app = create_app("config.TestingConfig", storage=MemoryStorage(), http_session=http_session)
    yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()
