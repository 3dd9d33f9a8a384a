import base64
import json
import threading
from urllib.parse import urlparse
import pytest
import requests
from requests.adapters import BaseAdapter
from softphone_session.client.api import AUTOLOGIN_TOKEN_PATH, PROFILE_PATH, AuthClient
from softphone_session.client.config import Settings
from softphone_session.client.events import TOPIC_NOTIFY
from softphone_session.client.main import Application

PLATFORM_URL = "https://platform.test/"
USERNAME = "alice@example.com"
PASSWORD = "s3cret-Passw0rd"


class FakePlatform(BaseAdapter):
    """Transport adapter standing in for the platform API."""

    def __init__(self):
        super().__init__()
        self.users: dict[str, dict] = {}
        self.error_message: str | None = None
        self.fail_network = False
        self.portal_token = "portal-token-1"
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self.paths: list[str] = []

    def add_user(self, username: str, password: str, **profile):
        data = {
            "id": 42,
            "client": "api/apprelation/client/1234/",
            "token": "sip-token-abc",
            "first_name": "Alice",
            "preposition": "van",
            "last_name": "Dijk",
        }
        data.update(profile)
        self.users[username] = {"password": password, "profile": data}

    def _credentials(self, request) -> tuple[str, str] | None:
        header = request.headers.get("Authorization", "")
        if not header.startswith("Basic "):
            return None
        username, _, password = base64.b64decode(header[6:]).decode("utf-8").partition(":")
        return username, password

    def _response(self, request, status: int, body) -> requests.Response:
        resp = requests.Response()
        resp.status_code = status
        resp._content = json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
        resp.encoding = "utf-8"
        resp.url = request.url
        resp.request = request
        return resp

    def send(self, request, **kwargs):
        path = urlparse(request.url).path.lstrip("/")
        self.paths.append(path)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail_network:
            raise requests.ConnectionError("connection refused")

        creds = self._credentials(request)
        user = self.users.get(creds[0]) if creds else None
        if user is None or user["password"] != creds[1]:
            if self.error_message:
                return self._response(request, 401, {"error": {"message": self.error_message}})
            return self._response(request, 401, {"detail": "Invalid credentials"})

        if path == PROFILE_PATH:
            return self._response(request, 200, user["profile"])
        if path == AUTOLOGIN_TOKEN_PATH:
            return self._response(request, 200, {"token": self.portal_token})
        return self._response(request, 404, {})

    def close(self):
        pass


class RecordingCallService:
    def __init__(self):
        self.inits = 0
        self.disconnects: list[bool] = []

    def init_services(self) -> None:
        self.inits += 1

    def disconnect(self, reconnect: bool = True) -> None:
        self.disconnects.append(reconnect)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        PLATFORM_URL=PLATFORM_URL,
        DATABASE_URL=f"sqlite:///{(tmp_path / 'state.db').as_posix()}",
        KDF_ITERATIONS=1000,
    )


@pytest.fixture
def platform():
    platform = FakePlatform()
    platform.add_user(USERNAME, PASSWORD)
    return platform


@pytest.fixture
def calls():
    return RecordingCallService()


@pytest.fixture
def make_app(settings, platform):
    """Build an application on the shared database; calling it again simulates a restart."""
    def factory(calls=None):
        http = requests.Session()
        http.mount(PLATFORM_URL, platform)
        api = AuthClient(settings.PLATFORM_URL, timeout=1, http=http)
        app = Application(settings, calls=calls or RecordingCallService(), api=api)
        app.notifications = []
        app.bus.subscribe(TOPIC_NOTIFY, app.notifications.append)
        return app
    return factory


@pytest.fixture
def app(make_app, calls):
    return make_app(calls)
