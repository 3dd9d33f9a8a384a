import logging
from typing import Optional
from urllib.parse import urljoin
import requests
from pydantic import ValidationError
from softphone_session.core.errors import AuthError, AuthReason
from softphone_session.core.models import ApiResponse, ProfileResponse, TokenResponse

logger = logging.getLogger("softphone.api")

PROFILE_PATH = "api/permission/systemuser/profile/"
AUTOLOGIN_TOKEN_PATH = "api/autologin/token/"


class AuthClient:
    """Basic-auth client for the platform API."""

    OK_STATUS = (200, 201, 202, 204)
    NOTOK_STATUS = (400, 401, 403, 404, 429, 500, 502, 503)

    def __init__(self, base_url: str, timeout: float = 10.0, http: Optional[requests.Session] = None):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.http = http or requests.Session()
        self.http.headers.update({"Accept": "application/json"})

    @property
    def has_credentials(self) -> bool:
        return self.http.auth is not None

    def setup_client(self, username: Optional[str] = None, password: Optional[str] = None):
        """Set basic-auth credentials; calling without arguments removes them."""
        if username is None:
            self.http.auth = None
        else:
            self.http.auth = (username, password or "")

    def get(self, path: str) -> ApiResponse:
        url = urljoin(self.base_url, path)
        try:
            resp = self.http.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("GET %s failed: %s", path, e.__class__.__name__)
            raise AuthError(AuthReason.NETWORK, f"Could not reach {self.base_url}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}
        logger.debug("GET %s -> %s", path, resp.status_code)
        return ApiResponse(status=resp.status_code, data=data)

    def is_ok(self, res: ApiResponse) -> bool:
        return res.status not in self.NOTOK_STATUS and 200 <= res.status < 300

    def parse_profile(self, res: ApiResponse) -> ProfileResponse:
        try:
            return ProfileResponse.model_validate(res.data)
        except ValidationError as e:
            raise AuthError(AuthReason.BAD_RESPONSE, "Unexpected profile response") from e

    def get_autologin_token(self) -> str:
        res = self.get(AUTOLOGIN_TOKEN_PATH)
        if not self.is_ok(res):
            raise AuthError(AuthReason.INVALID_CREDENTIALS, f"Token request refused ({res.status})")
        try:
            return TokenResponse.model_validate(res.data).token
        except ValidationError as e:
            raise AuthError(AuthReason.BAD_RESPONSE, "Unexpected token response") from e
