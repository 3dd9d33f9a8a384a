import re
from typing import Any, Literal
from pydantic import BaseModel, Field

RATE_LIMIT_MARKER = "Too many failed login attempts"


class ApiResponse(BaseModel):
    status: int
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def error_message(self) -> str | None:
        error = self.data.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            return str(message) if message is not None else None
        if isinstance(error, str):
            return error
        return None


class ProfileResponse(BaseModel):
    id: int
    client: str | None = None
    token: str | None = None
    first_name: str | None = ""
    preposition: str | None = ""
    last_name: str | None = ""

    @property
    def real_name(self) -> str:
        parts = [self.first_name, self.preposition, self.last_name]
        return " ".join(p for p in parts if p)

    @property
    def entitled(self) -> bool:
        return bool(self.client)

    @property
    def client_id(self) -> str:
        # e.g. "api/apprelation/client/1234/" -> "1234"
        return re.sub(r"[^\d.]", "", self.client or "")


class TokenResponse(BaseModel):
    token: str


class Notification(BaseModel):
    icon: str
    message: str
    type: Literal["info", "success", "warning", "danger"] = "info"
    timeout: int | None = None


def extract_retry_time(message: str) -> str | None:
    """Return the retry timestamp embedded in a rate-limit message.

    The platform appends the time as the last 8 characters before the final
    one, e.g. ``"...; try again at 13:45:00Z"`` gives ``"13:45:00"``.
    """
    if RATE_LIMIT_MARKER not in message:
        return None
    return message[len(message) - 9:len(message) - 1]
