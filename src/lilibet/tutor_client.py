"""Client for the tutor, auth and conversation endpoints."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from lilibet.client import BackendClient
from lilibet.constants import VALID_AGE_GROUPS
from lilibet.errors import BackendError, NotAuthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TutorReply:
    response: str
    learning_mode: Optional[str] = None


@dataclass
class User:
    id: Any = None
    email: str = ""
    display_name: str = ""
    age_group: str = ""
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> User:
        known = {"id", "email", "displayName", "ageGroup"}
        return cls(
            id=data.get("id"),
            email=data.get("email", ""),
            display_name=data.get("displayName", ""),
            age_group=data.get("ageGroup", ""),
            extra={k: v for k, v in data.items() if k not in known},
        )


class TutorClient(BackendClient):
    """Talks to the tutor backend on behalf of one learner.

    The bearer token and user returned by login/register are kept in
    memory only; nothing is written to disk.
    """

    user: Optional[User] = None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    # ---- tutoring ----

    async def ask_tutor(
        self,
        message: str,
        subject: str,
        history: list[dict[str, str]],
        model: Optional[str] = None,
    ) -> TutorReply:
        """POST /api/tutor with the running conversation history."""
        body: dict[str, Any] = {
            "message": message,
            "subject": subject,
            "conversationHistory": history,
        }
        if model:
            body["model"] = model
        data = await self._post_for_reply("/api/tutor", body)
        return _parse_reply(data)

    async def chat(
        self,
        message: str,
        subject: str,
        conversation_id: Optional[Any] = None,
    ) -> TutorReply:
        """POST /api/chat; the server keeps the history under conversation_id."""
        body = {"message": message, "subject": subject, "conversationId": conversation_id}
        data = await self._post_for_reply("/api/chat", body)
        return _parse_reply(data)

    async def _post_for_reply(self, path: str, body: dict) -> dict:
        try:
            return await self._request_json("POST", path, json=body, error_message="Failed to get tutor response")
        except httpx.TimeoutException as e:
            raise BackendError("Tutor response timed out") from e

    # ---- auth ----

    async def login(self, email: str, password: str) -> User:
        data = await self._auth_request(
            "/api/auth/login", {"email": email, "password": password}, "Login failed"
        )
        return self._store_auth(data)

    async def register(
        self,
        email: str,
        password: str,
        display_name: str,
        age_group: str,
    ) -> User:
        if age_group not in VALID_AGE_GROUPS:
            raise ValueError(
                f"Invalid age group: {age_group!r}. Choose from: {', '.join(VALID_AGE_GROUPS)}"
            )
        body = {
            "email": email,
            "password": password,
            "displayName": display_name,
            "ageGroup": age_group,
        }
        data = await self._auth_request("/api/auth/register", body, "Registration failed")
        return self._store_auth(data)

    async def logout(self) -> None:
        """Tell the server, then forget the token whatever it said."""
        try:
            if self.token:
                await self._request_json("POST", "/api/auth/logout", error_message="Logout failed")
        except (BackendError, httpx.TimeoutException) as e:
            logger.info("logout endpoint error: %s", e)
        finally:
            self.token = None
            self.user = None

    async def _auth_request(self, path: str, body: dict, error_message: str) -> dict:
        try:
            return await self._request_json("POST", path, json=body, error_message=error_message)
        except httpx.TimeoutException as e:
            raise BackendError(f"{error_message}: timed out") from e

    def _store_auth(self, data: dict) -> User:
        token = data.get("token")
        if not token:
            raise BackendError("Server did not return a token")
        self.token = token
        self.user = User.from_dict(data.get("user") or {})
        return self.user

    # ---- conversations ----

    async def save_conversation(
        self,
        subject: str,
        messages: list[dict],
        detected_level: str,
        model_used: str,
        title: str,
    ) -> Any:
        """Store a conversation and return its server-side id."""
        self._require_auth()
        body = {
            "subject": subject,
            "messages": messages,
            "detectedLevel": detected_level,
            "modelUsed": model_used,
            "title": title,
        }
        try:
            data = await self._request_json(
                "POST", "/api/conversations", json=body, error_message="Failed to save conversation"
            )
        except httpx.TimeoutException as e:
            raise BackendError("Saving the conversation timed out") from e
        return data.get("conversationId")

    async def list_conversations(self, subject: Optional[str] = None) -> list[dict]:
        """Fetch saved conversations, retrying once if the first call times out."""
        self._require_auth()
        params = {"subject": subject} if subject else None
        for attempt in range(2):
            try:
                data = await self._request_json(
                    "GET", "/api/conversations", params=params,
                    error_message="Failed to fetch conversations",
                )
                return list(data.get("conversations") or [])
            except httpx.TimeoutException as e:
                if attempt == 0:
                    logger.info("conversation list timed out, retrying once")
                    continue
                raise BackendError("Loading conversations timed out") from e
        return []

    def _require_auth(self) -> None:
        if not self.token:
            raise NotAuthenticated()


def _parse_reply(data: dict) -> TutorReply:
    response = data.get("response")
    if not isinstance(response, str):
        raise BackendError("Tutor reply is missing a response")
    return TutorReply(response=response, learning_mode=data.get("learningMode"))
