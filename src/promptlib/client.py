"""HTTP client for the Prompt Library API."""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from .errors import ApiError, AuthExpired
from .models import Principal, Prompt, PromptDraft, SessionOut

logger = logging.getLogger(__name__)

PROMPTS_PATH = "/api/prompts"


def _error_text(resp: httpx.Response) -> str:
    """Pull the server's error message out of a failed response."""
    try:
        data = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return resp.text or f"HTTP {resp.status_code}"


class PromptClient:
    """Talks to the API server. Knows nothing about navigation or sign-in UI.

    A 401 is raised as AuthExpired and left for the application shell.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    @property
    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.request(method, path, json=json, headers=self.headers)
        except httpx.HTTPError as e:
            logger.error(f"[CLIENT] {method} {path} failed: {e}")
            raise ApiError(f"Could not reach {self.base_url}: {e}", status_code=503) from e

        if resp.status_code == 401:
            raise AuthExpired(return_to=path)
        if resp.is_error:
            raise ApiError(_error_text(resp), status_code=resp.status_code)
        return resp.json()

    async def register(self, email: str, password: str) -> Principal:
        data = await self._request("POST", "/api/auth/register", {"email": email, "password": password})
        return Principal.model_validate(data)

    async def login(self, email: str, password: str) -> SessionOut:
        """Sign in and keep the returned token for later calls."""
        try:
            data = await self._request("POST", "/api/auth/login", {"email": email, "password": password})
        except AuthExpired as e:
            # On the login endpoint a 401 means bad credentials, not an expired session
            raise ApiError("Invalid email or password", status_code=401) from e
        session = SessionOut.model_validate(data)
        self.token = session.token
        return session

    async def list_prompts(self) -> list[Prompt]:
        data = await self._request("GET", PROMPTS_PATH)
        return [Prompt.model_validate(item) for item in data]

    async def create_prompt(self, draft: PromptDraft) -> Prompt:
        body = draft.model_dump(mode="json", by_alias=True, exclude_none=True)
        data = await self._request("POST", PROMPTS_PATH, body)
        return Prompt.model_validate(data)

    async def update_prompt(self, prompt_id: str, changes: dict[str, Any]) -> Prompt:
        """PATCH the given fields. Keys may be snake_case or camelCase."""
        body = {_camel(k): v for k, v in changes.items()}
        data = await self._request("PATCH", f"{PROMPTS_PATH}/{quote(prompt_id, safe='')}", body)
        return Prompt.model_validate(data)

    async def delete_prompt(self, prompt_id: str) -> None:
        await self._request("DELETE", f"{PROMPTS_PATH}/{quote(prompt_id, safe='')}")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
