"""Tests for the API client and the client-side library state."""

import httpx
import pytest

from promptlib.client import PromptClient
from promptlib.errors import ApiError, AuthExpired, ValidationFailure
from promptlib.library import PromptLibrary, new_draft
from promptlib.models import PromptDraft


@pytest.fixture
def make_client(app, http):
    """PromptClient wired to the in-process app (the http fixture opens its database)."""

    def _make(token=None) -> PromptClient:
        return PromptClient("http://test", token=token, transport=httpx.ASGITransport(app=app))

    return _make


@pytest.fixture
async def signed_in(make_client) -> PromptClient:
    client = make_client()
    await client.register("a@b.com", "secret1")
    await client.login("a@b.com", "secret1")
    return client


def _unreachable() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    return httpx.MockTransport(handler)


class TestPromptClient:
    async def test_login_keeps_token(self, make_client):
        client = make_client()
        principal = await client.register("A@B.com", "secret1")

        session = await client.login("a@b.com", "secret1")

        assert session.id == principal.id
        assert client.token == session.token
        assert client.headers["Authorization"] == f"Bearer {session.token}"

    async def test_login_bad_credentials_is_not_auth_expired(self, make_client):
        client = make_client()

        with pytest.raises(ApiError) as exc_info:
            await client.login("nobody@b.com", "secret1")

        assert not isinstance(exc_info.value, AuthExpired)
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Invalid email or password"

    async def test_register_error_message(self, make_client):
        client = make_client()
        with pytest.raises(ApiError, match="at least 6"):
            await client.register("a@b.com", "123")

    async def test_no_session_raises_auth_expired(self, make_client):
        client = make_client()

        with pytest.raises(AuthExpired) as exc_info:
            await client.list_prompts()

        assert exc_info.value.return_to == "/api/prompts"

    async def test_create_list_update_delete(self, signed_in: PromptClient):
        created = await signed_in.create_prompt(new_draft("Refactor loop", tags="Coding, Debug debug"))

        assert created.tags == ["coding", "debug", "debug"]
        assert await signed_in.list_prompts() == [created]

        updated = await signed_in.update_prompt(created.id, {"ai_tool": "Cursor", "rating": 4})
        assert updated.ai_tool == "Cursor"
        assert updated.rating == 4

        await signed_in.delete_prompt(created.id)
        await signed_in.delete_prompt(created.id)
        assert await signed_in.list_prompts() == []

    async def test_custom_id_round_trip(self, signed_in: PromptClient):
        created = await signed_in.create_prompt(PromptDraft(id="ids.are_url-safe~1", content="x"))

        await signed_in.delete_prompt(created.id)

        assert await signed_in.list_prompts() == []

    async def test_server_error_message(self, signed_in: PromptClient):
        draft = PromptDraft(id="same", content="first")
        await signed_in.create_prompt(draft)

        with pytest.raises(ApiError) as exc_info:
            await signed_in.create_prompt(draft)

        assert exc_info.value.status_code == 409
        assert "already exists" in exc_info.value.message

    async def test_unreachable_server(self):
        client = PromptClient("http://nowhere.invalid", token="t", transport=_unreachable())

        with pytest.raises(ApiError) as exc_info:
            await client.list_prompts()

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, AuthExpired)


class TestPromptLibrary:
    async def test_refresh(self, signed_in: PromptClient):
        library = PromptLibrary(signed_in)
        await signed_in.create_prompt(new_draft("Write tests"))

        prompts = await library.refresh()

        assert [p.content for p in prompts] == ["Write tests"]
        assert library.prompts == prompts
        assert library.loading is False
        assert library.error is None

    async def test_save_does_not_touch_local_list(self, signed_in: PromptClient):
        library = PromptLibrary(signed_in)
        await library.refresh()

        saved = await library.save(new_draft("Write tests"))

        assert library.prompts == []
        assert await library.refresh() == [saved]

    async def test_save_blank_content_sends_nothing(self):
        client = PromptClient("http://nowhere.invalid", transport=_unreachable())
        library = PromptLibrary(client)

        with pytest.raises(ValidationFailure):
            await library.save(PromptDraft.model_construct(content="   "))

        assert library.error is None

    async def test_auth_expired_leaves_state_untouched(self, make_client, signed_in: PromptClient):
        library = PromptLibrary(signed_in)
        await signed_in.create_prompt(new_draft("kept"))
        await library.refresh()
        before = list(library.prompts)

        library.client = make_client(token="expired-or-forged")
        with pytest.raises(AuthExpired):
            await library.refresh()

        assert library.prompts == before
        assert library.error is None
        assert library.loading is False

    async def test_api_error_recorded(self, signed_in: PromptClient):
        library = PromptLibrary(signed_in)
        draft = new_draft("once")
        await library.save(draft)

        with pytest.raises(ApiError):
            await library.save(draft)

        assert "already exists" in library.error

    async def test_refresh_when_unreachable(self):
        library = PromptLibrary(PromptClient("http://nowhere.invalid", token="t", transport=_unreachable()))

        with pytest.raises(ApiError):
            await library.refresh()

        assert library.error.startswith("Could not reach")
        assert library.loading is False

    async def test_update_and_remove(self, signed_in: PromptClient):
        library = PromptLibrary(signed_in)
        saved = await library.save(new_draft("draft text"))

        updated = await library.update(saved.id, title="Renamed", tags="a b")
        assert updated.title == "Renamed"
        assert updated.tags == ["a", "b"]

        with pytest.raises(ValidationFailure):
            await library.update(saved.id, content="  ")

        await library.remove(saved.id)
        assert await library.refresh() == []
