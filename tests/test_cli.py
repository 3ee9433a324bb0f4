"""Tests for the command line front end."""

import functools
import json
import sys
import types
from unittest.mock import patch

import httpx
import pytest
from click.testing import CliRunner
from PIL import Image
from pytesseract import TesseractNotFoundError

from promptlib import cli as cli_module
from promptlib.cli import cli
from promptlib.client import PromptClient

TOKEN = "cli-test-token"


class FakeApi:
    """Just enough of the HTTP API to drive the CLI."""

    def __init__(self):
        self.prompts: list[dict] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/auth/login":
            body = json.loads(request.content)
            if body["password"] != "secret1":
                return httpx.Response(401, json={"error": "Invalid email or password"})
            return httpx.Response(200, json={"id": "u1", "email": body["email"], "token": TOKEN})

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"error": "Unauthorized"})

        if path == "/api/prompts" and request.method == "GET":
            return httpx.Response(200, json=self.prompts)
        if path == "/api/prompts" and request.method == "POST":
            body = json.loads(request.content)
            prompt = {**body, "createdAt": "2024-01-15T10:00:00Z", "updatedAt": "2024-01-15T10:00:00Z"}
            self.prompts.append(prompt)
            return httpx.Response(200, json=prompt)
        if path.startswith("/api/prompts/") and request.method == "DELETE":
            prompt_id = path.rsplit("/", 1)[1]
            self.prompts = [p for p in self.prompts if p["id"] != prompt_id]
            return httpx.Response(200, json={"success": True})
        if path.startswith("/api/prompts/") and request.method == "PATCH":
            prompt_id = path.rsplit("/", 1)[1]
            for prompt in self.prompts:
                if prompt["id"] == prompt_id:
                    prompt.update(json.loads(request.content))
                    return httpx.Response(200, json=prompt)
            return httpx.Response(404, json={"error": "Prompt not found"})
        return httpx.Response(404, json={"error": "Not found"})

    def add(self, id, title, tags=(), ai_tool=None):
        prompt = {
            "id": id,
            "content": title,
            "title": title,
            "tags": list(tags),
            "fromImage": False,
            "createdAt": "2024-01-15T10:00:00Z",
            "updatedAt": "2024-01-15T10:00:00Z",
        }
        if ai_tool:
            prompt["aiTool"] = ai_tool
        self.prompts.append(prompt)


@pytest.fixture
def api(monkeypatch, tmp_path):
    fake = FakeApi()
    monkeypatch.setattr(
        cli_module, "PromptClient", functools.partial(PromptClient, transport=httpx.MockTransport(fake))
    )
    monkeypatch.setattr(cli_module, "setup_colored_logging", lambda verbose=False: None)
    monkeypatch.setenv("PROMPTLIB_SESSION_FILE", str(tmp_path / "session.json"))
    return fake


@pytest.fixture
def signed_in(api, tmp_path):
    (tmp_path / "session.json").write_text(json.dumps({"email": "a@b.com", "token": TOKEN}))
    return api


@pytest.fixture
def runner():
    return CliRunner()


class _Tty:
    def isatty(self):
        return True

    def read(self):
        return ""


class TestSession:
    def test_login_saves_session(self, runner, api, tmp_path):
        result = runner.invoke(cli, ["login", "--email", "a@b.com"], input="secret1\n")

        assert result.exit_code == 0, result.output
        assert "Signed in as a@b.com" in result.output
        saved = json.loads((tmp_path / "session.json").read_text())
        assert saved == {"email": "a@b.com", "token": TOKEN}

    def test_login_wrong_password(self, runner, api, tmp_path):
        result = runner.invoke(cli, ["login", "--email", "a@b.com"], input="nope\n")

        assert result.exit_code == 1
        assert "Invalid email or password" in result.output
        assert not (tmp_path / "session.json").exists()

    def test_logout(self, runner, signed_in, tmp_path):
        result = runner.invoke(cli, ["logout"])

        assert result.exit_code == 0
        assert not (tmp_path / "session.json").exists()

    def test_not_signed_in_without_terminal(self, runner, api):
        result = runner.invoke(cli, ["list"])

        assert result.exit_code == 1
        assert "Run 'promptlib login' first." in result.output

    def test_expired_session_signs_in_and_resumes(self, runner, api, monkeypatch, tmp_path):
        api.add("p1", "Refactor loop")
        monkeypatch.setattr(cli_module, "sys", types.SimpleNamespace(stdin=_Tty(), exit=sys.exit))

        result = runner.invoke(cli, ["list"], input="a@b.com\nsecret1\n")

        assert result.exit_code == 0, result.output
        assert "Resuming" in result.output
        assert "Refactor loop" in result.output
        assert json.loads((tmp_path / "session.json").read_text())["token"] == TOKEN


class TestList:
    def test_table(self, runner, signed_in):
        signed_in.add("p1", "Refactor loop", tags=["coding"], ai_tool="Cursor")
        signed_in.add("p2", "Write tests", tags=["coding", "testing"], ai_tool="Claude")

        result = runner.invoke(cli, ["list"])

        assert result.exit_code == 0, result.output
        assert "Refactor loop" in result.output
        assert "Write tests" in result.output
        assert "Tags: coding, testing" in result.output

    def test_search_and_tag(self, runner, signed_in):
        signed_in.add("p1", "Refactor loop", tags=["coding"])
        signed_in.add("p2", "Write tests", tags=["coding", "testing"])

        result = runner.invoke(cli, ["list", "--search", "REFACTOR", "--tag", "Coding", "--json"])

        assert result.exit_code == 0, result.output
        assert [p["id"] for p in json.loads(result.output)] == ["p1"]

    def test_empty(self, runner, signed_in):
        result = runner.invoke(cli, ["list"])
        assert "No prompts found." in result.output


class TestCapture:
    def test_capture(self, runner, signed_in):
        result = runner.invoke(
            cli, ["capture", "Refactor this loop", "--tags", "Coding, Debug", "--tool", "Cursor", "--rating", "4"]
        )

        assert result.exit_code == 0, result.output
        assert "Saved" in result.output
        body = json.loads(signed_in.requests[-1].content)
        assert body["content"] == "Refactor this loop"
        assert body["tags"] == ["coding", "debug"]
        assert body["aiTool"] == "Cursor"
        assert body["rating"] == 4
        assert "context" not in body

    def test_capture_from_file(self, runner, signed_in, tmp_path):
        notes = tmp_path / "prompt.md"
        notes.write_text("# Review\n\nCheck this diff for bugs.\n")

        result = runner.invoke(cli, ["capture", "Intro", "--from-file", str(notes)])

        assert result.exit_code == 0, result.output
        body = json.loads(signed_in.requests[-1].content)
        assert body["content"] == "Intro\n\n# Review\n\nCheck this diff for bugs."

    def test_capture_from_stdin(self, runner, signed_in):
        result = runner.invoke(cli, ["capture"], input="piped prompt\n")

        assert result.exit_code == 0, result.output
        assert json.loads(signed_in.requests[-1].content)["content"] == "piped prompt"

    def test_empty_content_sends_nothing(self, runner, signed_in):
        result = runner.invoke(cli, ["capture"], input="   \n")

        assert result.exit_code == 1
        assert "Prompt content is empty" in result.output
        assert signed_in.requests == []

    def test_rating_out_of_range(self, runner, signed_in):
        result = runner.invoke(cli, ["capture", "x", "--rating", "9"])
        assert result.exit_code == 2
        assert signed_in.requests == []


class TestEditDelete:
    def test_edit(self, runner, signed_in):
        signed_in.add("p1", "Old title")

        result = runner.invoke(cli, ["edit", "p1", "--title", "New title", "--tool", "Claude"])

        assert result.exit_code == 0, result.output
        assert json.loads(signed_in.requests[-1].content) == {"title": "New title", "aiTool": "Claude"}
        assert "Updated p1: New title" in result.output

    def test_edit_nothing(self, runner, signed_in):
        result = runner.invoke(cli, ["edit", "p1"])
        assert result.exit_code == 2
        assert signed_in.requests == []

    def test_edit_missing_prompt(self, runner, signed_in):
        result = runner.invoke(cli, ["edit", "nope", "--title", "x"])
        assert result.exit_code == 1
        assert "Prompt not found" in result.output

    def test_delete(self, runner, signed_in):
        signed_in.add("p1", "Bye")

        result = runner.invoke(cli, ["delete", "p1", "--yes"])

        assert result.exit_code == 0, result.output
        assert signed_in.prompts == []


class TestExport:
    def test_export_to_directory(self, runner, signed_in, tmp_path):
        signed_in.add("p1", "Refactor loop", ai_tool="Cursor")
        out_dir = tmp_path / "exports"

        result = runner.invoke(cli, ["export", "-o", str(out_dir)])

        assert result.exit_code == 0, result.output
        (exported,) = out_dir.glob("prompt-library-*.json")
        assert json.loads(exported.read_text(encoding="utf-8"))[0]["aiTool"] == "Cursor"

    def test_export_to_stdout(self, runner, signed_in):
        signed_in.add("p1", "Refactor loop")

        result = runner.invoke(cli, ["export", "-o", "-"])

        assert json.loads(result.output)[0]["id"] == "p1"


class TestOcrCommand:
    def test_non_image_file(self, runner, api, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("hello")

        result = runner.invoke(cli, ["ocr", str(notes)])

        assert result.exit_code == 1
        assert "Please select an image file" in result.output

    def test_tesseract_missing(self, runner, api, tmp_path):
        shot = tmp_path / "shot.png"
        Image.new("RGB", (16, 16), "white").save(shot)

        with patch("promptlib.ocr.pytesseract") as tess:
            tess.get_languages.side_effect = TesseractNotFoundError()
            result = runner.invoke(cli, ["ocr", str(shot)])

        assert result.exit_code == 1
        assert "Tesseract is not installed" in result.output
        assert not isinstance(result.exception, TesseractNotFoundError)

    def test_capture_image_without_tesseract(self, runner, signed_in, tmp_path):
        shot = tmp_path / "shot.png"
        Image.new("RGB", (16, 16), "white").save(shot)

        with patch("promptlib.ocr.pytesseract") as tess:
            tess.get_languages.side_effect = TesseractNotFoundError()
            result = runner.invoke(cli, ["capture", "Intro", "--image", str(shot)])

        assert result.exit_code == 1
        assert "Tesseract is not installed" in result.output
        assert signed_in.requests == []
