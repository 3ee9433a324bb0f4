"""Client-side state: the loaded prompt list, filtering and export."""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .client import PromptClient
from .errors import ApiError, AuthExpired, ValidationFailure
from .models import Prompt, PromptDraft, utcnow
from .utils import get_unique_path

logger = logging.getLogger(__name__)

EXPORT_PREFIX = "prompt-library"


def new_draft(
    content: str,
    title: str = "",
    tags: str | Iterable[str] = "",
    context: str = "",
    description: str = "",
    ai_tool: str = "",
    use_case: str = "",
    rating: Optional[int] = None,
    from_image: bool = False,
) -> PromptDraft:
    """Build a draft from capture-form input.

    Tags come in as one string ("coding, debug") and are split into
    lowercase tokens; a blank title is derived from the content. The draft
    gets a fresh id and is stamped with the capture time.

    Raises:
        ValidationFailure: If the content is blank or a field is out of range.
    """
    if not content or not content.strip():
        raise ValidationFailure("Prompt content is empty")
    try:
        return PromptDraft(
            content=content,
            title=title,
            tags=tags,
            context=context,
            description=description,
            ai_tool=ai_tool,
            use_case=use_case,
            rating=rating,
            from_image=from_image,
            created_at=utcnow(),
        )
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationFailure(f"{field}: {first.get('msg', 'invalid value')}") from e


def filter_prompts(
    prompts: Iterable[Prompt],
    text: Optional[str] = None,
    tag: Optional[str] = None,
    ai_tool: Optional[str] = None,
) -> list[Prompt]:
    """Filter an in-memory list. All given criteria must match.

    text: case-insensitive substring of content, title, a tag, context or description.
    tag: exact tag membership.
    ai_tool: exact AI tool label.
    """
    result = list(prompts)

    if text and text.strip():
        q = text.lower()
        result = [
            p
            for p in result
            if q in p.content.lower()
            or q in p.title.lower()
            or any(q in t for t in p.tags)
            or (p.context is not None and q in p.context.lower())
            or (p.description is not None and q in p.description.lower())
        ]

    if tag:
        result = [p for p in result if tag in p.tags]

    if ai_tool:
        result = [p for p in result if p.ai_tool == ai_tool]

    return result


class PromptLibrary:
    """Holds the signed-in user's prompts and drives the API client.

    Writes never touch the local list: call refresh() afterwards to see them.
    """

    def __init__(self, client: PromptClient):
        self.client = client
        self.prompts: list[Prompt] = []
        self.loading = False
        self.error: Optional[str] = None

    async def refresh(self) -> list[Prompt]:
        """Replace the local list with the server's.

        Raises:
            AuthExpired: Session missing or expired; local state is left as it was.
            ApiError: Any other failure; the message is also kept in self.error.
        """
        self.loading = True
        self.error = None
        try:
            prompts = await self.client.list_prompts()
        except AuthExpired:
            raise
        except ApiError as e:
            self.error = e.message
            raise
        finally:
            self.loading = False

        self.prompts = prompts
        logger.debug(f"[CLIENT] Loaded {len(prompts)} prompt(s)")
        return prompts

    async def save(self, draft: PromptDraft) -> Prompt:
        """Send a new prompt to the server.

        Raises:
            ValidationFailure: Blank content; nothing is sent.
        """
        if not draft.content or not draft.content.strip():
            raise ValidationFailure("Prompt content is empty")
        return await self._call(self.client.create_prompt(draft))

    async def update(self, prompt_id: str, **changes: Any) -> Prompt:
        if "content" in changes and not (changes["content"] or "").strip():
            raise ValidationFailure("Prompt content is empty")
        return await self._call(self.client.update_prompt(prompt_id, changes))

    async def remove(self, prompt_id: str) -> None:
        await self._call(self.client.delete_prompt(prompt_id))

    async def _call(self, coro):
        self.error = None
        try:
            return await coro
        except AuthExpired:
            raise
        except ApiError as e:
            self.error = e.message
            raise

    def filter(
        self,
        text: Optional[str] = None,
        tag: Optional[str] = None,
        ai_tool: Optional[str] = None,
    ) -> list[Prompt]:
        return filter_prompts(self.prompts, text=text, tag=tag, ai_tool=ai_tool)

    def all_tags(self) -> list[str]:
        return sorted({t for p in self.prompts for t in p.tags})

    def all_tools(self) -> list[str]:
        return sorted({p.ai_tool for p in self.prompts if p.ai_tool})

    def export_json(self) -> str:
        """The loaded prompts as pretty-printed JSON, in API (camelCase) form."""
        return json.dumps([p.to_api() for p in self.prompts], indent=2, ensure_ascii=False)

    def export_to(self, directory: Path, today: Optional[date] = None) -> Path:
        """Write export_json() to prompt-library-YYYY-MM-DD.json without overwriting."""
        today = today or date.today()
        directory.mkdir(parents=True, exist_ok=True)
        dest = get_unique_path(directory / f"{EXPORT_PREFIX}-{today.isoformat()}.json")
        dest.write_text(self.export_json(), encoding="utf-8")
        logger.info(f"[CLIENT] Exported {len(self.prompts)} prompt(s) to {dest}")
        return dest
