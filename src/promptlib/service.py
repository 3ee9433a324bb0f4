"""Owner-scoped prompt operations behind the HTTP routes."""

import logging

from . import db as db_ops
from .errors import NotFoundFailure
from .models import Principal, Prompt, PromptDraft, PromptPatch, default_title, utcnow

logger = logging.getLogger(__name__)


class PromptService:
    """List, create, update and delete prompts for an authenticated caller.

    Every method takes the caller's principal and only ever touches rows
    owned by it.
    """

    def __init__(self, db: db_ops.Database):
        self.db = db

    async def list(self, principal: Principal) -> list[Prompt]:
        return await db_ops.list_prompts(self.db, principal.id)

    async def create(self, principal: Principal, draft: PromptDraft) -> Prompt:
        """Store a new prompt owned by the caller.

        A client-supplied created_at is kept so prompts captured offline keep
        their original time; updated_at is always now.
        """
        now = utcnow()
        created_at = draft.created_at or now
        if created_at > now:
            created_at = now

        prompt = await db_ops.insert_prompt(
            self.db,
            principal.id,
            draft,
            created_at=created_at,
            updated_at=now,
        )
        logger.info(f"[API] Prompt {prompt.id} created for user {principal.id}")
        return prompt

    async def update(self, principal: Principal, prompt_id: str, patch: PromptPatch) -> Prompt:
        """Apply a partial update to one of the caller's prompts.

        Raises:
            NotFoundFailure: If the caller owns no prompt with this id.
        """
        changes = patch.changes()

        clears_title = "title" in changes and changes["title"] is None
        if (clears_title and "content" not in changes) or ("content" in changes and "title" not in changes):
            existing = await db_ops.get_prompt(self.db, principal.id, prompt_id)
            if existing is None:
                raise NotFoundFailure("Prompt not found")
            if clears_title:
                changes["title"] = default_title(existing.content)
            elif existing.title == default_title(existing.content):
                # The title was never customized: keep it following the content
                changes["title"] = default_title(changes["content"])
        elif clears_title:
            changes["title"] = default_title(changes["content"])

        prompt = await db_ops.update_prompt(
            self.db, principal.id, prompt_id, changes, updated_at=utcnow()
        )
        if prompt is None:
            raise NotFoundFailure("Prompt not found")

        logger.info(f"[API] Prompt {prompt_id} updated ({', '.join(sorted(changes)) or 'touch'})")
        return prompt

    async def delete(self, principal: Principal, prompt_id: str) -> None:
        """Delete one of the caller's prompts. Missing or foreign ids are ignored."""
        removed = await db_ops.delete_prompt(self.db, principal.id, prompt_id)
        logger.info(f"[API] Delete prompt {prompt_id} for user {principal.id} (removed: {removed})")
