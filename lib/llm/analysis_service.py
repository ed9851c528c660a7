"""IAnalysisService backed by the chat-completions client.

Returns the raw JSON object of each reply. Decoding and all trust decisions
happen in services.ownership.analysis and services.ownership.validator.
"""

from typing import Optional, List, Dict, Any

from lib.llm import prompts
from lib.llm.client import ChatClient


class OpenAIAnalysisService:
    def __init__(self, chat: ChatClient):
        self.chat = chat

    async def assess_ownership(self, findings: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.chat.complete_json(prompts.ASSESS_SYSTEM, prompts.assess_prompt(findings))

    async def rank_contacts(
        self,
        context: Dict[str, Any],
        indexed_contacts: List[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        if not indexed_contacts:
            return {"ranked_contacts": []}
        return await self.chat.complete_json(
            prompts.RANK_SYSTEM, prompts.rank_prompt(context, indexed_contacts), max_tokens=2000,
        )

    async def draft_email(self, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self.chat.complete_json(
            prompts.DRAFT_SYSTEM, prompts.draft_prompt(context), temperature=0.4,
        )
