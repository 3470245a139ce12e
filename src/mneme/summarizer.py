"""Conversation summaries and topics using an LLM."""

import json
import logging
from typing import Any, Sequence

from groq import AsyncGroq

from .models import ConversationSummary, Turn

logger = logging.getLogger(__name__)

MAX_SUMMARY_TOPICS = 5
MAX_MESSAGE_TOPICS = 3

SUMMARY_PROMPT = """Analyze this conversation and summarize it for future reference.

Return ONLY valid JSON:
{
  "summary": "<concise 2-3 sentence summary>",
  "topics": ["<topic>", ...]
}

Rules:
- At most 5 topics, each a single word or short phrase
- Focus on what the user shared about themselves and what they asked for
- If the conversation is empty small talk, return {"summary": "", "topics": []}

Conversation to analyze:
"""

TOPICS_PROMPT = """Extract the key topics of this message.

Return ONLY valid JSON: {"topics": ["<topic>", ...]}
At most 3 topics, each a single word or short phrase.

Message:
"""


def strip_code_fence(content: str) -> str:
    """Remove a surrounding markdown code block from an LLM response."""
    text = content.strip()
    if not text.startswith("```"):
        return text
    lines = [line for line in text.split("\n") if not line.startswith("```")]
    return "\n".join(lines)


class ConversationSummarizer:
    """Summarizes conversations and extracts topics using a Groq model."""

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
    ) -> None:
        """Initialize the summarizer.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use.
        """
        self.client = llm_client
        self.model = model

    async def summarize(self, conversation_id: str, turns: Sequence[Turn]) -> ConversationSummary | None:
        """Summarize a conversation.

        Args:
            conversation_id: Identifier the summary is stored under.
            turns: The conversation turns, oldest first.

        Returns:
            The summary, or None if there is nothing to summarize or the
            LLM call fails.
        """
        text = self._format_conversation(turns)
        if not text:
            return None

        data = await self._complete_json(SUMMARY_PROMPT + text, temperature=0.5)
        if data is None:
            return None

        summary = str(data.get("summary", "")).strip()
        topics = self._parse_topics(data.get("topics"), MAX_SUMMARY_TOPICS)
        if not summary and not topics:
            return None
        return ConversationSummary(conversation_id=conversation_id, summary=summary, topics=topics)

    async def extract_topics(self, message: str) -> list[str]:
        """Extract up to three topics from a single message."""
        if not message.strip():
            return []
        data = await self._complete_json(TOPICS_PROMPT + message, temperature=0.3)
        if data is None:
            return []
        return self._parse_topics(data.get("topics"), MAX_MESSAGE_TOPICS)

    async def _complete_json(self, prompt: str, temperature: float) -> dict[str, Any] | None:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=temperature,
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            logger.warning(f"Summary request failed: {e}")
            return None

        try:
            data = json.loads(strip_code_fence(content))
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse summary response: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning("Invalid summary response: expected a JSON object")
            return None
        return data

    def _parse_topics(self, raw: Any, limit: int) -> list[str]:
        if not isinstance(raw, list):
            return []
        topics = [str(t).strip() for t in raw if str(t).strip()]
        return list(dict.fromkeys(topics))[:limit]

    def _format_conversation(self, turns: Sequence[Turn]) -> str:
        """Format turns into a readable conversation string."""
        lines = []
        for turn in turns:
            if turn.role == "user":
                lines.append(f"User: {turn.content}")
            elif turn.role == "assistant":
                lines.append(f"Assistant: {turn.content}")
            # Skip system and tool messages
        return "\n".join(lines)
