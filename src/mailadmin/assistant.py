# mailadmin/assistant.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from email.utils import parseaddr
from typing import Callable, Optional

from openai import OpenAI, OpenAIError

from mailadmin.errors import AssistantError, AssistantNotConfigured
from mailadmin.imap.parser import NO_SUBJECT
from mailadmin.models import EmailMessage

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a professional email assistant. Write replies that fit the context of the message."

STYLE_INSTRUCTIONS = {
    "formal": 'Write a formal, professional reply that opens with "Dear" and closes with "Kind regards".',
    "casual": 'Write a casual, friendly reply that opens with "Hi" and closes with "Cheers!".',
    "brief": "Write a short, direct reply of two or three lines at most.",
}

MAX_TOKENS = 500
TEMPERATURE = 0.7
EXCERPT_CHARS = 2000


@dataclass(frozen=True)
class ReplySuggestion:
    response: str
    tokens: int = 0

    def to_dict(self) -> dict:
        return {"response": self.response, "tokens": self.tokens}


def sender_name(from_value: str) -> str:
    """Display name of a From header, else the local part of the address."""
    if not from_value:
        return "there"
    name, addr = parseaddr(from_value)
    if name:
        return name.strip("'\" ")
    if "@" in addr:
        return addr.split("@", 1)[0]
    return from_value


def build_prompt(message: EmailMessage, style: str) -> str:
    date = message.date.strftime("%Y-%m-%d") if message.date else "unknown"
    lines = [
        "Email context:",
        f"- From: {sender_name(message.from_addr.first())}",
        f"- Subject: {message.subject or NO_SUBJECT}",
        f"- Date: {date}",
    ]
    excerpt = message.text.strip()[:EXCERPT_CHARS]
    if excerpt:
        lines += ["", "Message:", excerpt]
    lines += [
        "",
        f"Instructions: {STYLE_INSTRUCTIONS.get(style, STYLE_INSTRUCTIONS['formal'])}",
        "",
        "Write a suitable reply to this email, professional but adapted to the requested style.",
    ]
    return "\n".join(lines)


class ReplyAssistant:
    """
    Drafts reply text through an OpenAI-compatible chat completion API.
    Without an API key every request fails with AssistantNotConfigured.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-3.5-turbo",
        *,
        client_factory: Callable[..., OpenAI] = OpenAI,
    ):
        self.api_key = api_key
        self.model = model
        self._client_factory = client_factory
        self._client: Optional[OpenAI] = None

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> OpenAI:
        if not self.is_configured():
            raise AssistantNotConfigured("AI replies are not configured (set OPENAI_API_KEY)")
        if self._client is None:
            self._client = self._client_factory(api_key=self.api_key)
        return self._client

    def suggest_reply(self, message: EmailMessage, style: str = "formal") -> ReplySuggestion:
        client = self._get_client()
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(message, style)},
                ],
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
            )
        except OpenAIError as e:
            raise AssistantError(f"AI reply generation failed: {e}") from e

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise AssistantError("AI reply generation returned no text")

        tokens = response.usage.total_tokens if response.usage else 0
        logger.info("Generated %s reply for message %s (%d tokens)", style, message.uid, tokens)
        return ReplySuggestion(response=content, tokens=tokens)
