"""LLM completion service (OpenAI chat completions) with curriculum prompts."""

import asyncio
import logging

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

from navigator.config import get_settings
from navigator.curriculum import CurriculumPosition, Step1
from navigator.errors import UpstreamError

logger = logging.getLogger(__name__)
settings = get_settings()

# Transient error types that warrant retrying
_RETRYABLE_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError)

_GUIDE = "あなたはシャドーワークのガイドです。"
_REPLY_RULE = "日本語で2文以内。"


def build_system_prompt(position: CurriculumPosition) -> str:
    if isinstance(position, Step1):
        return (
            f"{_GUIDE}ユーザーの回答を受けて、"
            f"Q{position.question_no}について具体例を1つだけ短く促してください。{_REPLY_RULE}"
        )
    return (
        f"{_GUIDE}Session {position.session_no}で感情が強く出た瞬間を、"
        f"状況→相手→自分の反応の順に書くよう短く促してください。{_REPLY_RULE}"
    )


def build_next_action_reply(position: CurriculumPosition) -> str:
    """Canned prompt for the "next" action; no LLM call involved."""
    if isinstance(position, Step1):
        return (
            f"次へ進みます。Q{position.question_no}で出てきた感情の中で、"
            "いま最も強く残っているものを一つ書いてください。"
        )
    return f"次へ進みます。Session {position.session_no}で最も強く反応した感情を一つ書いてください。"


def build_chat_messages(
    position: CurriculumPosition,
    user_text: str,
    context_card: str,
    step2_meta_card: str | None = None,
) -> list[dict]:
    """
    Role-tagged message list for a thread chat turn.

    Card text is decrypted by the client and sent for this call only.
    """
    messages = [
        {"role": "system", "content": build_system_prompt(position)},
        {"role": "system", "content": f"このスレッドのコンテキストカード:\n{context_card}"},
    ]
    if step2_meta_card and not isinstance(position, Step1):
        messages.append(
            {"role": "system", "content": f"このランのStep 2メタカード:\n{step2_meta_card}"}
        )
    messages.append({"role": "user", "content": user_text})
    return messages


class LLMService:
    """Thin async wrapper over the OpenAI client."""

    def __init__(self):
        """Initialize OpenAI client."""
        self.client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_api_base_url or None,
            timeout=settings.external_api_timeout_seconds,
            max_retries=0,
        )

    async def complete(self, messages: list[dict]) -> str:
        """
        Return the assistant's reply text for a role-tagged message list.

        Transient failures are retried with exponential backoff; anything
        left over surfaces as UpstreamError.
        """
        max_attempts = max(1, settings.llm_max_attempts)

        for attempt in range(max_attempts):
            try:
                response = await self.client.chat.completions.create(
                    model=settings.openai_model,
                    messages=messages,
                )
            except _RETRYABLE_ERRORS as e:
                if attempt < max_attempts - 1:
                    delay = 1.0 * (2 ** attempt)
                    logger.warning(
                        "OpenAI transient error (attempt %d/%d), retrying in %.1fs: %s",
                        attempt + 1, max_attempts, delay, str(e),
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.exception("LLM completion failed after %d attempts", max_attempts)
                raise UpstreamError("openai", "OpenAI request failed") from e
            except APIStatusError as e:
                logger.warning("OpenAI returned status %d", e.status_code)
                raise UpstreamError(
                    "openai", "OpenAI error", retryable=False, details={"status": e.status_code}
                ) from e

            reply = (response.choices[0].message.content or "").strip() if response.choices else ""
            if not reply:
                raise UpstreamError("openai", "OpenAI returned empty output")
            return reply

        raise UpstreamError("openai", "OpenAI request failed")

    async def chat_reply(
        self,
        position: CurriculumPosition,
        user_text: str,
        context_card: str,
        step2_meta_card: str | None = None,
    ) -> str:
        return await self.complete(
            build_chat_messages(position, user_text, context_card, step2_meta_card)
        )

    async def respond(self, user_text: str) -> str:
        return await self.complete([{"role": "user", "content": user_text}])

    async def ping(self) -> str:
        return await self.complete([{"role": "user", "content": "Reply with the single word: pong"}])


# Singleton instance
llm_service = LLMService()
