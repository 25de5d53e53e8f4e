from typing import Optional

import httpx

from inspector_api.logging_config import get_logger
from inspector_api.services.llm.base import ChatMessages, LLMError, LLMProvider, LLMResponse

logger = get_logger("llm.openai")

DEFAULT_TIMEOUT_SECONDS = 30.0


class OpenAIProvider(LLMProvider):
    """Chat completions over plain httpx; used only for intent classification."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        api_url: str = "https://api.openai.com/v1",
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.completions_url = f"{api_url.rstrip('/')}/chat/completions"

    def _build_payload(
        self, messages: ChatMessages, model: str, temperature: float, max_tokens: int, json_mode: bool
    ) -> dict:
        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    def generate(
        self,
        messages: ChatMessages,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 300,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = self._build_payload(messages, model, temperature, max_tokens, json_mode)
        timeout = timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS

        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}, json_mode={json_mode}")
        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                self.completions_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )

        if response.status_code != 200:
            logger.error(f"OpenAI error: status={response.status_code}, body={response.text[:500]}")
            raise LLMError(f"OpenAI API error: {response.status_code}")

        data = response.json()
        choices = data.get("choices") or [{}]
        content = (choices[0].get("message") or {}).get("content") or ""
        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))
