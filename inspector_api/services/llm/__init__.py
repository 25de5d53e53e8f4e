from inspector_api.services.llm.base import LLMError, LLMProvider, LLMResponse
from inspector_api.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
