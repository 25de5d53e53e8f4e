from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

# Chat messages as the OpenAI-style API expects them: {"role": ..., "content": ...}
ChatMessages = List[dict]


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None

    @property
    def total_tokens(self) -> int:
        return int((self.usage or {}).get("total_tokens") or 0)


class LLMError(Exception):
    """Backend answered with an error status."""


class LLMProvider(ABC):
    """Backend for the intent classifier.

    Implementations make one blocking call and raise LLMError on a bad
    status; transport timeouts propagate as httpx.TimeoutException.
    """

    @abstractmethod
    def generate(
        self,
        messages: ChatMessages,
        model: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 300,
        timeout_seconds: Optional[float] = None,
        json_mode: bool = False,
    ) -> LLMResponse:
        ...
