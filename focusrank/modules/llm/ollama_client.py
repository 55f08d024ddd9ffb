# focusrank/modules/llm/ollama_client.py
import httpx
import logging
import re
from typing import List, Dict, Any, Optional

from focusrank.config.settings import settings
from focusrank.utils.exceptions import OllamaException

logger = logging.getLogger(__name__)


class OllamaClient:
    """
    Minimal non-streaming client for Ollama's /api/chat endpoint.
    One attempt per call; callers decide how to degrade on OllamaException.
    """

    def __init__(self):
        self.client: Optional[httpx.AsyncClient] = None
        self.base_url: str = settings.llm.ollama_base_url
        self.model_name: str = settings.llm.ollama_model
        self.request_timeout: float = settings.llm.request_timeout_seconds

    async def initialize(self, config: Optional[Dict[str, Any]] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        config = config or {}
        self.base_url = config.get("ollama_base_url", self.base_url)
        self.model_name = config.get("ollama_model", self.model_name)
        self.request_timeout = config.get("request_timeout_seconds", self.request_timeout)

        if not self.model_name:
            raise ValueError("Ollama 'ollama_model' name must be provided in the configuration.")

        try:
            timeout_config = httpx.Timeout(
                self.request_timeout,
                connect=30,
                read=self.request_timeout,
                write=30
            )
            self.client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout_config,
                transport=transport,
            )
        except Exception as e:
            raise OllamaException(f"Failed to initialize httpx.AsyncClient for Ollama: {e}") from e

    async def generate_response(
        self,
        prompt: str,
        history: Optional[List[Dict[str, str]]] = None,
        format: Optional[str] = None,
        model: Optional[str] = None,
        system_prompt: Optional[str] = None
    ) -> str:
        if not self.client:
            raise OllamaException("OllamaClient is not initialized.")

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        if history:
            for item in history:
                messages.append(item)
        messages.append({"role": "user", "content": prompt})

        actual_model = model or self.model_name
        payload: Dict[str, Any] = {
            "model": actual_model,
            "messages": messages,
            "stream": False
        }
        if format:
            payload["format"] = format

        try:
            api_response = await self.client.post("/api/chat", json=payload)
            api_response.raise_for_status()
            response_data = api_response.json()
        except httpx.HTTPError as e:
            logger.warning(f"[OllamaClient] Request to /api/chat failed for {actual_model}: {e}")
            raise OllamaException(f"Ollama generate_response failed: {e}") from e
        except ValueError as e:
            raise OllamaException(f"Ollama returned a non-JSON body: {e}") from e

        message = response_data.get("message") if isinstance(response_data, dict) else None
        if not isinstance(message, dict) or "content" not in message:
            raise OllamaException(f"Unexpected response format: {response_data}")

        # Thinking blocks break JSON parsing downstream
        return self._clean_model_artifacts(message["content"], strip_thinking=(format == "json"))

    def _clean_model_artifacts(self, text: str, strip_thinking: bool = False) -> str:
        if not text:
            return text

        if strip_thinking:
            text = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL | re.IGNORECASE).strip()

        text = re.sub(r'\n{4,}', '\n\n\n', text)
        text = text.strip()

        for prefix in ("Assistant: ", "Response: ", "Answer: "):
            if text.startswith(prefix):
                text = text[len(prefix):]
                break

        return text

    async def close(self) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None
