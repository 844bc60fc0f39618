"""Gemini chat sessions through the Google Gen AI SDK."""

import logging

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from oer_ingest.errors import ChatServiceError

logging.getLogger("google_genai").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)

log = logging.getLogger(__name__)


class GeminiChatSession:
    """A single Gemini conversation; its history is never relied upon."""

    def __init__(self, chat):
        self._chat = chat

    def send_message(self, prompt: str) -> str:
        try:
            response = self._chat.send_message(prompt)
        except genai_errors.APIError as e:
            raise ChatServiceError(
                e.status or "API_ERROR",
                e.message or str(e),
                e.code,
            ) from e
        except httpx.HTTPError as e:
            raise ChatServiceError("NETWORK_ERROR", str(e)) from e

        # Blocked or truncated replies carry no text
        return response.text or ""


class GeminiChatClient:
    """Start Gemini chats that share one model configuration."""

    DEFAULT_MODEL = "gemini-2.5-flash"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.2,
        max_output_tokens: int = 65000,
    ):
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self._client = genai.Client(api_key=api_key)

    def start_session(self, system_instruction: str) -> GeminiChatSession:
        log.debug(f"Starting new {self.model} chat")
        chat = self._client.chats.create(
            model=self.model,
            config=types.GenerateContentConfig(
                system_instruction=system_instruction,
                temperature=self.temperature,
                max_output_tokens=self.max_output_tokens,
            ),
        )
        return GeminiChatSession(chat)
