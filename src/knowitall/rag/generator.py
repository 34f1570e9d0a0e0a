"""Answer generation through the Ollama chat API."""

from typing import Any, Optional

import ollama

from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.utils.config import get_settings
from knowitall.utils.logger import get_logger

logger = get_logger()


class OllamaGenerator:
    """Sends a system/user message pair to a chat model and returns the reply."""

    def __init__(
        self,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        """
        Initialize generator.

        Args:
            client: Object exposing ``chat(model=..., messages=..., options=...)`` (default: ollama.Client)
            model: Chat model name (default from settings)
            temperature: Sampling temperature (default from settings)
            max_tokens: Maximum tokens to generate (default from settings)
        """
        self.settings = get_settings()
        self.client = client or ollama.Client(host=self.settings.ollama_base_url)
        self.model = model or self.settings.ollama_model_name
        self.temperature = temperature if temperature is not None else self.settings.response_temperature
        self.max_tokens = max_tokens or self.settings.max_response_tokens

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Generate a completion.

        Args:
            system_prompt: Instructions for the model
            user_prompt: Context and question

        Returns:
            Generated response text

        Raises:
            KnowItAllError: GENERATION_FAILURE on any provider error
        """
        logger.debug(
            f"Calling Ollama with model {self.model}. System prompt length: {len(system_prompt)}, "
            f"user message length: {len(user_prompt)}"
        )

        try:
            response = self.client.chat(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt}
                ],
                options={
                    "temperature": self.temperature,
                    "num_predict": self.max_tokens,
                }
            )
            response_text = response["message"]["content"]
        except Exception as e:
            logger.error(f"LLM generation failed: {e}")
            raise KnowItAllError(ErrorKind.GENERATION_FAILURE, f"LLM generation failed: {e}") from e

        logger.debug(f"LLM generated {len(response_text)} characters")
        return response_text


# Singleton instance
_generator: Optional[OllamaGenerator] = None


def get_generator() -> OllamaGenerator:
    """Get or create the global generator instance."""
    global _generator
    if _generator is None:
        _generator = OllamaGenerator()
    return _generator
