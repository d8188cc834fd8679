import asyncio
import base64
import binascii
import logging
from typing import Any, Dict, List, Optional, Sequence

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError, ResourceExhausted, ServiceUnavailable

from stockroom.services.ai.base import AIProvider, InlineImage
from stockroom.services.exceptions import UpstreamError, UpstreamTimeout, ValidationError

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    name = "gemini"

    def __init__(
        self,
        api_keys: List[str],
        model_name: str = "gemini-2.0-flash-001",
        generation_config: Optional[Dict[str, Any]] = None,
        timeout_seconds: float = 30.0,
    ):
        self.api_keys = [k for k in api_keys if k]  # Filter empty
        self.model_name = model_name
        self.generation_config = generation_config or {
            "temperature": 0.2,
            "top_p": 0.8,
            "top_k": 40,
            "max_output_tokens": 8192,
        }
        self.timeout_seconds = timeout_seconds
        self.current_key_index = 0
        self._configure_current_key()

    def _configure_current_key(self):
        if not self.api_keys:
            logger.warning("No Gemini API Keys provided.")
            self.model = None
            return

        current_key = self.api_keys[self.current_key_index]
        genai.configure(api_key=current_key)
        self.model = genai.GenerativeModel(self.model_name, generation_config=self.generation_config)
        logger.info(f"Switched to Gemini Key Index: {self.current_key_index}")

    def _rotate_key(self) -> bool:
        """
        Rotates to the next available key.
        Returns True if rotation was successful (keys remaining), False otherwise.
        """
        if len(self.api_keys) <= 1:
            return False

        self.current_key_index = (self.current_key_index + 1) % len(self.api_keys)
        self._configure_current_key()
        return True

    def _target_model(self, model: Optional[str]):
        if model and model != self.model_name:
            return genai.GenerativeModel(model, generation_config=self.generation_config)
        return self.model

    @staticmethod
    def _image_parts(images: Sequence[InlineImage]) -> List[Dict[str, Any]]:
        parts = []
        for index, image in enumerate(images):
            try:
                raw = base64.b64decode(image.data, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValidationError(
                    f"Image {index} is not valid base64 data",
                    field=f"images[{index}].inlineData.data",
                ) from e
            parts.append({"mime_type": image.mime_type, "data": raw})
        return parts

    async def _generate(self, contents: Any, model: Optional[str]) -> str:
        if not self.model:
            raise UpstreamError("Gemini API key not configured on server", subsystem="ai", recoverable=False)

        max_retries = len(self.api_keys)
        attempts = 0

        while attempts < max_retries:
            target_model = self._target_model(model)
            try:
                response = await asyncio.wait_for(
                    target_model.generate_content_async(
                        contents,
                        generation_config={"response_mime_type": "application/json"},
                    ),
                    timeout=self.timeout_seconds,
                )
                return response.text
            except asyncio.TimeoutError as e:
                logger.error(f"Gemini call exceeded {self.timeout_seconds}s")
                raise UpstreamTimeout(
                    "The AI provider did not answer in time",
                    operation="gemini.generate_content",
                    timeout_seconds=self.timeout_seconds,
                ) from e
            except (ResourceExhausted, ServiceUnavailable) as e:
                logger.warning(f"Gemini Key {self.current_key_index} exhausted/unavailable: {e}")
                if not self._rotate_key():
                    logger.error("All Gemini keys exhausted.")
                    raise UpstreamError("AI provider is rate limited", subsystem="ai", body=str(e)) from e
                attempts += 1
            except GoogleAPIError as e:
                logger.error(f"Gemini generate_content failed (non-retryable): {e}")
                raise UpstreamError("Failed to analyze with the AI provider", subsystem="ai", body=str(e)) from e
            except ValueError as e:
                # response.text raises when the candidate was blocked or empty
                logger.error(f"Gemini returned no usable text: {e}")
                raise UpstreamError("AI provider returned no content", subsystem="ai", body=str(e)) from e

        raise UpstreamError("All Gemini keys exhausted", subsystem="ai")

    async def generate_text(self, prompt: str, model: Optional[str] = None) -> str:
        return await self._generate(prompt, model)

    async def generate_with_images(
        self,
        prompt: str,
        images: Sequence[InlineImage],
        model: Optional[str] = None,
    ) -> str:
        contents: List[Any] = [prompt]
        contents.extend(self._image_parts(images))
        return await self._generate(contents, model)
