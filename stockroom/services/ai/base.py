from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass(frozen=True)
class InlineImage:
    """Base64 payload (no data-URL prefix) and its MIME type."""

    data: str
    mime_type: str = "image/jpeg"


class AIProvider(ABC):
    name: str = "base"

    @abstractmethod
    async def generate_text(self, prompt: str, model: Optional[str] = None) -> str:
        """
        Generates a raw text response for a text-only prompt.
        """
        pass

    @abstractmethod
    async def generate_with_images(
        self,
        prompt: str,
        images: Sequence[InlineImage],
        model: Optional[str] = None,
    ) -> str:
        """
        Generates a raw text response for a prompt with inline image parts.
        """
        pass
