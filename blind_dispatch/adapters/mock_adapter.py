from __future__ import annotations

import uuid
from typing import Union

from .base import GenerateImageOptions, GenerateTextOptions, ImageResponse, TextResponse

# A 1x1 PNG, so mock runs never reach the network.
MOCK_IMAGE_URL = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class MockAdapter:
    """Simple adapter that returns canned responses for testing."""

    name = "Mock"
    supports_images = True

    def __init__(self, provider: str = "openai", model: str = "mock") -> None:
        self.type = provider
        self.model = model
        self.calls: list[tuple[str, str, dict]] = []

    async def generate_text(
        self, prompt: str, options: Union[GenerateTextOptions, None] = None
    ) -> TextResponse:
        self.calls.append(("text", prompt, dict(options or {})))
        return TextResponse(
            id=f"mock-{uuid.uuid4().hex[:12]}",
            content="Mock response.",
            model=self.model,
            provider=self.type,
            tokens=3,
            finish_reason="stop",
            metadata={},
        )

    async def generate_image(
        self, prompt: str, options: Union[GenerateImageOptions, None] = None
    ) -> ImageResponse:
        self.calls.append(("image", prompt, dict(options or {})))
        return ImageResponse(
            id=f"mock-img-{uuid.uuid4().hex[:12]}",
            image_url=MOCK_IMAGE_URL,
            model=self.model,
            provider=self.type,
            metadata={},
        )

    async def test_connection(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None
