from __future__ import annotations

from collections.abc import Iterator

import pytest

from llmbridge.core.config import clear_config_cache
from llmbridge.core.models import ImageInput


@pytest.fixture(autouse=True)
def _fresh_config_cache() -> Iterator[None]:
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def png_image() -> ImageInput:
    return ImageInput(data=b"\x89PNG fake", mime_type="image/png", filename="cat.png")
