import json
import pytest

from google.genai import types
from PIL import Image
from typing import Any, List, Optional

from timelapse_architect.api import Context
from timelapse_architect.prompts import NUM_FRAMES
from timelapse_architect.timelapse import TimelapseArgs
from timelapse_architect.utils import image_to_png_bytes


def make_steps(count: int = NUM_FRAMES) -> List[dict]:
    return [{"image": f"image prompt {i + 1}", "video": f"video prompt {i + 1}"} for i in range(count)]

def text_response(text: str) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(candidates=[
        types.Candidate(
            content=types.Content(role="model", parts=[types.Part.from_text(text=text)]),
            finish_reason=types.FinishReason.STOP,
        )
    ])

def image_response(image: Image.Image) -> types.GenerateContentResponse:
    return types.GenerateContentResponse(candidates=[
        types.Candidate(
            content=types.Content(role="model", parts=[
                types.Part.from_text(text="Here is your image."),
                types.Part.from_bytes(data=image_to_png_bytes(image), mime_type="image/png"),
            ]),
            finish_reason=types.FinishReason.STOP,
        )
    ])

def frame_image(index: int) -> Image.Image:
    """Small 9:16 image whose red channel encodes the call index."""
    return Image.new("RGB", (9, 16), (index * 10 % 256, 0, 0))


class MockModels:
    """Stands in for `genai.Client().models`.

    Queued responses (or exceptions) are returned first; after that text
    models answer with 8 prompt pairs and image models with a new image.
    """
    def __init__(self, text_model: str):
        self.text_model = text_model
        self.queue: List[Any] = []
        self.calls: List[dict] = []
        self.images_generated = 0

    def generate_content(self, model: str, contents: Any, config: Optional[types.GenerateContentConfig] = None):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.queue:
            response = self.queue.pop(0)
            if isinstance(response, BaseException):
                raise response
            return response
        if model == self.text_model:
            return text_response(json.dumps(make_steps()))
        self.images_generated += 1
        return image_response(frame_image(self.images_generated))

class MockClient:
    def __init__(self, text_model: str = "mock-text"):
        self.models = MockModels(text_model)


@pytest.fixture
def mock_client() -> MockClient:
    return MockClient()

@pytest.fixture
def context(mock_client) -> Context:
    ctx = Context(client=mock_client, text_model="mock-text", image_model="mock-image")
    ctx._retry_delay = 0.0
    return ctx

@pytest.fixture
def timelapse_args() -> TimelapseArgs:
    return TimelapseArgs(text_model="mock-text", image_model="mock-image")

@pytest.fixture
def pil_image() -> Image.Image:
    return Image.new("RGB", (90, 160), (120, 200, 40))
