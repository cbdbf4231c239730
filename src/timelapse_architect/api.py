import httpx
import json
import logging
import time

from google import genai
from google.genai import errors, types
from PIL import Image
from pydantic import BaseModel, Field
from typing import Any, List, Optional

from .prompts import (
    ASPECT_RATIO,
    NUM_FRAMES,
    build_edit_prompt,
    build_timeline_prompt,
)
from .utils import (
    image_from_bytes,
    image_to_png_bytes,
)


logger = logging.getLogger(__name__)
logger.setLevel(level=logging.INFO)

DEFAULT_TEXT_MODEL = "gemini-3-flash-preview"
DEFAULT_IMAGE_MODEL = "gemini-2.5-flash-image"

SAFETY_FINISH_REASONS = {
    "SAFETY",
    "PROHIBITED_CONTENT",
    "IMAGE_SAFETY",
    "BLOCKLIST",
    "SPII",
}


class TimelineStep(BaseModel):
    image: str = Field(description="The detailed image generation prompt.")
    video: str = Field(description="The video generation prompt for timelapse tools.")


class ClassifierException(Exception):
    """Raised when the model refuses a request or blocks its output for safety reasons.

    Attributes:
        reason: Block or finish reason reported by the model
        prompt: The prompt that was blocked
    """
    def __init__(self, reason: Optional[str]=None, prompt: Optional[str]=None):
        super().__init__(f"Request blocked by safety filter ({reason})")
        self.reason = reason
        self.prompt = prompt

class OutOfQuotaException(Exception):
    """Raised when the API key has exhausted its quota or rate limit."""
    def __init__(self, details: str):
        super().__init__(details)
        self.details = details

class NoContentException(Exception):
    """Raised when the model answers without the requested text or image."""


class Context:
    def __init__(
            self,
            api_key: Optional[str]=None,
            client: Optional[genai.Client]=None,
            text_model: str=DEFAULT_TEXT_MODEL,
            image_model: str=DEFAULT_IMAGE_MODEL,
            aspect_ratio: str=ASPECT_RATIO,
        ):
        if not api_key and client is None:
            raise ValueError("Must provide either an API key or a client")

        self._max_retries = 5           # retry request on server error
        self._request_timeout = 120.0   # timeout in seconds for each request
        self._retry_delay = 1.0         # base delay in seconds between retries, each attempt will double

        if client is None:
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(self._request_timeout * 1000)),
            )
        self._client = client

        self.text_model = text_model
        self.image_model = image_model
        self.aspect_ratio = aspect_ratio

    def generate_timeline_prompts(self, subject: str) -> List[TimelineStep]:
        """
        Ask the text model for the image and video prompt of every frame.

        :param subject: Description of the building to renovate
        :return: One TimelineStep per frame
        """
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=list[TimelineStep],
        )
        response = self._run_request(self.text_model, build_timeline_prompt(subject), config)

        text = _response_text(response)
        if not text:
            raise NoContentException("No response from model.")

        steps = [TimelineStep.model_validate(item) for item in json.loads(text)]
        if len(steps) < NUM_FRAMES:
            raise ValueError(f"Expected {NUM_FRAMES} timeline steps, received {len(steps)}")
        if len(steps) > NUM_FRAMES:
            logger.warning(f"Received {len(steps)} timeline steps, keeping the first {NUM_FRAMES}")
            steps = steps[:NUM_FRAMES]
        return steps

    def generate_image(self, prompt: str) -> Image.Image:
        """
        Generate an image from a text prompt.

        :param prompt: Image description
        :return: The generated image
        """
        response = self._run_request(self.image_model, prompt, self._image_config(), prompt=prompt)
        image = _response_image(response)
        if image is None:
            raise NoContentException("No image generated.")
        return image

    def edit_image(self, prompt: str, image: Image.Image) -> Image.Image:
        """
        Edit an image to match a description while keeping its composition.

        :param prompt: Description of the desired result
        :param image: Source image, usually the previous frame
        :return: The edited image, or a freshly generated one when the model
            does not return an image for the edit request
        """
        contents = [
            types.Part.from_bytes(data=image_to_png_bytes(image), mime_type="image/png"),
            types.Part.from_text(text=build_edit_prompt(prompt)),
        ]
        response = self._run_request(self.image_model, contents, self._image_config(), prompt=prompt)
        result = _response_image(response)
        if result is None:
            logger.warning("Edit did not return an image, falling back to generation.")
            return self.generate_image(prompt)
        return result

    def _image_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            image_config=types.ImageConfig(aspect_ratio=self.aspect_ratio),
        )

    def _run_request(
        self,
        model: str,
        contents: Any,
        config: types.GenerateContentConfig,
        prompt: Optional[str] = None,
    ) -> types.GenerateContentResponse:
        for attempt in range(self._max_retries+1):
            try:
                response = self._client.models.generate_content(
                    model=model,
                    contents=contents,
                    config=config,
                )
                _check_blocked(response, prompt)
                return response
            except errors.ClientError as client_error:
                if client_error.code == 429:
                    raise OutOfQuotaException(client_error.message or str(client_error))
                raise
            except (errors.ServerError, httpx.TransportError) as server_error:
                if attempt == self._max_retries:
                    raise

                logger.warning(f"Received {type(server_error).__name__}: {server_error} will retry {self._max_retries-attempt} more times")
                time.sleep(self._retry_delay * 2**attempt)


def _check_blocked(response: Any, prompt: Optional[str]):
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(feedback, "block_reason", None) if feedback is not None else None
    if block_reason:
        raise ClassifierException(_enum_name(block_reason), prompt)

    for candidate in getattr(response, "candidates", None) or []:
        finish_reason = getattr(candidate, "finish_reason", None)
        if finish_reason is not None and _enum_name(finish_reason) in SAFETY_FINISH_REASONS:
            raise ClassifierException(_enum_name(finish_reason), prompt)

def _enum_name(value: Any) -> str:
    return getattr(value, "name", None) or str(value)

def _response_parts(response: Any) -> list:
    candidates = getattr(response, "candidates", None)
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])

def _response_text(response: Any) -> Optional[str]:
    # thought summaries are not part of the answer
    texts = [
        part.text for part in _response_parts(response)
        if getattr(part, "text", None) and not getattr(part, "thought", False)
    ]
    return "".join(texts) if texts else None

def _response_image(response: Any) -> Optional[Image.Image]:
    for part in _response_parts(response):
        inline_data = getattr(part, "inline_data", None)
        if inline_data is not None and inline_data.data:
            return image_from_bytes(inline_data.data)
    return None
