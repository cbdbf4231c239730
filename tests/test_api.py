import json
import httpx
import pytest

from google.genai import errors, types
from PIL import Image

from timelapse_architect import api
from timelapse_architect.api import (
    ClassifierException,
    Context,
    NoContentException,
    OutOfQuotaException,
    TimelineStep,
)
from timelapse_architect.prompts import NUM_FRAMES
from timelapse_architect.utils import image_from_bytes

from conftest import MockClient, frame_image, image_response, make_steps, text_response


def server_error(code: int = 503) -> errors.ServerError:
    return errors.ServerError(code, {"error": {"code": code, "message": "The model is overloaded.", "status": "UNAVAILABLE"}})

def client_error(code: int, status: str) -> errors.ClientError:
    return errors.ClientError(code, {"error": {"code": code, "message": f"{status} message", "status": status}})


def test_context_requires_key_or_client():
    with pytest.raises(ValueError, match="Must provide either an API key or a client"):
        Context()

def test_context_with_key():
    ctx = Context(api_key="thisIsNotARealKey")
    assert ctx.text_model == "gemini-3-flash-preview"
    assert ctx.image_model == "gemini-2.5-flash-image"


#==============================================================================
# Prompt generation
#==============================================================================

def test_generate_timeline_prompts(context, mock_client):
    steps = context.generate_timeline_prompts("a lighthouse on a cliff")
    assert len(steps) == NUM_FRAMES
    assert all(isinstance(s, TimelineStep) for s in steps)
    assert steps[0].image == "image prompt 1"
    assert steps[7].video == "video prompt 8"

    call = mock_client.models.calls[0]
    assert call["model"] == "mock-text"
    assert "a lighthouse on a cliff" in call["contents"]
    assert call["config"].response_mime_type == "application/json"

def test_generate_timeline_prompts_truncates_extra_steps(context, mock_client):
    mock_client.models.queue.append(text_response(json.dumps(make_steps(10))))
    steps = context.generate_timeline_prompts("subject")
    assert len(steps) == NUM_FRAMES
    assert steps[-1].image == "image prompt 8"

def test_generate_timeline_prompts_too_few_steps(context, mock_client):
    mock_client.models.queue.append(text_response(json.dumps(make_steps(3))))
    with pytest.raises(ValueError, match="Expected 8 timeline steps, received 3"):
        context.generate_timeline_prompts("subject")

def test_generate_timeline_prompts_empty_response(context, mock_client):
    mock_client.models.queue.append(types.GenerateContentResponse(candidates=[]))
    with pytest.raises(NoContentException, match="No response from model."):
        context.generate_timeline_prompts("subject")


#==============================================================================
# Images
#==============================================================================

def test_generate_image(context, mock_client):
    image = context.generate_image("an abandoned house")
    assert isinstance(image, Image.Image)
    assert image.size == (9, 16)

    call = mock_client.models.calls[0]
    assert call["model"] == "mock-image"
    assert call["contents"] == "an abandoned house"
    assert call["config"].image_config.aspect_ratio == "9:16"

def test_generate_image_without_image(context, mock_client):
    mock_client.models.queue.append(text_response("I cannot draw that."))
    with pytest.raises(NoContentException, match="No image generated."):
        context.generate_image("an abandoned house")

def test_edit_image_sends_previous_frame(context, mock_client, pil_image):
    result = context.edit_image("pool filled with water", pil_image)
    assert isinstance(result, Image.Image)

    contents = mock_client.models.calls[0]["contents"]
    assert contents[0].inline_data.mime_type == "image/png"
    sent = image_from_bytes(contents[0].inline_data.data)
    assert sent.size == pil_image.size
    assert sent.convert("RGB").getpixel((0, 0)) == pil_image.getpixel((0, 0))
    assert contents[1].text.startswith("Change this image to match this description: pool filled with water.")

def test_edit_image_falls_back_to_generation(context, mock_client, pil_image):
    mock_client.models.queue.append(text_response("Sure, here is a description instead."))
    result = context.edit_image("pool filled with water", pil_image)
    assert isinstance(result, Image.Image)

    calls = mock_client.models.calls
    assert len(calls) == 2
    assert calls[1]["contents"] == "pool filled with water"


#==============================================================================
# Error handling
#==============================================================================

def test_retry_on_server_error(context, mock_client):
    mock_client.models.queue.extend([server_error(), server_error(500)])
    image = context.generate_image("prompt")
    assert isinstance(image, Image.Image)
    assert len(mock_client.models.calls) == 3

def test_retry_on_transport_error(context, mock_client):
    mock_client.models.queue.append(httpx.ConnectError("connection refused"))
    image = context.generate_image("prompt")
    assert isinstance(image, Image.Image)
    assert len(mock_client.models.calls) == 2

def test_retry_backoff_doubles(context, mock_client, monkeypatch):
    delays = []
    monkeypatch.setattr(api.time, "sleep", delays.append)
    context._retry_delay = 1.0
    mock_client.models.queue.extend([server_error() for _ in range(3)])
    context.generate_image("prompt")
    assert delays == [1.0, 2.0, 4.0]

def test_retry_gives_up(context, mock_client):
    context._max_retries = 2
    mock_client.models.queue.extend([server_error() for _ in range(3)])
    with pytest.raises(errors.ServerError):
        context.generate_image("prompt")
    assert len(mock_client.models.calls) == 3

def test_quota_exhausted_is_not_retried(context, mock_client):
    mock_client.models.queue.append(client_error(429, "RESOURCE_EXHAUSTED"))
    with pytest.raises(OutOfQuotaException) as e:
        context.generate_image("prompt")
    assert "RESOURCE_EXHAUSTED message" in e.value.details
    assert len(mock_client.models.calls) == 1

def test_client_error_propagates(context, mock_client):
    mock_client.models.queue.append(client_error(400, "INVALID_ARGUMENT"))
    with pytest.raises(errors.ClientError):
        context.generate_timeline_prompts("subject")
    assert len(mock_client.models.calls) == 1

def test_blocked_prompt(context, mock_client):
    mock_client.models.queue.append(types.GenerateContentResponse(
        prompt_feedback=types.GenerateContentResponsePromptFeedback(block_reason=types.BlockedReason.SAFETY),
    ))
    with pytest.raises(ClassifierException) as e:
        context.generate_image("something unsafe")
    assert e.value.reason == "SAFETY"
    assert e.value.prompt == "something unsafe"

def test_blocked_output(context, mock_client, pil_image):
    mock_client.models.queue.append(types.GenerateContentResponse(candidates=[
        types.Candidate(finish_reason=types.FinishReason.PROHIBITED_CONTENT)
    ]))
    with pytest.raises(ClassifierException, match="PROHIBITED_CONTENT"):
        context.edit_image("something unsafe", pil_image)

def test_mock_client_images_differ():
    client = MockClient()
    ctx = Context(client=client, text_model="mock-text", image_model="mock-image")
    first = ctx.generate_image("one")
    second = ctx.generate_image("two")
    assert first.getpixel((0, 0)) == frame_image(1).getpixel((0, 0))
    assert second.getpixel((0, 0)) == frame_image(2).getpixel((0, 0))
