import pytest

gr = pytest.importorskip("gradio")

from timelapse_architect import timelapse_ui
from timelapse_architect.prompts import NUM_FRAMES
from timelapse_architect.timelapse import TimelapseArgs, steps_from_json

from conftest import make_steps


def test_create_ui(context, tmp_path):
    ui = timelapse_ui.create_ui(context, str(tmp_path / "outputs"))
    assert isinstance(ui, gr.Blocks)
    assert (tmp_path / "outputs").is_dir()
    assert timelapse_ui.args.text_model == "mock-text"
    assert set(timelapse_ui.controls) == {"text_model", "image_model", "aspect_ratio", "frame_delay"}

def test_gallery_placeholders(pil_image):
    timelapse_ui.session.clear()
    timelapse_ui.session.frames[1] = pil_image
    items = timelapse_ui.gallery_items()
    assert len(items) == NUM_FRAMES
    assert items[1] == (pil_image, "2 ✓")
    assert items[0][1] == "1"
    timelapse_ui.session.clear()

def test_format_status():
    session = timelapse_ui.session
    session.state.is_rendering = True
    session.state.rendering_step = 3
    try:
        assert timelapse_ui.format_status() == f"Rendering frame 3/{NUM_FRAMES} (0 frames ready)"
    finally:
        session.state.is_rendering = False
        session.state.rendering_step = 0
    assert timelapse_ui.format_status() == ""

def test_prompts_table():
    timelapse_ui.session.prompts = steps_from_json(make_steps())
    table = timelapse_ui.prompts_table()
    assert table[0] == [1, "image prompt 1", "video prompt 1"]
    assert len(table) == NUM_FRAMES
    timelapse_ui.session.prompts = []

def test_ui_from_args_without_exclude(monkeypatch):
    monkeypatch.setattr(timelapse_ui, "controls", {})
    with gr.Blocks():
        timelapse_ui.ui_from_args(TimelapseArgs(fps=5))
    assert set(timelapse_ui.controls) == {"text_model", "image_model", "aspect_ratio", "frame_delay", "fps", "reverse"}
    assert timelapse_ui.controls["fps"].value == 5
