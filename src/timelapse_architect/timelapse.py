import glob
import json
import logging
import os
import param
import random
import time

from collections import OrderedDict
from dataclasses import dataclass
from PIL import Image
from typing import Callable, Generator, List, Optional, Sequence, Tuple

from .api import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_TEXT_MODEL,
    ClassifierException,
    Context,
    OutOfQuotaException,
    TimelineStep,
)
from .prompts import (
    ASPECT_RATIO,
    DEFAULT_SUBJECT,
    DEFAULT_SUBJECT_TITLE,
    NUM_FRAMES,
    random_subject,
    resolve_subject,
)
from .utils import (
    frame_filename,
    project_folder_name,
)

logger = logging.getLogger(__name__)
logger.setLevel(level=logging.INFO)

DATA_VERSION = "0.1"
DATA_GENERATOR = "timelapse_architect"


class ModelSettings(param.Parameterized):
    text_model = param.String(default=DEFAULT_TEXT_MODEL, doc="Model used to write the prompt pairs.")
    image_model = param.String(default=DEFAULT_IMAGE_MODEL, doc="Model used to generate and edit the frames.")
    aspect_ratio = param.Selector(
        default=ASPECT_RATIO,
        objects=["9:16", "3:4", "2:3", "1:1", "4:3", "3:2", "16:9"],
        doc="Aspect ratio requested for every frame. Timelapses are vertical by default.",
    )

class RenderSettings(param.Parameterized):
    frame_delay = param.Number(default=0.0, bounds=(0, None), doc="Seconds to wait between frame requests, for rate limited keys.")

class VideoOutputSettings(param.Parameterized):
    fps = param.Integer(default=2, bounds=(1, 60), doc="Frame rate of the preview video.")
    reverse = param.Boolean(default=False, doc="Whether to reverse the preview video or not.")

class TimelapseArgs(ModelSettings, RenderSettings, VideoOutputSettings):
    """
    Aggregates parameters from the multiple settings classes.
    """


@dataclass
class GenerationState:
    is_generating_prompts: bool = False
    is_rendering: bool = False
    rendering_step: int = 0 # 1-based frame being rendered, 0 when idle
    error: Optional[str] = None


def args_to_dict(args: param.Parameterized) -> OrderedDict:
    values = OrderedDict(args.param.values())
    values.pop("name", None)
    return values

def steps_from_json(data: Sequence[dict]) -> List[TimelineStep]:
    return [TimelineStep.model_validate(item) for item in data]

def steps_to_json(steps: Sequence[TimelineStep]) -> List[dict]:
    return [step.model_dump() for step in steps]


class Timelapse:
    """
    Renders the frames of a timelapse in order. The first frame is generated
    from its text prompt, every following frame is an edit of the frame before
    it so the camera and layout stay fixed across the sequence.
    """
    def __init__(
        self,
        api_context: Context,
        prompts: Sequence[TimelineStep],
        args: Optional[TimelapseArgs] = None,
        out_dir: Optional[str] = None,
        frames: Optional[List[Optional[Image.Image]]] = None,
        should_stop: Optional[Callable[[], bool]] = None,
        on_frame_start: Optional[Callable[[int], None]] = None,
    ):
        if len(prompts) < NUM_FRAMES:
            raise ValueError(f"Timelapse requires {NUM_FRAMES} prompts, got {len(prompts)}")

        self.api = api_context
        self.prompts = list(prompts)[:NUM_FRAMES]
        self.args = args or TimelapseArgs()
        self.out_dir = out_dir
        self.frames: List[Optional[Image.Image]] = frames if frames is not None else [None] * NUM_FRAMES
        self.should_stop = should_stop or (lambda: False)
        self.on_frame_start = on_frame_start
        self.start_frame_idx: int = 0

        if self.out_dir is not None:
            os.makedirs(self.out_dir, exist_ok=True)

    def get_frame_filename(self, frame_idx: int) -> Optional[str]:
        return os.path.join(self.out_dir, frame_filename(frame_idx)) if self.out_dir else None

    def load_frame(self, frame_idx: int) -> Optional[Image.Image]:
        """Frame from memory, falling back to the copy saved in out_dir."""
        if self.frames[frame_idx] is not None:
            return self.frames[frame_idx]
        path = self.get_frame_filename(frame_idx)
        if path and os.path.exists(path):
            frame = Image.open(path)
            frame.load()
            self.frames[frame_idx] = frame
            return frame
        return None

    def render(self, start_frame: int = 0) -> Generator[Image.Image, None, None]:
        if not 0 <= start_frame < NUM_FRAMES:
            raise ValueError(f"start_frame must be between 0 and {NUM_FRAMES - 1}")
        self.start_frame_idx = start_frame

        prev_frame = self.load_frame(start_frame - 1) if start_frame > 0 else None

        for frame_idx in range(start_frame, NUM_FRAMES):
            if self.should_stop():
                logger.info(f"Rendering stopped before frame {frame_idx + 1}")
                break
            if self.on_frame_start is not None:
                self.on_frame_start(frame_idx + 1)
            if frame_idx > start_frame and self.args.frame_delay > 0:
                time.sleep(self.args.frame_delay)

            prompt = self.prompts[frame_idx].image
            if frame_idx == 0:
                frame = self.api.generate_image(prompt)
            else:
                if prev_frame is None:
                    raise RuntimeError("Previous frame missing for edit operation")
                frame = self.api.edit_image(prompt, prev_frame)

            if frame is None:
                raise RuntimeError(f"Failed to render frame {frame_idx + 1}")

            self.frames[frame_idx] = frame
            self.save_to_out_dir(frame_idx, frame)
            prev_frame = frame
            yield frame

    def save_to_out_dir(self, frame_idx: int, image: Image.Image):
        if self.out_dir is not None:
            image.save(self.get_frame_filename(frame_idx))


class TimelapseSession:
    """State behind one timelapse editor: subject, prompts, frames and progress."""

    def __init__(self, api_context: Optional[Context] = None, args: Optional[TimelapseArgs] = None):
        self.api = api_context
        self.args = args or TimelapseArgs()
        self.subject: str = ""
        self.prompts: List[TimelineStep] = []
        self.frames: List[Optional[Image.Image]] = [None] * NUM_FRAMES
        self.current_frame: int = 0
        self.state = GenerationState()
        self._stop_requested = False

    def _ensure_api(self) -> Context:
        if self.api is None:
            raise RuntimeError("Not connected to the generative model API")
        self.api.text_model = self.args.text_model
        self.api.image_model = self.args.image_model
        self.api.aspect_ratio = self.args.aspect_ratio
        return self.api

    def generate_prompts(self, override: Optional[str] = None) -> bool:
        """
        Request a new set of prompt pairs for the current subject.

        :param override: Subject to use instead of the one typed by the user.
        :return: True when prompts were generated, False when the error was recorded in the state.
        """
        subject = resolve_subject(self.subject, override)
        self.state.is_generating_prompts = True
        self.state.error = None
        try:
            self.prompts = self._ensure_api().generate_timeline_prompts(subject)
            if not self.subject.strip() and not (override and override.strip()):
                self.subject = DEFAULT_SUBJECT_TITLE
            return True
        except Exception as e:
            logger.error(f"Error generating prompts: {e}")
            self.state.error = str(e) or "Failed to generate prompts"
            return False
        finally:
            self.state.is_generating_prompts = False

    def randomize(self, rng: random.Random = random) -> bool:
        self.subject = random_subject(rng)
        return self.generate_prompts(override=self.subject)

    def auto_render(self, out_dir: Optional[str] = None, start_frame: int = 0) -> Generator[Optional[int], None, None]:
        """
        Render the whole timelapse, generating prompts first when there are none.

        Yields the index of every newly rendered frame, and None for state
        changes without a new frame, so a UI can refresh as progress is made.
        Errors end the render and are recorded in `state.error`; frames
        rendered before the error are kept.
        """
        if self.state.is_rendering:
            return
        self._stop_requested = False
        self.state.is_rendering = True
        self.state.error = None
        yield None

        try:
            if not self.prompts:
                try:
                    self.prompts = self._ensure_api().generate_timeline_prompts(self.subject.strip() or DEFAULT_SUBJECT)
                except Exception as e:
                    logger.error(f"Error generating prompts: {e}")
                    self.state.error = f"Failed to auto-generate prompts: {e}"
                    return
                yield None

            def on_frame_start(step: int):
                self.state.rendering_step = step

            timelapse = Timelapse(
                self._ensure_api(),
                self.prompts,
                args=self.args,
                out_dir=out_dir,
                frames=self.frames,
                should_stop=lambda: self._stop_requested,
                on_frame_start=on_frame_start,
            )
            for frame_idx, _ in enumerate(timelapse.render(start_frame), start=start_frame):
                yield frame_idx
        except ClassifierException as e:
            self.state.error = "Rendering terminated early due to safety filter."
            if e.prompt is not None:
                self.state.error += "\nPlease revise your prompt: " + e.prompt
        except OutOfQuotaException as e:
            self.state.error = f"Rendering terminated early, out of quota.\n{e.details}"
        except Exception as e:
            logger.error(f"Rendering stopped due to error: {e}")
            self.state.error = str(e) or "Rendering stopped due to error"
        finally:
            self.state.is_rendering = False
            self.state.rendering_step = 0

    def stop(self):
        self._stop_requested = True
        self.state.is_rendering = False

    def clear(self):
        self.frames[:] = [None] * NUM_FRAMES
        self.current_frame = 0
        self.state.error = None

    def select_frame(self, frame_idx: int) -> int:
        self.current_frame = frame_idx % NUM_FRAMES
        return self.current_frame

    def next_frame(self) -> int:
        return self.select_frame(self.current_frame + 1)

    def previous_frame(self) -> int:
        return self.select_frame(self.current_frame - 1)

    def saved_frames(self) -> List[Tuple[int, Image.Image]]:
        return [(idx, frame) for idx, frame in enumerate(self.frames) if frame is not None]

    def to_dict(self) -> OrderedDict:
        save_dict = OrderedDict()
        save_dict['version'] = DATA_VERSION
        save_dict['generator'] = DATA_GENERATOR
        save_dict.update(args_to_dict(self.args))
        save_dict['subject'] = self.subject
        save_dict['prompts'] = steps_to_json(self.prompts)
        return save_dict

    def load_dict(self, data: dict):
        for k in args_to_dict(self.args):
            if k in data:
                setattr(self.args, k, data[k])
        self.subject = data.get('subject', "")
        self.prompts = steps_from_json(data.get('prompts', []))

    def load_frames(self, frames_dir: str) -> int:
        """Load frame_*.png files saved by a previous render. Returns the number of frames found."""
        self.clear()
        count = 0
        for frame_idx in range(NUM_FRAMES):
            path = os.path.join(frames_dir, frame_filename(frame_idx))
            if os.path.exists(path):
                frame = Image.open(path)
                frame.load()
                self.frames[frame_idx] = frame
                count += 1
        return count


class Project():
    def __init__(self, title: str, settings: Optional[dict] = None) -> None:
        self.folder = project_folder_name(title)
        self.settings = settings or {}
        self.settings_path: Optional[str] = None
        self.title = title

    @classmethod
    def list_projects(cls, outputs_path: str) -> List["Project"]:
        projects = []
        if not os.path.isdir(outputs_path):
            return projects
        for path in sorted(os.listdir(outputs_path)):
            directory = os.path.join(outputs_path, path)
            if not os.path.isdir(directory):
                continue

            json_files = glob.glob(os.path.join(directory, '*.json'))
            json_files = sorted(json_files, key=lambda x: os.stat(x).st_mtime)
            if not json_files:
                continue

            filename = os.path.basename(json_files[-1])
            if not '(' in filename:
                continue

            project = cls(filename[:filename.rfind('(')-1].strip())
            project.settings_path = os.path.join(directory, filename)
            try:
                with open(project.settings_path, 'r', encoding='utf-8') as f:
                    project.settings = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Skipping project file {filename}: {e}")
                continue
            projects.append(project)
        return projects

    def directory(self, outputs_path: str) -> str:
        return os.path.join(outputs_path, self.folder)

    def next_settings_path(self, outputs_path: str) -> str:
        """Each render gets a unique run index."""
        outdir = self.directory(outputs_path)
        os.makedirs(outdir, exist_ok=True)
        run_index = 0
        while True:
            project_settings_path = os.path.join(outdir, f"{self.folder} ({run_index}).json")
            if not os.path.exists(project_settings_path):
                return project_settings_path
            run_index += 1

    def save_settings(self, settings_path: str, settings: dict):
        self.settings = settings
        self.settings_path = settings_path
        with open(settings_path, 'w', encoding='utf-8') as f:
            json.dump(settings, f, ensure_ascii=False, indent=4)
