import os
import param
import tempfile
import traceback

from PIL import Image
from tqdm import tqdm
from typing import Dict, List, Optional

try:
    import gradio as gr
except ImportError:
    raise ImportError(
        "Failed to import timelapse UI requirements. To use the timelapse UI, install the dependencies with:\n"
        "   pip install --upgrade timelapse_architect[ui]"
    )

from .api import Context
from .prompts import (
    DEFAULT_SUBJECT_TITLE,
    NUM_FRAMES,
    format_prompts,
)
from .timelapse import (
    Project,
    TimelapseArgs,
    TimelapseSession,
)
from .utils import (
    create_video_from_frames,
    download_filename,
    remove_frames_from_path,
    save_frames_zip,
)


PLACEHOLDER_COLOR = (17, 24, 39)
PLACEHOLDER_SIZE = (90, 160)

context: Optional[Context] = None
outputs_path: Optional[str] = None
downloads_path: Optional[str] = None

args = TimelapseArgs()
session = TimelapseSession(args=args)

components: Dict[str, gr.components.Component] = {}
controls: Dict[str, gr.components.Component] = {}
last_project_settings_path: Optional[str] = None
projects: List[Project] = []
project: Optional[Project] = None


def ensure_api_context():
    if context is None:
        raise gr.Error("Not connected to the generative model API")

def format_header_html() -> str:
    return """
        <div style="display:flex; align-items:center; justify-content:space-between; margin-top:8px;">
            <div>
                <div style="font-size:1.5rem; font-weight:700;">Timelapse Architect</div>
                <div style="font-size:0.7rem; text-transform:uppercase; letter-spacing:0.05em; opacity:0.7;">Luxury Edition &middot; Gemini Powered</div>
            </div>
        </div>
    """

def format_status() -> str:
    state = session.state
    if state.is_generating_prompts:
        return "Generating scenario..."
    if state.is_rendering:
        rendered = sum(frame is not None for frame in session.frames)
        return f"Rendering frame {state.rendering_step or 1}/{NUM_FRAMES} ({rendered} frames ready)"
    return ""

def gallery_items() -> list:
    items = []
    for frame_idx, frame in enumerate(session.frames):
        if frame is None:
            items.append((Image.new("RGB", PLACEHOLDER_SIZE, PLACEHOLDER_COLOR), f"{frame_idx + 1}"))
        else:
            items.append((frame, f"{frame_idx + 1} ✓"))
    return items

def prompts_table() -> list:
    return [[idx + 1, step.image, step.video] for idx, step in enumerate(session.prompts)]

def remove_downloads():
    for f in os.listdir(downloads_path):
        os.remove(os.path.join(downloads_path, f))

def scenario_updates() -> dict:
    c = components
    return {
        c["subject"]: gr.update(value=session.subject),
        c["prompts_table"]: gr.update(value=prompts_table(), visible=bool(session.prompts)),
        c["prompts_export"]: gr.update(value=format_prompts(session.prompts), visible=bool(session.prompts)),
        c["generate_button"]: gr.update(value="Regenerate Scenarios" if session.prompts else "Generate Scenario Only"),
    }

def status_updates() -> dict:
    c, state = components, session.state
    rendering = state.is_rendering
    return {
        c["render_button"]: gr.update(visible=not rendering),
        c["stop_button"]: gr.update(visible=rendering, value=f"Stop Rendering ({state.rendering_step}/{NUM_FRAMES})"),
        c["generate_button"]: gr.update(interactive=not rendering and not state.is_generating_prompts),
        c["status"]: gr.update(label="Error" if state.error else "Status", value=state.error or format_status(),
                               visible=bool(state.error) or rendering),
    }

def viewer_updates() -> dict:
    c = components
    idx = session.current_frame
    frame = session.frames[idx]
    state = session.state
    if frame is not None:
        label = f"Frame {idx + 1}/{NUM_FRAMES}"
    elif state.is_rendering and state.rendering_step == idx + 1:
        label = f"Rendering Frame {idx + 1}..."
    else:
        label = f"Frame {idx + 1}/{NUM_FRAMES} (empty)"
    video_prompt = session.prompts[idx].video if frame is not None and idx < len(session.prompts) else ""
    return {
        c["image_out"]: gr.update(value=frame, label=label),
        c["frame_slider"]: gr.update(value=idx + 1),
        c["video_prompt"]: gr.update(value=video_prompt, visible=bool(video_prompt)),
        c["gallery"]: gr.update(value=gallery_items()),
    }

def all_updates() -> dict:
    returns = {}
    returns.update(scenario_updates())
    returns.update(viewer_updates())
    returns.update(status_updates())
    return returns

def all_outputs() -> list:
    names = [
        "subject", "prompts_table", "prompts_export", "generate_button",
        "image_out", "frame_slider", "video_prompt", "gallery",
        "render_button", "stop_button", "status",
    ]
    return [components[n] for n in names]

def viewer_outputs() -> list:
    return [components[n] for n in ("image_out", "frame_slider", "video_prompt", "gallery")]


def ui_from_args(args: param.Parameterized, exclude: Optional[List[str]]=None):
    exclude = exclude or []
    for k, v in args.param.objects().items():
        if k == "name" or k in exclude:
            continue
        if isinstance(v, param.Boolean):
            t = gr.Checkbox(label=v.label, value=getattr(args, k), info=v.doc, interactive=True)
        elif isinstance(v, param.Integer):
            t = gr.Number(label=v.label, value=getattr(args, k), info=v.doc, interactive=True, precision=0)
        elif isinstance(v, param.Number):
            t = gr.Number(label=v.label, value=getattr(args, k), info=v.doc, interactive=True)
        elif isinstance(v, param.Selector):
            t = gr.Dropdown(label=v.label, choices=v.objects, value=getattr(args, k), info=v.doc, interactive=True)
        elif isinstance(v, param.String):
            t = gr.Text(label=v.label, value=getattr(args, k), info=v.doc, interactive=True)
        else:
            raise Exception(f"Unknown parameter type {v} for param {k}")
        controls[k] = t

def apply_controls(values) -> None:
    for k, v in zip(controls.keys(), values):
        setattr(args, k, v)

def args_to_controls() -> dict:
    return {c: gr.update(value=getattr(args, k)) for k, c in controls.items()}


def project_for_subject() -> Project:
    global project, projects
    title = (session.subject or DEFAULT_SUBJECT_TITLE)[:80].strip()
    if project is None or project.title != title:
        project = next((p for p in projects if p.title == title), None) or Project(title)
        if project not in projects:
            projects = sorted(projects + [project], key=lambda p: p.title)
    return project

def project_tab():
    with gr.Row():
        projects_dropdown = gr.Dropdown([p.title for p in projects], label="Project", interactive=True)
        with gr.Column():
            refresh_button = gr.Button("Refresh")
            load_button = gr.Button("Load")
    project_log = gr.Textbox(label="Status", visible=False)

    def refresh_projects():
        ensure_api_context()
        global projects
        projects = Project.list_projects(outputs_path)
        return {
            projects_dropdown: gr.update(choices=[p.title for p in projects], value=None),
            project_log: gr.update(value=f"Found {len(projects)} projects in \"{outputs_path}\"", visible=True),
        }

    def load_project(title: str):
        ensure_api_context()
        global last_project_settings_path, project
        if session.state.is_rendering:
            raise gr.Error("Stop rendering before loading a project")
        project = next((p for p in projects if p.title == title), None)
        if project is None:
            raise gr.Error("Select a project to load")

        session.load_dict(project.settings)
        num_frames = session.load_frames(project.directory(outputs_path))
        last_project_settings_path = project.settings_path

        returns = all_updates()
        returns.update(args_to_controls())
        returns[project_log] = gr.update(value=f"Loaded project '{title}' with {num_frames} frames", visible=True)
        return returns

    refresh_button.click(refresh_projects, outputs=[projects_dropdown, project_log])
    load_outputs = [project_log] + all_outputs() + list(controls.values())
    load_button.click(load_project, inputs=projects_dropdown, outputs=load_outputs)


def render_tab():
    c = components
    with gr.Row():
        with gr.Column(scale=4):
            with gr.Row():
                c["subject"] = gr.Textbox(label="Subject", placeholder="Describe the house (or leave empty for random)...",
                                          value=session.subject, interactive=True, scale=4)
                surprise_button = gr.Button("Surprise Location", scale=1)
            c["generate_button"] = gr.Button("Generate Scenario Only")
            c["render_button"] = gr.Button("Start Auto Render", variant="primary")
            c["stop_button"] = gr.Button("Stop Rendering", variant="stop", visible=False)
            with gr.Row():
                resume = gr.Checkbox(label="Resume", value=False, interactive=True)
                resume_from = gr.Number(label="Resume from frame", value=-1, interactive=True, precision=0,
                                        info="Frame number to resume from, or -1 to resume from the first empty frame")
            c["status"] = gr.Textbox(label="Status", lines=3, visible=False)
            c["prompts_table"] = gr.Dataframe(headers=["Frame", "Image prompt", "Video prompt"], label="Generated Scenario",
                                              value=prompts_table(), wrap=True, interactive=False, visible=bool(session.prompts))
            c["prompts_export"] = gr.Code(label="Scenario text", value=format_prompts(session.prompts),
                                          interactive=False, visible=bool(session.prompts))
            with gr.Accordion("Settings", open=False):
                ui_from_args(args, exclude=["fps", "reverse"])
        with gr.Column(scale=6):
            c["image_out"] = gr.Image(label="Frame 1/8 (empty)", type="pil", interactive=False, height=640)
            with gr.Row():
                prev_button = gr.Button("◀ Previous")
                c["frame_slider"] = gr.Slider(1, NUM_FRAMES, value=1, step=1, label="Frame", interactive=True)
                next_button = gr.Button("Next ▶")
            c["video_prompt"] = gr.Code(label="Video prompt", interactive=False, visible=False)
            c["gallery"] = gr.Gallery(value=gallery_items(), label="Timeline", columns=NUM_FRAMES, height="auto",
                                      object_fit="cover", allow_preview=False)
            with gr.Row():
                download_frame_button = gr.Button("Download Frame")
                download_all_button = gr.Button("Download All")
                clear_button = gr.Button("Clear")
            download_file = gr.File(label="Download", visible=False)

    def set_subject(subject: str):
        session.subject = subject or ""

    def generate_prompts(subject: str):
        ensure_api_context()
        set_subject(subject)
        if session.state.is_rendering:
            raise gr.Error("Cannot regenerate the scenario while rendering")
        session.generate_prompts()
        return all_updates()

    def surprise():
        ensure_api_context()
        if session.state.is_rendering:
            raise gr.Error("Cannot regenerate the scenario while rendering")
        session.randomize()
        return all_updates()

    def render(subject: str, resume: bool, resume_from: int, *render_args):
        global last_project_settings_path
        ensure_api_context()
        if session.state.is_rendering:
            raise gr.Error("Rendering is already in progress")
        set_subject(subject)
        apply_controls(render_args)

        start_frame = 0
        if resume:
            if resume_from == -1:
                start_frame = next((i for i, f in enumerate(session.frames) if f is None), None)
                if start_frame is None:
                    raise gr.Error("All frames are already rendered")
            elif 1 <= resume_from <= NUM_FRAMES:
                start_frame = int(resume_from) - 1
            else:
                raise gr.Error(f"Frame number to resume from must be between 1 and {NUM_FRAMES}, or -1 to resume from the first empty frame")

        # create local folder for the project
        project = project_for_subject()
        outdir = project.directory(outputs_path)
        project_settings_path = project.next_settings_path(outputs_path)

        # delete frames from previous render
        if resume:
            remove_frames_from_path(outdir, start_frame)
        else:
            remove_frames_from_path(outdir)

        progress = tqdm(total=NUM_FRAMES, initial=start_frame)
        try:
            for frame_idx in session.auto_render(out_dir=outdir, start_frame=start_frame):
                if frame_idx is not None:
                    session.current_frame = frame_idx
                    progress.update(1)
                yield all_updates()
        except Exception as e:
            traceback.print_exc()
            session.state.error = f"Rendering terminated early due to exception: {e}"
        finally:
            progress.close()

        if session.prompts:
            project.save_settings(project_settings_path, session.to_dict())
            last_project_settings_path = project_settings_path
        yield all_updates()

    def stop():
        session.stop()
        returns = status_updates()
        returns[c["status"]] = gr.update(label="Status", value="Stopping...", visible=True)
        return returns

    def select_frame(frame_number: int):
        session.select_frame(int(frame_number) - 1)
        return viewer_updates()

    def previous_frame():
        session.previous_frame()
        return viewer_updates()

    def next_frame():
        session.next_frame()
        return viewer_updates()

    def select_gallery(evt: gr.SelectData):
        session.select_frame(evt.index)
        return viewer_updates()

    def download_frame():
        frame = session.frames[session.current_frame]
        if frame is None:
            raise gr.Error("Frame has not been rendered yet")
        path = os.path.join(downloads_path, download_filename(session.current_frame))
        frame.save(path)
        return gr.update(value=path, visible=True)

    def download_all():
        remove_downloads()
        zip_path = save_frames_zip(session.frames, os.path.join(downloads_path, "timelapse_frames.zip"))
        if zip_path is None:
            raise gr.Error("No frames rendered yet")
        return gr.update(value=zip_path, visible=True)

    def clear():
        if session.state.is_rendering:
            raise gr.Error("Stop rendering before clearing the frames")
        session.clear()
        returns = all_updates()
        returns[download_file] = gr.update(value=None, visible=False)
        return returns

    c["generate_button"].click(generate_prompts, inputs=c["subject"], outputs=all_outputs())
    surprise_button.click(surprise, outputs=all_outputs())
    c["render_button"].click(
        render,
        inputs=[c["subject"], resume, resume_from] + list(controls.values()),
        outputs=all_outputs(),
    )
    c["stop_button"].click(stop, outputs=[c["render_button"], c["stop_button"], c["generate_button"], c["status"]])
    c["frame_slider"].release(select_frame, inputs=c["frame_slider"], outputs=viewer_outputs())
    c["gallery"].select(select_gallery, outputs=viewer_outputs())
    prev_button.click(previous_frame, outputs=viewer_outputs())
    next_button.click(next_frame, outputs=viewer_outputs())
    download_frame_button.click(download_frame, outputs=download_file)
    download_all_button.click(download_all, outputs=download_file)
    clear_button.click(clear, outputs=all_outputs() + [download_file])


def post_process_tab():
    with gr.Row():
        with gr.Column():
            fps = gr.Number(label="Output FPS", value=args.param.fps.default, interactive=True, precision=0)
            reverse = gr.Checkbox(label="Reverse", value=args.param.reverse.default, interactive=True)
        with gr.Column():
            video_out = gr.Video(label="Preview video")
            process_button = gr.Button("Compile Preview")
            status = gr.Textbox(lines=3, visible=False)

    def compile_preview(fps: int, reverse: bool):
        if last_project_settings_path is None:
            raise gr.Error("Please render a timelapse first")
        outdir = os.path.dirname(last_project_settings_path)
        output_video = last_project_settings_path.replace(".json", ".mp4")
        try:
            create_video_from_frames(outdir, output_video, fps=int(fps), reverse=reverse)
        except RuntimeError as e:
            return {
                video_out: gr.update(value=None),
                status: gr.update(label="Error", value=f"Error creating video: {e}", visible=True),
            }
        return {
            video_out: gr.update(value=output_video),
            status: gr.update(visible=False),
        }

    process_button.click(compile_preview, inputs=[fps, reverse], outputs=[video_out, status])


def create_ui(api_context: Context, outputs_root_path: str):
    global context, downloads_path, outputs_path, projects
    context, outputs_path = api_context, outputs_root_path
    session.api = context
    args.text_model, args.image_model = context.text_model, context.image_model
    os.makedirs(outputs_path, exist_ok=True)
    downloads_path = tempfile.mkdtemp(prefix="timelapse_")
    projects = Project.list_projects(outputs_path)

    with gr.Blocks(title="Timelapse Architect") as ui:
        gr.HTML(format_header_html())

        with gr.Tab("Render"):
            render_tab()

        with gr.Tab("Project"):
            project_tab()

        with gr.Tab("Post-process"):
            post_process_tab()

    return ui
