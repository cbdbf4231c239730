#!/bin/which python3

# fmt: off

import json
import logging
import os
import sys

from argparse import ArgumentParser, Namespace
from dotenv import load_dotenv
from tqdm import tqdm

load_dotenv()

from timelapse_architect.api import (
    DEFAULT_IMAGE_MODEL,
    DEFAULT_TEXT_MODEL,
    Context,
)
from timelapse_architect.prompts import (
    NUM_FRAMES,
    format_prompts,
    random_subject,
    resolve_subject,
)
from timelapse_architect.timelapse import (
    Timelapse,
    TimelapseArgs,
    steps_from_json,
    steps_to_json,
)
from timelapse_architect.utils import create_video_from_frames


logger = logging.getLogger(__name__)
logger.setLevel(level=logging.INFO)

# Set up logging for output to console.
fh = logging.StreamHandler()
fh_formatter = logging.Formatter(
    "%(asctime)s %(levelname)s %(filename)s(%(process)d) - %(message)s"
)
fh.setFormatter(fh_formatter)
logging.getLogger("timelapse_architect").addHandler(fh)
if not __name__.startswith("timelapse_architect"):
    # under `python -m` this module logs as __main__, outside the package logger
    logger.addHandler(fh)


def get_api_key() -> str:
    for var in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"):
        value = os.getenv(var, "")
        if value:
            return value
    return ""

def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="timelapse_architect")
    subparsers = parser.add_subparsers(dest='command')

    parser_prompts = subparsers.add_parser('prompts', help="generate the 8 image/video prompt pairs")
    parser_prompts.add_argument(
        "--random", "-r", action="store_true", help="use a random building style and location"
    )
    parser_prompts.add_argument(
        "--output", "-o", type=str, default=None, help="write the prompts to this JSON file"
    )
    parser_prompts.add_argument("subject", nargs="*")

    parser_render = subparsers.add_parser('render', help="generate prompts and render all frames")
    parser_render.add_argument(
        "--random", "-r", action="store_true", help="use a random building style and location"
    )
    parser_render.add_argument(
        "--prompts", "-p", type=str, default=None, help="JSON file with prompts from the 'prompts' command"
    )
    parser_render.add_argument(
        "--output", "-o", type=str, default="timelapse", help="[timelapse] output folder for frames"
    )
    parser_render.add_argument(
        "--start_frame", "-s", type=int, default=1, help="[1] frame to start from, earlier frames are read from the output folder"
    )
    parser_render.add_argument(
        "--frame_delay", type=float, default=0.0, help="[0] seconds to wait between frame requests"
    )
    parser_render.add_argument(
        "--video", action="store_true", help="compile a preview MP4 with ffmpeg"
    )
    parser_render.add_argument(
        "--fps", type=int, default=2, help="[2] frame rate of the preview video"
    )
    parser_render.add_argument("subject", nargs="*")

    parser_ui = subparsers.add_parser('ui', help="serve the Gradio UI")
    parser_ui.add_argument("--share", action="store_true", help="create shareable UI link")
    parser_ui.add_argument("--output", "-o", type=str, default="outputs", help="[outputs] root output folder")

    for p in (parser_prompts, parser_render, parser_ui):
        p.add_argument(
            "--text_model", type=str, default=os.getenv("TIMELAPSE_TEXT_MODEL", DEFAULT_TEXT_MODEL),
            help=f"[{DEFAULT_TEXT_MODEL}] model used to write prompts",
        )
        p.add_argument(
            "--image_model", type=str, default=os.getenv("TIMELAPSE_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            help=f"[{DEFAULT_IMAGE_MODEL}] model used to render frames",
        )
    return parser

def subject_from_args(args: Namespace) -> str:
    if args.random:
        subject = random_subject()
        logger.info(f"random subject: {subject}")
        return subject
    return resolve_subject(" ".join(args.subject))

def run_prompts(context: Context, args: Namespace):
    steps = context.generate_timeline_prompts(subject_from_args(args))
    print(format_prompts(steps))
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(steps_to_json(steps), f, ensure_ascii=False, indent=4)
        logger.info(f"wrote prompts to {args.output}")

def saved_prompts_path(args: Namespace) -> str:
    return os.path.join(args.output, "prompts.json")

def run_render(context: Context, args: Namespace):
    if args.prompts or args.start_frame > 1:
        # resumed renders keep the scenario of the frames already on disk
        prompts_path = args.prompts or saved_prompts_path(args)
        with open(prompts_path, "r", encoding="utf-8") as f:
            steps = steps_from_json(json.load(f))
        logger.info(f"loaded prompts from {prompts_path}")
    else:
        steps = context.generate_timeline_prompts(subject_from_args(args))
        with open(saved_prompts_path(args), "w", encoding="utf-8") as f:
            json.dump(steps_to_json(steps), f, ensure_ascii=False, indent=4)

    settings = TimelapseArgs(
        text_model=args.text_model,
        image_model=args.image_model,
        frame_delay=args.frame_delay,
        fps=args.fps,
    )
    timelapse = Timelapse(context, steps, args=settings, out_dir=args.output)
    start_frame = args.start_frame - 1
    try:
        for frame in tqdm(timelapse.render(start_frame), initial=start_frame, total=NUM_FRAMES):
            pass
    except KeyboardInterrupt:
        logger.warning("rendering interrupted, frames rendered so far are kept")
        return

    if args.video:
        mp4_path = os.path.join(args.output, "timelapse.mp4")
        create_video_from_frames(args.output, mp4_path, fps=args.fps)
        logger.info(f"wrote preview video to {mp4_path}")

def run_ui(context: Context, args: Namespace):
    from timelapse_architect.timelapse_ui import create_ui
    ui = create_ui(context, args.output)
    ui.queue(max_size=2)
    ui.launch(share=args.share, show_error=True)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    api_key = get_api_key()
    if not api_key:
        logger.warning(
            "GEMINI_API_KEY environment variable needs to be set. You can"
            " create a key in Google AI Studio."
        )
        sys.exit(1)

    context = Context(api_key=api_key, text_model=args.text_model, image_model=args.image_model)

    if args.command == "prompts":
        run_prompts(context, args)
    elif args.command == "render":
        if not 1 <= args.start_frame <= NUM_FRAMES:
            parser.error(f"--start_frame must be between 1 and {NUM_FRAMES}")
        if args.start_frame > 1 and not args.prompts and not os.path.exists(saved_prompts_path(args)):
            parser.error(f"--start_frame needs the prompts of the earlier frames, pass --prompts or keep {saved_prompts_path(args)}")
        os.makedirs(args.output, exist_ok=True)
        run_render(context, args)
    elif args.command == "ui":
        run_ui(context, args)


if __name__ == "__main__":
    main()
