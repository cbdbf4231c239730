import base64
import glob
import io
import logging
import os
import re
import subprocess
import zipfile

from PIL import Image
from typing import Optional, Sequence


logger = logging.getLogger(__name__)
logger.setLevel(level=logging.INFO)

DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


#==============================================================================
# Image conversion
#==============================================================================

def image_from_bytes(data: bytes) -> Image.Image:
    """
    Decode an encoded image (PNG, JPEG, ...) into a PIL image.
    :param data: The encoded image bytes.
    :return: The decoded image, fully loaded so the buffer can be released.
    """
    image = Image.open(io.BytesIO(data))
    image.load()
    return image

def image_to_png_bytes(image: Image.Image) -> bytes:
    """
    Compresses an image to a PNG byte array.
    :param image: The image to convert.
    :return: The PNG byte array.
    """
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    buf.seek(0)
    return buf.getvalue()

def image_to_data_url(image: Image.Image) -> str:
    encoded = base64.b64encode(image_to_png_bytes(image)).decode("utf-8")
    return f"data:image/png;base64,{encoded}"

def data_url_to_image(url: str) -> Image.Image:
    """
    Decode a base64 image, with or without a data URL prefix.
    :param url: `data:image/<type>;base64,<data>` string or bare base64 data.
    :return: The decoded image.
    """
    return image_from_bytes(base64.b64decode(DATA_URL_PREFIX.sub("", url)))


#==============================================================================
# Frame files
#==============================================================================

def frame_filename(frame_idx: int, prefix: str = "frame") -> str:
    return f"{prefix}_{frame_idx:05d}.png"

def download_filename(frame_idx: int) -> str:
    return f"timelapse_frame_{frame_idx + 1}.png"

def project_folder_name(title: str) -> str:
    return title.replace("/", "_").replace("\\", "_").replace(":", "")

def remove_frames_from_path(path: str, leave_first: Optional[int] = None):
    if os.path.isdir(path):
        frames = sorted(glob.glob(os.path.join(path, "frame_*.png")))
        if leave_first:
            frames = frames[leave_first:]
        for f in frames:
            os.remove(f)

def save_frames_zip(frames: Sequence[Optional[Image.Image]], zip_path: str) -> Optional[str]:
    """
    Write all rendered frames into a single zip archive.
    :param frames: Frame images in timeline order, None for frames not rendered yet.
    :param zip_path: Destination of the archive.
    :return: The archive path, or None when there is nothing to save.
    """
    if not any(frame is not None for frame in frames):
        return None

    with zipfile.ZipFile(zip_path, "w") as archive:
        for frame_idx, frame in enumerate(frames):
            if frame is not None:
                archive.writestr(download_filename(frame_idx), image_to_png_bytes(frame))
    logger.info(f"wrote frames archive to {zip_path}")
    return zip_path


#==============================================================================
# Video
#==============================================================================

def create_video_from_frames(frames_path: str, mp4_path: str, fps: int=2, reverse: bool=False):
    """
    Convert the rendered frames to a preview video file using ffmpeg.

    :param frames_path: The path to the directory containing the image frames named frame_00000.png, frame_00001.png, etc.
    :param mp4_path: The path to save the output video file.
    :param fps: The frames per second for the output video. Default is 2, so each renovation step stays readable.
    :param reverse: A flag to reverse the order of the frames in the output video. Default is False.
    """
    filters = [f"fps={fps}", "pad=ceil(iw/2)*2:ceil(ih/2)*2"]
    if reverse:
        filters.append("reverse")

    cmd = [
        'ffmpeg',
        '-y',
        '-vcodec', 'png',
        '-framerate', str(fps),
        '-start_number', str(0),
        '-i', os.path.join(frames_path, "frame_%05d.png"),
        '-c:v', 'libx264',
        '-vf', ",".join(filters),
        '-pix_fmt', 'yuv420p',
        '-crf', '17',
        mp4_path
    ]

    process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    _, stderr = process.communicate()
    if process.returncode != 0:
        raise RuntimeError(stderr.decode("utf-8", errors="replace"))
