import random

from typing import Optional, Sequence

NUM_FRAMES = 8
ASPECT_RATIO = "9:16"

DEFAULT_SUBJECT = "Aerial drone view of an old abandoned house on a large plot of land"
DEFAULT_SUBJECT_TITLE = "Abandoned House (Aerial Drone View)"
FALLBACK_SUBJECT = "Aerial drone view of an old abandoned house"
TRANSFORMATION = "Luxury Renovation Drone View"

STYLES = [
    "Rumah gaya Victorian kuno terbengkalai",
    "Vila tropis modern yang rusak parah",
    "Gubuk kayu reyot berlumut",
    "Rumah Joglo tradisional tua",
    "Bangunan kolonial Belanda usang",
    "Kastil kecil gothic yang menyeramkan",
    "Rumah panggung tua di atas air",
    "Kabin hutan yang tertutup tanaman liar",
    "Rumah kaca pecah terbengkalai",
    "Bunker beton tua penuh graffiti",
    "Rumah kontainer berkarat",
    "Kuil kecil kuno yang terlupakan",
    "Stasiun kereta api tua yang mati",
    "Mercusuar pantai yang terisolasi",
    "Gudang industri bata merah tua",
    "Rumah pohon raksasa yang lapuk",
    "Observatorium tua di bukit",
    "Benteng militer pesisir usang",
    "Rumah tanah liat (adobe) gurun",
    "Mansion modern minimalis yang hancur",
]

LOCATIONS = [
    "di tepi tebing pantai yang curam",
    "di tengah hutan pinus yang berkabut tebal",
    "di puncak bukit dengan pemandangan pegunungan",
    "di pulau tropis terpencil saat badai",
    "di tengah padang rumput ilalang yang luas",
    "di pinggir danau yang tenang dan misterius",
    "di tengah kota mati post-apocalyptic",
    "di area persawahan terasering yang hijau",
    "di kaki gunung berapi yang aktif",
    "di tengah gurun pasir yang tandus",
    "di tepi air terjun raksasa",
    "di tengah ladang bunga lavender",
    "di atas bongkahan es di kutub",
    "di lembah sungai berkabut",
    "di tepi kawah meteor kuno",
    "di pulau karang atol biru",
    "di tengah rawa-rawa bakau",
    "di tebing ngarai merah (canyon)",
    "di sabana Afrika dengan pohon baobab",
    "di area tundra beku yang sunyi",
]

RENOVATION_INSTRUCTIONS = """
STRICTLY FOLLOW THIS LUXURY DRONE RENOVATION TIMELINE (Maintain original building shape and spatial layout exactly):

CRITICAL SPATIAL RULES:
1. The swimming pool MUST always be located on the RIGHT side of the house (or a consistent specific spot).
2. The main house structure position MUST NOT change.
3. The driveway/road MUST always be on the LEFT/FRONT.
4. Do not flip or mirror the image. Keep camera angle locked.

Step 1: Image: Aerial view of a very old, abandoned house. Roof collapsed. Empty yard on the RIGHT side full of weeds. Driveway path on the left.
Video Prompt: Cinematic timelapse aerial drone hover, wind blowing through tall grass, gloomy abandoned house, static camera.

Step 2: Image: Land clearing. Heavy machinery (tractors) clearing weeds. The yard on the RIGHT side is cleared to bare earth. Excavator arriving.
Video Prompt: Timelapse of heavy machinery clearing vegetation, tractors moving, grass disappearing, dust rising, construction site activation.

Step 3: Image: Excavation. Excavator digging a rectangular hole for the pool on the RIGHT side of the house. Workers fixing the roof structure.
Video Prompt: Timelapse of excavator digging pool area on the right, earth moving, workers swarming roof for repairs, rapid construction activity.

Step 4: Image: Hardscaping. Concrete shell of the pool visible on the RIGHT side. Paving for driveway on the LEFT being laid.
Video Prompt: Timelapse of concrete pouring for pool shell on the right, road paving progress on the left, busy construction site.

Step 5: Image: Exterior finishing. New modern roof installed. Pool on the RIGHT side is tiled (empty). Walls plastered.
Video Prompt: Timelapse of roof completion, wall plastering, windows being fitted, pool tiling, workers on scaffolding moving fast.

Step 6: Image: Filling & Greenery. Pool on the RIGHT side filled with blue water. Grass planted around the pool. House painted white/cream.
Video Prompt: Timelapse of painting walls, water filling the swimming pool on the right, instant landscaping growth, grass becoming green.

Step 7: Image: Furnishing. Deck chairs placed by the pool on the RIGHT. Luxury cars parked on the LEFT driveway. Garden lights installed.
Video Prompt: Timelapse of finishing touches, furniture appearing by the pool, lights turning on, cleaning up debris, polished look.

Step 8: Image: FINAL REVEAL. Luxury house. Sparkling pool on the RIGHT side. Luxury cars on the LEFT. Beautiful garden. EXACT same layout as Step 1.
Video Prompt: Final slow cinematic drone reveal, shimmering pool water on the right, swaying trees, luxury atmosphere, no workers, high-end real estate showcase.

Constraint: "Drone view", "Locked Camera", "Consistent Layout" is MANDATORY.
"""

EDIT_PROMPT_TEMPLATE = (
    "Change this image to match this description: {prompt}. "
    "Keep exact same composition, background, and camera angle. High quality, realistic."
)


def random_subject(rng: random.Random = random) -> str:
    """Pick a random building style and location for the subject field."""
    style = rng.choice(STYLES)
    location = rng.choice(LOCATIONS)
    return f"Aerial drone view of {style} {location}"

def resolve_subject(subject: Optional[str], override: Optional[str] = None) -> str:
    for candidate in (override, subject):
        if candidate and candidate.strip():
            return candidate.strip()
    return DEFAULT_SUBJECT

def build_timeline_prompt(subject: Optional[str]) -> str:
    """
    Build the instruction sent to the text model for the 8 prompt pairs.

    :param subject: Description of the building and its surroundings. Empty
        values fall back to a generic abandoned house.
    :return: The full prompt text.
    """
    effective_subject = subject.strip() if subject and subject.strip() else FALLBACK_SUBJECT
    return (
        "Act as an expert timelapse photographer and prompt engineer.\n"
        f"Subject: \"{effective_subject}\"\n"
        f"Transformation: \"{TRANSFORMATION}\"\n"
        f"{RENOVATION_INSTRUCTIONS}\n"
        f"Create {NUM_FRAMES} progressive prompts for a vertical {ASPECT_RATIO} timelapse.\n"
    )

def build_edit_prompt(prompt: str) -> str:
    return EDIT_PROMPT_TEMPLATE.format(prompt=prompt)

def format_prompts(steps: Sequence) -> str:
    """Plain text export of the prompt pairs, one block per frame."""
    blocks = []
    for idx, step in enumerate(steps):
        blocks.append(
            f"Frame {idx + 1}/{len(steps)}\n"
            f"Image: {step.image}\n"
            f"Video: {step.video}"
        )
    return "\n\n".join(blocks)
