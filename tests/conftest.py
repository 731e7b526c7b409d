# Test fixtures and configuration
import base64
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

CANVAS = (1024, 1536)
SKIN = (200, 150, 120)
BACKGROUND = (40, 40, 40)


def png_bytes(image: Image.Image) -> bytes:
    output = io.BytesIO()
    image.save(output, format="PNG")
    return output.getvalue()


def data_url(data: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(data).decode()


def person_image(boxes, size=CANVAS, background=BACKGROUND) -> Image.Image:
    """Dark RGB canvas with skin-tone rectangles standing in for people."""
    image = Image.new("RGB", size, background)
    for box in boxes:
        image.paste(SKIN, box)
    return image


@pytest.fixture
def canvas_size():
    return CANVAS


@pytest.fixture
def red_photo():
    """Solid red 1024x1536 person photo."""
    return Image.new("RGB", CANVAS, (255, 0, 0))


@pytest.fixture
def red_png(red_photo):
    return png_bytes(red_photo)


@pytest.fixture
def one_person_png():
    """One skin block in the middle of the canvas."""
    return png_bytes(person_image([(412, 300, 612, 1100)]))


@pytest.fixture
def two_people_png():
    """Two skin blocks far enough apart to stay separate regions."""
    return png_bytes(person_image([(100, 300, 260, 1100), (760, 300, 920, 1100)]))


@pytest.fixture
def no_skin_png():
    return png_bytes(Image.new("RGB", CANVAS, (10, 60, 200)))


@pytest.fixture
def garment_image():
    """Blue RGBA shirt art on a transparent background."""
    image = Image.new("RGBA", (300, 360), (0, 0, 0, 0))
    image.paste((20, 40, 220, 255), (30, 30, 270, 330))
    return image


@pytest.fixture
def garment_png(garment_image):
    return png_bytes(garment_image)


@pytest.fixture
def opaque_garment_png():
    """Garment photo without an alpha channel."""
    return png_bytes(Image.new("RGB", (300, 360), (220, 220, 30)))


@pytest.fixture
def person_cutout():
    """Background-removed person: opaque figure, transparent surroundings."""
    image = Image.new("RGBA", CANVAS, (0, 0, 0, 0))
    image.paste((200, 150, 120, 255), (312, 200, 712, 1400))
    return image


@pytest.fixture
def person_cutout_png(person_cutout):
    return png_bytes(person_cutout)
