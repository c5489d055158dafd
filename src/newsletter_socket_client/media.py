from __future__ import annotations

from io import BytesIO

from PIL import Image

from .models import ProfilePicture

PROFILE_PICTURE_SIZE = 640
PROFILE_PICTURE_QUALITY = 50


def generate_profile_picture(raw: bytes) -> ProfilePicture:
    """Encode an image as a square JPEG suitable for a channel picture.

    The image is centre-cropped to a square before it is resized.
    """
    with Image.open(BytesIO(raw)) as img:
        width, height = img.size
        side = min(width, height)
        left = (width - side) // 2
        top = (height - side) // 2
        square = img.convert("RGB").crop((left, top, left + side, top + side))
        square = square.resize((PROFILE_PICTURE_SIZE, PROFILE_PICTURE_SIZE))
        out = BytesIO()
        square.save(out, format="JPEG", quality=PROFILE_PICTURE_QUALITY)
    return ProfilePicture(img=out.getvalue())
