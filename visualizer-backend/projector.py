"""
Deterministic isometric projection of a flat floor plan.

The projection is the structural reference handed to the image generator and
the guaranteed fallback when no generated render is accepted. Everything here
is pure Pillow work: same input bytes, same output bytes.
"""

import io
import math
import base64
import binascii
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from config import (
    SKEW_X,
    SCALE_Y,
    PROJECTION_PADDING,
    EXTRUSION_LAYERS,
    EXTRUSION_STEP,
    EXTRUSION_MAX_OPACITY,
)
from errors import DecodeError

BACKGROUND = (255, 255, 255, 255)
SLAB_COLOR = (58, 62, 72)


def parse_data_url(data_url: str) -> bytes:
    """Return the raw bytes embedded in a ``data:<mime>;base64,<payload>`` URI."""
    if not data_url or not data_url.startswith("data:") or "," not in data_url:
        raise DecodeError("Image reference is not a data URI.")
    header, payload = data_url.split(",", 1)
    if not header.endswith(";base64"):
        raise DecodeError("Only base64 data URIs are supported.")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 image payload: {e}")


def to_data_url(image_bytes: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def load_image(image_bytes: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode floor plan image: {e}")
    return img


def read_dimensions(image_bytes: bytes) -> Tuple[int, int]:
    return load_image(image_bytes).size


def _to_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def projected_size(width: int, height: int) -> Tuple[int, int]:
    """Canvas size of the projection for a ``width`` x ``height`` plan."""
    out_w = math.ceil(width + abs(SKEW_X) * height + 2 * PROJECTION_PADDING)
    out_h = math.ceil(height * SCALE_Y + 2 * PROJECTION_PADDING)
    return out_w, out_h


def _shear_coefficients(height: int) -> Tuple[float, ...]:
    # Forward map: (x, y) -> (x + SKEW_X*y + off_x, SCALE_Y*y + pad).
    # PIL wants the inverse, output pixel -> input pixel.
    pad = PROJECTION_PADDING
    off_x = pad + (abs(SKEW_X) * height if SKEW_X < 0 else 0)
    a = 1.0
    b = -SKEW_X / SCALE_Y
    c = SKEW_X * pad / SCALE_Y - off_x
    d = 0.0
    e = 1.0 / SCALE_Y
    f = -pad / SCALE_Y
    return (a, b, c, d, e, f)


def _extrusion_layer(alpha: Image.Image, size: Tuple[int, int], depth: int, opacity: float) -> Image.Image:
    shifted = Image.new("L", size, 0)
    shifted.paste(alpha, (0, depth))
    table = [int(a * opacity) for a in range(256)]
    layer = Image.new("RGBA", size, SLAB_COLOR + (0,))
    layer.putalpha(shifted.point(table))
    return layer


def project_image(img: Image.Image) -> Image.Image:
    width, height = img.size
    size = projected_size(width, height)
    sheared = img.convert("RGBA").transform(
        size,
        Image.Transform.AFFINE,
        _shear_coefficients(height),
        resample=Image.Resampling.BICUBIC,
        fillcolor=(0, 0, 0, 0),
    )

    canvas = Image.new("RGBA", size, BACKGROUND)
    alpha = sheared.getchannel("A")
    # Deepest layer first, each nearer layer slightly more opaque
    for i in range(EXTRUSION_LAYERS, 0, -1):
        opacity = EXTRUSION_MAX_OPACITY * (EXTRUSION_LAYERS - i + 1) / EXTRUSION_LAYERS
        layer = _extrusion_layer(alpha, size, i * EXTRUSION_STEP, opacity)
        canvas.alpha_composite(layer)
    canvas.alpha_composite(sheared)
    return canvas.convert("RGB")


def project(image_bytes: bytes) -> bytes:
    """Project raw plan bytes and return the PNG-encoded isometric base image."""
    return _to_png(project_image(load_image(image_bytes)))


def fit_to_canvas(image_bytes: bytes, size: Tuple[int, int]) -> bytes:
    """Resample an image onto a canvas of ``size`` so render dimensions stay stable."""
    img = load_image(image_bytes).convert("RGB")
    if img.size != tuple(size):
        img = img.resize(tuple(size), resample=Image.Resampling.LANCZOS)
    return _to_png(img)


def sniff_mime_type(image_bytes: bytes) -> str:
    img = load_image(image_bytes)
    return Image.MIME.get(img.format or "", "image/png")
