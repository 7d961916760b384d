"""Tests for pre-upload image compression."""

import io

from PIL import Image

from wallcraft.services.imaging import compress_image


def _image_bytes(size, mode="RGB", fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color=(200, 100, 50, 255)[: len(mode)]).save(buf, format=fmt)
    return buf.getvalue()


def test_downscales_long_edge_to_limit():
    data, name, content_type = compress_image(_image_bytes((4096, 1024)), "wide.png", "image/png")

    assert name == "wide.jpg"
    assert content_type == "image/jpeg"
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "JPEG"
        assert img.size == (2048, 512)


def test_small_image_keeps_dimensions():
    data, _, _ = compress_image(_image_bytes((640, 480)), "small.png", "image/png")
    with Image.open(io.BytesIO(data)) as img:
        assert img.size == (640, 480)


def test_transparent_image_is_flattened_to_rgb():
    data, _, _ = compress_image(_image_bytes((300, 300), mode="RGBA"), "logo.png", "image/png")
    with Image.open(io.BytesIO(data)) as img:
        assert img.mode == "RGB"


def test_custom_limit():
    data, _, _ = compress_image(_image_bytes((1000, 500)), "a.png", "image/png", max_dimension=100)
    with Image.open(io.BytesIO(data)) as img:
        assert max(img.size) == 100


def test_undecodable_bytes_pass_through():
    raw = b"definitely not an image"
    assert compress_image(raw, "x.webp", "image/webp") == (raw, "x.webp", "image/webp")
