import numpy as np

from thumbnails import make_thumbnail, thumbnail_to_array


def test_thumbnail_fits_bound_and_keeps_aspect():
    video = np.zeros((240, 256, 3), dtype=np.uint8)
    video[:, :128] = (255, 0, 0)

    data = make_thumbnail(video, max_size=(128, 120))
    assert data.startswith(b"\x89PNG")

    image = thumbnail_to_array(data)
    height, width, _ = image.shape
    assert width <= 128 and height <= 120
    assert (width, height) == (128, 120)
    assert tuple(image[0, 0]) == (255, 0, 0)


def test_rgba_frames_are_accepted():
    video = np.full((8, 8, 4), 200, dtype=np.uint8)
    assert make_thumbnail(video).startswith(b"\x89PNG")


def test_nothing_to_encode():
    assert make_thumbnail(None) == b""
    assert make_thumbnail(np.zeros((8, 8), dtype=np.uint8)) == b""
    assert thumbnail_to_array(b"") is None
