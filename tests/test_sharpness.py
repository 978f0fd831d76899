import cv2
import numpy as np
import pytest

from skinscan.errors import ImageDecodeError
from skinscan.imaging.sharpness import estimate_sharpness, laplacian_response


def test_flat_image_has_zero_sharpness(solid_image):
    assert estimate_sharpness(solid_image(64, 64)) == 0.0


def test_tiny_image_without_interior_scores_zero(solid_image):
    assert estimate_sharpness(solid_image(2, 2, (0, 0, 0))) == 0.0


def test_noise_saturates_score(make_image, noise_rgb):
    score = estimate_sharpness(make_image(noise_rgb(128, 128, low=0, high=256)))
    assert score == 1.0


def test_blur_never_increases_sharpness(make_image, noise_rgb):
    rgb = noise_rgb(200, 200, low=120, high=131)
    blurred = cv2.GaussianBlur(rgb, (7, 7), 2.0)

    sharp_score = estimate_sharpness(make_image(rgb))
    blurred_score = estimate_sharpness(make_image(blurred))

    assert 0.0 < sharp_score <= 1.0
    assert blurred_score <= sharp_score


def test_sharpness_is_idempotent(make_image, noise_rgb):
    image = make_image(noise_rgb(300, 180, low=100, high=140))
    assert estimate_sharpness(image) == estimate_sharpness(image)


def test_large_image_is_downscaled(make_image, noise_rgb):
    image = make_image(noise_rgb(1600, 900, low=0, high=256))
    score = estimate_sharpness(image, max_side=512)
    assert 0.0 <= score <= 1.0


def test_laplacian_drops_border():
    gray = np.zeros((10, 12), dtype=np.float32)
    assert laplacian_response(gray).shape == (8, 10)


def test_non_image_input_raises():
    with pytest.raises(ImageDecodeError):
        estimate_sharpness(np.zeros((10, 10, 4), dtype=np.uint8))
