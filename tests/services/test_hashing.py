from PIL import Image

from taskscope.services.hashing import (
    HASH_BITS, hash_distance, is_changed, perceptual_hash
)
from conftest import half_image


def test_identical_frames_have_zero_distance():
    a = perceptual_hash(half_image("left"))
    b = perceptual_hash(half_image("left"))
    assert hash_distance(a, b) == 0
    assert not is_changed(a, b, threshold=10)


def test_inverted_halves_differ_in_every_bit():
    left = perceptual_hash(half_image("left"))
    right = perceptual_hash(half_image("right"))
    assert hash_distance(left, right) == HASH_BITS
    assert is_changed(left, right, threshold=10)


def test_quarter_overlap_distance():
    left = perceptual_hash(half_image("left"))
    top = perceptual_hash(half_image("top"))
    # Top-right and bottom-left quadrants flip
    assert hash_distance(left, top) == HASH_BITS // 2


def test_first_capture_is_always_changed():
    assert is_changed(None, perceptual_hash(half_image("top")), threshold=10)


def test_threshold_is_inclusive():
    left = perceptual_hash(half_image("left"))
    top = perceptual_hash(half_image("top"))
    distance = hash_distance(left, top)
    assert is_changed(left, top, threshold=distance)
    assert not is_changed(left, top, threshold=distance + 1)


def test_solid_colours_collide():
    black = perceptual_hash(Image.new("RGB", (64, 64), "black"))
    white = perceptual_hash(Image.new("RGB", (64, 64), "white"))
    assert hash_distance(black, white) == 0


def test_distance_is_symmetric():
    top = perceptual_hash(half_image("top"))
    left = perceptual_hash(half_image("left"))
    assert hash_distance(top, left) == hash_distance(left, top)
