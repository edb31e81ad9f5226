"""Perceptual fingerprints used for per-monitor change detection.

A fingerprint is a 16x16 average hash: the image is reduced to a 16x16
grayscale grid (ITU-R 601 luma), and each of the 256 bits is set when
that cell is brighter than the grid mean. Two fingerprints are compared
by Hamming distance, 0 to 256.

Uniform frames are a known weak spot: every cell equals the mean, so
any two solid colours produce the same all-zero fingerprint.
"""
from typing import Optional

import imagehash
from PIL import Image

HASH_SIZE = 16
HASH_BITS = HASH_SIZE * HASH_SIZE

Fingerprint = imagehash.ImageHash


def perceptual_hash(image: Image.Image) -> Fingerprint:
    return imagehash.average_hash(image, hash_size=HASH_SIZE)


def hash_distance(a: Fingerprint, b: Fingerprint) -> int:
    return int(a - b)


def is_changed(previous: Optional[Fingerprint], current: Fingerprint, threshold: int) -> bool:
    """A monitor counts as changed on its first capture or once the
    distance reaches the threshold."""
    if previous is None:
        return True
    return hash_distance(previous, current) >= threshold
