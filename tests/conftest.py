from __future__ import annotations

import pytest

from helpers_images import make_disc_image, make_texture_image, make_uniform_image


@pytest.fixture(scope="session")
def uniform_image():
    return make_uniform_image()


@pytest.fixture(scope="session")
def disc_image():
    """Bright disc of radius 4 centred at (row 64, col 64) on a 128x128 black image.

    At an initial sampling step of 1 its strongest response sits in the
    15-pixel filter layer of the first octave.
    """
    return make_disc_image()


@pytest.fixture(scope="session")
def texture_image():
    return make_texture_image()
