import numpy as np
import pytest

from watson_vision.lifecycle import Lifecycle


@pytest.fixture
def camera_matrix():
    return np.array(
        [
            [600.0, 0.0, 320.0],
            [0.0, 600.0, 240.0],
            [0.0, 0.0, 1.0],
        ]
    )


@pytest.fixture
def dist_coeffs():
    return np.zeros(5)


@pytest.fixture
def lifecycle():
    lc = Lifecycle()
    yield lc
    lc.shutdown(timeout=5.0)
