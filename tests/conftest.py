"""
Shared fixtures: correspondence sets used across unit and integration tests.
"""
import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from tests.helpers import make_pairs


@pytest.fixture
def unit_square_pairs():
    """Pixel square of side 100 onto the (lon, lat) unit square."""
    return make_pairs(
        [(0, 0), (100, 0), (100, 100), (0, 100)],
        [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)],
    )


@pytest.fixture
def campus_pairs():
    """A 2000x1500 raster of a small area near Arlington, VA, with mild perspective."""
    return make_pairs(
        [(0, 0), (2000, 0), (2000, 1500), (0, 1500)],
        [(-77.0600, 38.8730), (-77.0550, 38.8731), (-77.0548, 38.8700), (-77.0601, 38.8702)],
    )
