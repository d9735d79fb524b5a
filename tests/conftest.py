"""
Pytest fixtures and helpers for classification tests
"""

import numpy as np
import pytest
from rasterio.transform import from_origin

from urbanrural.grid import PopulationGrid


def make_synthetic_grid(shape, seed, density=0.35, peak=2000.0, nodata_prob=0.0):
    """Random sparse population grid: background zeros, scattered dense cells,
    optional NaN no-data cells."""
    rng = np.random.default_rng(seed)
    values = np.where(rng.random(shape) < density, rng.uniform(0, peak, shape), 0.0)
    if nodata_prob:
        values[rng.random(shape) < nodata_prob] = np.nan
    return values


@pytest.fixture
def single_peak():
    """3x3 grid with one 400-person cell in the centre"""
    return np.array([
        [0.0, 0.0, 0.0],
        [0.0, 400.0, 0.0],
        [0.0, 0.0, 0.0],
    ])


@pytest.fixture
def diagonal_pair():
    """Two candidates touching only at a corner"""
    return np.array([
        [500.0, 0.0],
        [0.0, 500.0],
    ])


@pytest.fixture
def two_towns():
    """A large town (top-left) and a small village (bottom-right) with a no-data cell"""
    return np.array([
        [900.0, 800.0, 0.0, 0.0, 0.0],
        [700.0, 600.0, 0.0, np.nan, 0.0],
        [0.0, 0.0, 0.0, 0.0, 0.0],
        [0.0, 0.0, 0.0, 350.0, 0.0],
        [0.0, 0.0, 0.0, 0.0, 100.0],
    ])


@pytest.fixture
def georeferenced_grid(two_towns):
    """two_towns with a 1 km UTM transform"""
    return PopulationGrid.from_array(
        two_towns,
        transform=from_origin(500000.0, 4000000.0, 1000.0, 1000.0),
        crs="EPSG:32633",
    )
