"""
Configuration: constants, label codes, connectivity, presets, paths.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from numbers import Integral
from pathlib import Path
from typing import Dict, List, Union

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
OUTPUT_DIR: Path = ROOT_DIR / "outputs"

# ---------------------------------------------------------------------------
# Cell labels
# ---------------------------------------------------------------------------

class CellLabel(IntEnum):
    """Categorical codes written to the label grid (int8)."""
    NODATA = -1
    RURAL = 0
    URBAN = 1


LABEL_DTYPE = "int8"

# GeoTIFF label rasters; int8 support depends on the GDAL build.
RASTER_LABEL_DTYPE = "int16"

# Nodata value written into GeoTIFF outputs of the population grid.
POPULATION_NODATA: float = -200.0

# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------

class Connectivity(IntEnum):
    FOUR = 4    # up / down / left / right
    EIGHT = 8   # plus the four diagonals

    @classmethod
    def parse(cls, value: Union["Connectivity", int, str]) -> "Connectivity":
        """Accept the enum, 4/8, or 'four'/'eight'/'4'/'8'."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            aliases = {"four": 4, "4": 4, "eight": 8, "8": 8}
            if key in aliases:
                return cls(aliases[key])
            raise ValueError(f"Unknown connectivity: {value!r}")
        if isinstance(value, bool):
            raise ValueError(f"Unknown connectivity: {value!r}")
        if isinstance(value, Integral):
            return cls(int(value))
        raise ValueError(f"Unknown connectivity: {value!r}")


# ---------------------------------------------------------------------------
# Classification defaults
# ---------------------------------------------------------------------------

DEFAULT_DENSITY_CUTOFF: float = 300.0          # people per cell (1 km²)
DEFAULT_MIN_CLUSTER_POPULATION: float = 5000.0
DEFAULT_CONNECTIVITY: Connectivity = Connectivity.EIGHT

# Row bands used by the concurrent labeller; 1 → sequential reference.
DEFAULT_N_BANDS: int = 1


@dataclass(frozen=True)
class ClassificationParams:
    density_cutoff: float = DEFAULT_DENSITY_CUTOFF
    min_cluster_population: float = DEFAULT_MIN_CLUSTER_POPULATION
    connectivity: Connectivity = DEFAULT_CONNECTIVITY
    mask_mode: bool = False


# ---------------------------------------------------------------------------
# Presets (degree-of-urbanisation style thresholds on 1 km² cells)
# ---------------------------------------------------------------------------

@dataclass
class ClassificationPreset:
    name: str                       # human-readable display name
    slug: str                       # CLI identifier (underscores)
    density_cutoff: float
    min_cluster_population: float
    connectivity: Connectivity

    def to_params(self, mask_mode: bool = False) -> ClassificationParams:
        return ClassificationParams(
            density_cutoff=self.density_cutoff,
            min_cluster_population=self.min_cluster_population,
            connectivity=self.connectivity,
            mask_mode=mask_mode,
        )


PRESETS: Dict[str, ClassificationPreset] = {
    "urban_cluster": ClassificationPreset(
        name="Urban cluster",
        slug="urban_cluster",
        density_cutoff=300.0,
        min_cluster_population=5000.0,
        connectivity=Connectivity.EIGHT,
    ),
    "dense_urban_cluster": ClassificationPreset(
        name="Dense urban cluster",
        slug="dense_urban_cluster",
        density_cutoff=1500.0,
        min_cluster_population=5000.0,
        connectivity=Connectivity.FOUR,
    ),
    "urban_centre": ClassificationPreset(
        name="Urban centre",
        slug="urban_centre",
        density_cutoff=1500.0,
        min_cluster_population=50000.0,
        connectivity=Connectivity.FOUR,
    ),
}

ALL_PRESET_SLUGS: List[str] = list(PRESETS.keys())
DEFAULT_PRESET: str = "urban_cluster"

# ---------------------------------------------------------------------------
# Output schema
# ---------------------------------------------------------------------------

CLUSTER_COLUMNS: List[str] = [
    "cluster_id",
    "n_cells",
    "population",
    "is_urban",
    "row_min",
    "row_max",
    "col_min",
    "col_max",
    "centroid_row",
    "centroid_col",
]

# Number of clusters listed in the summary sidecar
SUMMARY_TOP_N: int = 10
