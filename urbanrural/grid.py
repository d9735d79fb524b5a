"""
Population grid container and resampling.

A ``PopulationGrid`` is a plain 2-D float array of population counts per cell
with no-data cells stored as NaN.  Spatial referencing (affine transform, CRS)
is carried along for the writers but never used by the classifier, which only
cares about the cell-adjacency topology.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import numpy as np
from rasterio import Affine

logger = logging.getLogger(__name__)


class InvalidInputError(ValueError):
    """Raised for an empty, ragged or otherwise malformed grid or threshold."""


# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PopulationGrid:
    values: np.ndarray                 # (rows, cols) float64, NaN = no data
    transform: Optional[Affine] = None
    crs: Optional[Any] = None

    def __post_init__(self):
        """
        Coerce ``values`` to float64 and check the grid invariants.

        Raises
        ------
        InvalidInputError
            If the grid is empty, ragged, not 2-D, non-numeric, or holds a
            negative or infinite population value.
        """
        try:
            arr = np.asarray(self.values, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Grid is ragged or non-numeric: {exc}") from exc

        if arr.ndim != 2:
            raise InvalidInputError(
                f"Grid must be 2-D (rows x cols), got {arr.ndim} dimension(s)."
            )
        if arr.size == 0:
            raise InvalidInputError(f"Grid is empty (shape {arr.shape}).")

        valid = ~np.isnan(arr)
        if np.isinf(arr[valid]).any():
            raise InvalidInputError("Grid contains infinite population values.")
        n_neg = int((arr[valid] < 0).sum())
        if n_neg:
            raise InvalidInputError(
                f"Grid contains {n_neg} negative population value(s); "
                "pass the sentinel via 'nodata' if these mark missing cells."
            )
        # frozen dataclass
        object.__setattr__(self, "values", arr)

    @classmethod
    def from_array(
        cls,
        values,
        nodata: Optional[float] = None,
        transform: Optional[Any] = None,
        crs: Optional[Any] = None,
    ) -> "PopulationGrid":
        """
        Build a validated grid from any 2-D array-like.

        The input is copied; the grid invariants are checked on construction.

        Parameters
        ----------
        values:
            Nested sequence or ndarray of population counts.  NaN marks
            no data.  Masked arrays have their mask converted to NaN.
        nodata:
            Optional sentinel value (e.g. ``-200``) treated as no data.
        transform, crs:
            Optional georeferencing passed through to the outputs.

        Raises
        ------
        InvalidInputError
            See ``__post_init__``.
        """
        try:
            if isinstance(values, np.ma.MaskedArray):
                arr = values.astype(np.float64).filled(np.nan)
            else:
                arr = np.array(values, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Grid is ragged or non-numeric: {exc}") from exc

        if nodata is not None and not np.isnan(nodata):
            arr[arr == nodata] = np.nan

        return cls(values=arr, transform=transform, crs=crs)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.values.shape

    @property
    def valid_mask(self) -> np.ndarray:
        """Boolean grid, True where the cell holds a population value."""
        return ~np.isnan(self.values)

    @property
    def n_nodata(self) -> int:
        return int(np.isnan(self.values).sum())

    @property
    def total_population(self) -> float:
        return float(np.nansum(self.values))

    @property
    def is_georeferenced(self) -> bool:
        return self.transform is not None


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate(grid: PopulationGrid, factor: int) -> PopulationGrid:
    """
    Sum ``factor x factor`` blocks of cells into one coarser cell.

    Used to bring fine population rasters (e.g. 100 m) to the 1 km² cells the
    density thresholds are defined on.  Trailing rows/columns that do not
    fill a whole block form partial blocks that sum their valid cells; a
    block without any valid cell becomes no data.

    Parameters
    ----------
    grid:
        Input PopulationGrid.
    factor:
        Positive integer block size.  1 returns the grid unchanged.

    Returns
    -------
    PopulationGrid with shape ``ceil(rows/factor) x ceil(cols/factor)`` and,
    when georeferenced, a transform scaled by ``factor``.
    """
    if isinstance(factor, bool) or not isinstance(factor, (int, np.integer)) or factor < 1:
        raise InvalidInputError(f"Aggregation factor must be a positive integer, got {factor!r}.")
    if factor == 1:
        return grid

    rows, cols = grid.shape
    pad_r = -rows % factor
    pad_c = -cols % factor
    padded = np.pad(
        grid.values,
        ((0, pad_r), (0, pad_c)),
        mode="constant",
        constant_values=np.nan,
    )
    out_rows = padded.shape[0] // factor
    out_cols = padded.shape[1] // factor
    blocks = padded.reshape(out_rows, factor, out_cols, factor)

    has_data = (~np.isnan(blocks)).any(axis=(1, 3))
    sums = np.nansum(blocks, axis=(1, 3))
    sums[~has_data] = np.nan

    transform = grid.transform
    if transform is not None:
        transform = transform * Affine.scale(factor)

    logger.info(
        "Aggregated grid %dx%d -> %dx%d (factor %d)",
        rows, cols, out_rows, out_cols, factor,
    )
    return PopulationGrid(values=sums, transform=transform, crs=grid.crs)
