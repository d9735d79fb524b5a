"""
Urban / rural classification of a population grid.

Procedure
---------
1. Candidate cells: valid cells with population strictly above
   ``density_cutoff``.
2. Candidates are grouped into maximal connected components (4- or
   8-connectivity).  No-data cells are never candidates, so they never join
   two components.
3. A component whose summed population is ``>= min_cluster_population`` is
   urban; every member cell is labelled URBAN.
4. All other valid cells are RURAL; no-data cells stay NODATA.

The call is pure: inputs are never modified and a result is only returned
once every output grid has been built.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from numbers import Real
from typing import Optional, Union

import numpy as np
import pandas as pd

from urbanrural.components import (
    label_components,
    label_components_banded,
    summarize_clusters,
)
from urbanrural.config import (
    DEFAULT_CONNECTIVITY,
    DEFAULT_N_BANDS,
    LABEL_DTYPE,
    CellLabel,
    ClassificationParams,
    Connectivity,
)
from urbanrural.grid import InvalidInputError, PopulationGrid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    labels: np.ndarray                       # int8 CellLabel codes
    urban_population: Optional[np.ndarray]   # float, NaN outside URBAN; None in mask mode
    cluster_ids: np.ndarray                  # int64 component id, 0 = not a candidate
    clusters: pd.DataFrame
    params: ClassificationParams

    @property
    def output(self) -> np.ndarray:
        """The grid requested by ``mask_mode``: labels if True, else urban population."""
        if self.params.mask_mode:
            return self.labels
        return self.urban_population

    @property
    def urban_mask(self) -> np.ndarray:
        return self.labels == CellLabel.URBAN

    @property
    def n_clusters(self) -> int:
        return len(self.clusters)

    @property
    def n_urban_clusters(self) -> int:
        return int(self.clusters["is_urban"].sum())

    def label_counts(self) -> dict:
        return {
            label.name: int((self.labels == label).sum())
            for label in CellLabel
        }


# ---------------------------------------------------------------------------
# Input checks
# ---------------------------------------------------------------------------

def _check_threshold(name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidInputError(f"{name} must be a real number, got {value!r}.")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidInputError(f"{name} must be finite, got {value!r}.")
    if value < 0:
        raise InvalidInputError(f"{name} must be non-negative, got {value!r}.")
    return value


def _check_connectivity(value) -> Connectivity:
    try:
        return Connectivity.parse(value)
    except ValueError as exc:
        raise InvalidInputError(
            f"connectivity must be FOUR/EIGHT (4/8), got {value!r}."
        ) from exc


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify(
    grid: Union[PopulationGrid, np.ndarray],
    density_cutoff: float,
    min_cluster_population: float,
    connectivity: Union[Connectivity, int, str] = DEFAULT_CONNECTIVITY,
    mask_mode: bool = False,
    n_bands: int = DEFAULT_N_BANDS,
    max_workers: Optional[int] = None,
) -> ClassificationResult:
    """
    Classify every cell of ``grid`` as URBAN, RURAL or NODATA.

    Parameters
    ----------
    grid:
        PopulationGrid, or any 2-D array-like (NaN = no data).
    density_cutoff:
        Population per cell a cell must strictly exceed to be a candidate.
    min_cluster_population:
        Minimum (inclusive) summed population of an urban component.
    connectivity:
        FOUR or EIGHT neighbourhood (enum, 4/8 or 'four'/'eight').
    mask_mode:
        True → ``result.output`` is the categorical URBAN/RURAL/NODATA grid.
        False → ``result.output`` is the population of urban cells only
        (NaN elsewhere).
    n_bands:
        >1 labels components in that many row bands concurrently; the result
        is identical to the sequential pass.
    max_workers:
        Thread pool size for the banded labeller.

    Returns
    -------
    ClassificationResult

    Raises
    ------
    InvalidInputError
        Empty/ragged grid, negative values, or a negative/NaN threshold.
    """
    if not isinstance(grid, PopulationGrid):
        grid = PopulationGrid.from_array(grid)

    params = ClassificationParams(
        density_cutoff=_check_threshold("density_cutoff", density_cutoff),
        min_cluster_population=_check_threshold(
            "min_cluster_population", min_cluster_population
        ),
        connectivity=_check_connectivity(connectivity),
        mask_mode=bool(mask_mode),
    )
    if isinstance(n_bands, bool) or not isinstance(n_bands, (int, np.integer)) or n_bands < 1:
        raise InvalidInputError(f"n_bands must be a positive integer, got {n_bands!r}.")

    values = grid.values
    valid = grid.valid_mask

    # NaN compares False, so no-data cells drop out here
    with np.errstate(invalid="ignore"):
        candidates = valid & (values > params.density_cutoff)

    if n_bands > 1:
        cluster_ids, n = label_components_banded(
            candidates, params.connectivity, n_bands=n_bands, max_workers=max_workers
        )
    else:
        cluster_ids, n = label_components(candidates, params.connectivity)

    clusters = summarize_clusters(
        cluster_ids, n, values, params.min_cluster_population
    )

    urban_ids = clusters.loc[clusters["is_urban"], "cluster_id"].to_numpy()
    urban = np.isin(cluster_ids, urban_ids) & (cluster_ids > 0)

    labels = np.full(grid.shape, CellLabel.NODATA, dtype=LABEL_DTYPE)
    labels[valid] = CellLabel.RURAL
    labels[urban] = CellLabel.URBAN

    urban_population = None
    if not params.mask_mode:
        urban_population = np.where(urban, values, np.nan)

    logger.info(
        "Classified %dx%d grid (cutoff=%.1f, min_pop=%.1f, connectivity=%d): "
        "%d candidate cell(s), %d cluster(s), %d urban cluster(s), %d urban cell(s)",
        grid.shape[0], grid.shape[1],
        params.density_cutoff, params.min_cluster_population,
        int(params.connectivity),
        int(candidates.sum()), n, len(urban_ids), int(urban.sum()),
    )

    return ClassificationResult(
        labels=labels,
        urban_population=urban_population,
        cluster_ids=cluster_ids,
        clusters=clusters,
        params=params,
    )


def classify_with_params(
    grid: Union[PopulationGrid, np.ndarray],
    params: ClassificationParams,
    n_bands: int = DEFAULT_N_BANDS,
    max_workers: Optional[int] = None,
) -> ClassificationResult:
    """Convenience wrapper taking a ClassificationParams bundle."""
    return classify(
        grid,
        density_cutoff=params.density_cutoff,
        min_cluster_population=params.min_cluster_population,
        connectivity=params.connectivity,
        mask_mode=params.mask_mode,
        n_bands=n_bands,
        max_workers=max_workers,
    )
