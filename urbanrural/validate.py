"""
Acceptance validation for a classification result.

Call ``validate_classification`` after ``classify`` returns.
Raises ``ClassificationValidationError`` listing all failed checks if any fail.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np

from urbanrural.classify import ClassificationResult
from urbanrural.config import CellLabel
from urbanrural.grid import PopulationGrid

logger = logging.getLogger(__name__)


class ClassificationValidationError(Exception):
    """Raised when one or more acceptance checks fail."""


def validate_classification(result: ClassificationResult, grid: PopulationGrid) -> None:
    """
    Run all acceptance checks against a classification of ``grid``.

    Checks
    ------
    V1  Output grids have the input shape.
    V2  Label values are in {NODATA, RURAL, URBAN}.
    V3  NODATA exactly where the input has no data.
    V4  Every URBAN cell is strictly above the density cutoff.
    V5  Cluster table agrees with the minimum population and the labels.
    V6  Population output (when present) is non-NaN exactly on URBAN cells
        and keeps the input values there.

    Raises
    ------
    ClassificationValidationError
        If any check fails.  All failures are collected and reported together.
    """
    failures: List[str] = []
    params = result.params

    # V1 — Shapes
    if result.labels.shape != grid.shape:
        failures.append(
            f"V1: label grid shape {result.labels.shape} != input shape {grid.shape}."
        )
        # Remaining checks compare cell by cell; stop here.
        _report(failures)

    # V2 — Label codes
    allowed = [int(label) for label in CellLabel]
    bad = np.setdiff1d(np.unique(result.labels), allowed)
    if bad.size:
        failures.append(f"V2: Invalid label values found: {sorted(bad.tolist())}.")

    # V3 — NODATA preservation
    nodata_in = ~grid.valid_mask
    nodata_out = result.labels == CellLabel.NODATA
    n_mismatch = int((nodata_in != nodata_out).sum())
    if n_mismatch:
        failures.append(f"V3: {n_mismatch} cell(s) with mismatched NODATA status.")

    # V4 — Urban cells are candidates
    urban = result.labels == CellLabel.URBAN
    with np.errstate(invalid="ignore"):
        below = urban & ~(grid.values > params.density_cutoff)
    if below.any():
        failures.append(
            f"V4: {int(below.sum())} URBAN cell(s) at or below the density cutoff "
            f"({params.density_cutoff})."
        )

    # V5 — Cluster table consistency
    clusters = result.clusters
    if len(clusters):
        wrong_flag = clusters["is_urban"] != (
            clusters["population"] >= params.min_cluster_population
        )
        if wrong_flag.any():
            failures.append(
                f"V5: {int(wrong_flag.sum())} cluster(s) with is_urban inconsistent "
                f"with min_cluster_population ({params.min_cluster_population})."
            )
        n_urban_cells = int(clusters.loc[clusters["is_urban"], "n_cells"].sum())
        if n_urban_cells != int(urban.sum()):
            failures.append(
                f"V5: urban clusters hold {n_urban_cells} cell(s) but "
                f"{int(urban.sum())} cell(s) are labelled URBAN."
            )
    elif urban.any():
        failures.append("V5: URBAN cells present but no clusters were recorded.")

    # V6 — Mask equivalence
    if result.urban_population is not None:
        kept = ~np.isnan(result.urban_population)
        n_diff = int((kept != urban).sum())
        if n_diff:
            failures.append(
                f"V6: {n_diff} cell(s) where population output and URBAN label disagree."
            )
        elif not np.array_equal(result.urban_population[kept], grid.values[kept]):
            failures.append("V6: population output altered URBAN cell values.")

    _report(failures)
    logger.info(
        "All validation checks passed (%d cells, %d urban cluster(s)).",
        result.labels.size, result.n_urban_clusters,
    )


def _report(failures: List[str]) -> None:
    if failures:
        msg = f"Validation failed ({len(failures)} issue(s)):\n" + "\n".join(
            f"  {f}" for f in failures
        )
        logger.error(msg)
        raise ClassificationValidationError(msg)
