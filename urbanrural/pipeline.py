"""
Main pipeline orchestrator.

Ties together grid loading → aggregation → classification → validation →
output.  Called by the CLI (cli.py) and can also be imported directly.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from urbanrural.classify import ClassificationResult, classify_with_params
from urbanrural.config import DEFAULT_N_BANDS, OUTPUT_DIR, ClassificationParams
from urbanrural.grid import aggregate
from urbanrural.io import (
    read_population_grid,
    write_clusters,
    write_geojson,
    write_output_grid,
    write_summary,
)
from urbanrural.validate import validate_classification

logger = logging.getLogger(__name__)


def run_grid(
    input_path: Union[str, Path],
    params: ClassificationParams,
    out_dir: Union[str, Path] = OUTPUT_DIR,
    aggregate_factor: int = 1,
    n_bands: int = DEFAULT_N_BANDS,
    max_workers: Optional[int] = None,
    nodata: Optional[float] = None,
    emit_geojson: bool = True,
    check: bool = True,
) -> ClassificationResult:
    """
    Execute the full classification pipeline for one population grid.

    Parameters
    ----------
    input_path:
        ``.npy``, ``.csv`` or raster file holding population counts.
    params:
        Thresholds, connectivity and output mode.
    out_dir:
        Directory receiving the outputs (created if missing).
    aggregate_factor:
        Block size for summing fine cells before classification (1 = none).
    n_bands, max_workers:
        Row bands / threads for component labelling.
    nodata:
        Extra no-data sentinel in the input.
    emit_geojson:
        Whether to write urban cluster polygons (georeferenced input only).
    check:
        Run the acceptance checks before writing anything.

    Returns
    -------
    ClassificationResult for the (aggregated) grid.
    """
    input_path = Path(input_path)
    logger.info("=" * 60)
    logger.info("[%s] Starting pipeline", input_path.name)
    logger.info("=" * 60)

    # ------------------------------------------------------------------
    # Step 1: Load population grid
    # ------------------------------------------------------------------
    logger.info("[%s] Step 1 — Loading population grid…", input_path.name)
    grid = read_population_grid(input_path, nodata=nodata)

    # ------------------------------------------------------------------
    # Step 2: Aggregate to coarser cells
    # ------------------------------------------------------------------
    if aggregate_factor != 1:
        logger.info(
            "[%s] Step 2 — Aggregating by factor %d…", input_path.name, aggregate_factor
        )
        grid = aggregate(grid, aggregate_factor)

    # ------------------------------------------------------------------
    # Step 3: Classify
    # ------------------------------------------------------------------
    logger.info("[%s] Step 3 — Classifying cells…", input_path.name)
    result = classify_with_params(
        grid, params, n_bands=n_bands, max_workers=max_workers
    )

    # ------------------------------------------------------------------
    # Step 4: Acceptance checks
    # ------------------------------------------------------------------
    if check:
        logger.info("[%s] Step 4 — Validating result…", input_path.name)
        validate_classification(result, grid)

    # ------------------------------------------------------------------
    # Step 5: Write outputs
    # ------------------------------------------------------------------
    logger.info("[%s] Step 5 — Writing outputs…", input_path.name)
    write_output_grid(result, grid, out_dir)
    write_clusters(result, out_dir)
    write_summary(result, grid, out_dir)
    if emit_geojson:
        write_geojson(result, grid, out_dir)

    logger.info("[%s] Pipeline complete.", input_path.name)
    return result
