"""
Readers and writers: population grids in, classified grids, Parquet cluster
table, GeoJSON urban clusters and a JSON summary out.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
from rasterio import features
from shapely.geometry import shape
from shapely.ops import unary_union

from urbanrural.classify import ClassificationResult
from urbanrural.config import (
    CLUSTER_COLUMNS,
    POPULATION_NODATA,
    RASTER_LABEL_DTYPE,
    SUMMARY_TOP_N,
    CellLabel,
)
from urbanrural.grid import PopulationGrid

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class _SafeEncoder(json.JSONEncoder):
    """Convert numpy scalars to plain JSON-serialisable types."""
    def default(self, obj):
        if hasattr(obj, "item"):   # numpy scalar (int64, float64, bool_, …)
            return obj.item()
        return super().default(obj)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _output_dir(out_dir: PathLike) -> Path:
    d = Path(out_dir)
    d.mkdir(parents=True, exist_ok=True)
    return d


def _nan_to_none(value: float) -> Optional[float]:
    return None if value is None or np.isnan(value) else round(float(value), 6)


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

def read_population_grid(path: PathLike, nodata: Optional[float] = None) -> PopulationGrid:
    """
    Load a population grid from disk.

    Supported inputs:
    * ``.npy`` — 2-D numpy array (NaN = no data).
    * ``.csv`` — headerless comma-separated rows (empty field = no data).
    * anything else — a raster opened with rasterio; band 1 is read and the
      file's own nodata value is honoured along with ``nodata``.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix == ".npy":
        grid = PopulationGrid.from_array(np.load(path), nodata=nodata)
    elif suffix == ".csv":
        df = pd.read_csv(path, header=None)
        grid = PopulationGrid.from_array(df.to_numpy(dtype=np.float64), nodata=nodata)
    else:
        with rasterio.open(path) as src:
            band = src.read(1, masked=True)
            grid = PopulationGrid.from_array(
                band, nodata=nodata, transform=src.transform, crs=src.crs
            )

    logger.info(
        "Loaded population grid %s: %dx%d, %d no-data cell(s), total population %.0f",
        path.name, grid.shape[0], grid.shape[1], grid.n_nodata, grid.total_population,
    )
    return grid


# ---------------------------------------------------------------------------
# Output grid
# ---------------------------------------------------------------------------

def write_output_grid(
    result: ClassificationResult,
    grid: PopulationGrid,
    out_dir: PathLike,
    stem: Optional[str] = None,
) -> Path:
    """
    Write ``result.output``: a GeoTIFF when ``grid`` is georeferenced,
    otherwise a ``.npy`` array.

    Mask mode writes int16 labels (nodata = NODATA code); population mode
    writes float32 with ``POPULATION_NODATA`` outside urban cells.
    """
    out_dir = _output_dir(out_dir)
    if stem is None:
        stem = "urban_mask" if result.params.mask_mode else "urban_population"

    if not grid.is_georeferenced:
        path = out_dir / f"{stem}.npy"
        np.save(path, result.output)
        logger.info("Output grid written: %s", path)
        return path

    if result.params.mask_mode:
        data = result.labels.astype(RASTER_LABEL_DTYPE)
        nodata_value = int(CellLabel.NODATA)
    else:
        data = np.where(
            np.isnan(result.urban_population), POPULATION_NODATA, result.urban_population
        ).astype("float32")
        nodata_value = POPULATION_NODATA

    path = out_dir / f"{stem}.tif"
    profile = {
        "driver": "GTiff",
        "height": data.shape[0],
        "width": data.shape[1],
        "count": 1,
        "dtype": data.dtype.name,
        "nodata": nodata_value,
        "transform": grid.transform,
        "crs": grid.crs,
        "compress": "deflate",
    }
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(data, 1)
    logger.info("Output raster written: %s", path)
    return path


# ---------------------------------------------------------------------------
# Parquet
# ---------------------------------------------------------------------------

def write_clusters(
    result: ClassificationResult,
    out_dir: PathLike,
    filename: str = "clusters.parquet",
) -> Path:
    """Write the per-cluster table to Parquet."""
    path = _output_dir(out_dir) / filename
    df = result.clusters[CLUSTER_COLUMNS].copy()
    df.to_parquet(path, index=False, engine="pyarrow")
    logger.info("Cluster table written: %s (%d rows)", path, len(df))
    return path


# ---------------------------------------------------------------------------
# GeoJSON
# ---------------------------------------------------------------------------

def urban_clusters_to_geodataframe(
    result: ClassificationResult,
    grid: PopulationGrid,
) -> gpd.GeoDataFrame:
    """
    Polygonise urban clusters, one (multi)polygon per cluster.

    Cell polygons come from ``rasterio.features.shapes`` on the component id
    grid restricted to URBAN cells, and are dissolved per cluster.  The
    cluster attributes are joined from ``result.clusters``.
    """
    urban = result.urban_mask
    ids = np.where(urban, result.cluster_ids, 0).astype("int32")

    parts: Dict[int, list] = {}
    for geom, value in features.shapes(
        ids, mask=urban, connectivity=int(result.params.connectivity), transform=grid.transform
    ):
        parts.setdefault(int(value), []).append(shape(geom))

    attrs = result.clusters[result.clusters["is_urban"]].set_index("cluster_id")
    records = []
    geometries = []
    for cluster_id in sorted(parts):
        row = attrs.loc[cluster_id]
        records.append({
            "cluster_id": cluster_id,
            "n_cells": int(row["n_cells"]),
            "population": float(row["population"]),
        })
        cluster_parts = parts[cluster_id]
        geometries.append(
            cluster_parts[0] if len(cluster_parts) == 1 else unary_union(cluster_parts)
        )

    df = pd.DataFrame(records, columns=["cluster_id", "n_cells", "population"])
    return gpd.GeoDataFrame(df, geometry=geometries, crs=grid.crs)


def write_geojson(
    result: ClassificationResult,
    grid: PopulationGrid,
    out_dir: PathLike,
    filename: str = "urban_clusters.geojson",
) -> Optional[Path]:
    """
    Write urban cluster polygons to GeoJSON.

    Returns None (and writes nothing) when the grid is not georeferenced or
    there are no urban clusters.
    """
    if not grid.is_georeferenced:
        logger.warning("Grid has no transform; skipping GeoJSON.")
        return None
    if result.n_urban_clusters == 0:
        logger.warning("No urban clusters; skipping GeoJSON.")
        return None

    path = _output_dir(out_dir) / filename
    gdf = urban_clusters_to_geodataframe(result, grid)
    gdf.to_file(path, driver="GeoJSON")
    logger.info("GeoJSON written: %s (%d features)", path, len(gdf))
    return path


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

def build_summary(result: ClassificationResult, grid: PopulationGrid) -> Dict[str, Any]:
    """Assemble the summary payload (label counts, populations, top clusters)."""
    params = result.params
    clusters = result.clusters
    urban_population = float(grid.values[result.urban_mask].sum())
    total_population = grid.total_population

    top = (
        clusters.nlargest(SUMMARY_TOP_N, "population")[
            ["cluster_id", "n_cells", "population", "is_urban"]
        ]
        .assign(population=lambda d: d["population"].round(4))
        .to_dict(orient="records")
    )

    return {
        "shape": list(grid.shape),
        "parameters": {
            "density_cutoff": params.density_cutoff,
            "min_cluster_population": params.min_cluster_population,
            "connectivity": int(params.connectivity),
            "mask_mode": params.mask_mode,
        },
        "label_counts": result.label_counts(),
        "n_clusters": result.n_clusters,
        "n_urban_clusters": result.n_urban_clusters,
        "total_population": round(total_population, 6),
        "urban_population": round(urban_population, 6),
        "urban_share": _nan_to_none(
            urban_population / total_population if total_population > 0 else np.nan
        ),
        "top_clusters_by_population": top,
    }


def write_summary(
    result: ClassificationResult,
    grid: PopulationGrid,
    out_dir: PathLike,
    filename: str = "summary.json",
) -> Path:
    """Write the JSON summary sidecar."""
    path = _output_dir(out_dir) / filename
    summary = build_summary(result, grid)

    with open(path, "w") as f:
        json.dump(summary, f, indent=2, cls=_SafeEncoder)

    counts = summary["label_counts"]
    logger.info("Summary written: %s", path)
    logger.info(
        "Labels: urban=%d  rural=%d  nodata=%d  urban_share=%s",
        counts["URBAN"], counts["RURAL"], counts["NODATA"], summary["urban_share"],
    )
    return path
