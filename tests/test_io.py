"""
Readers, writers, pipeline and CLI
"""

import json

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin

from urbanrural.classify import classify
from urbanrural.cli import main
from urbanrural.config import (
    CLUSTER_COLUMNS,
    POPULATION_NODATA,
    CellLabel,
    ClassificationParams,
    Connectivity,
)
from urbanrural.grid import PopulationGrid
from urbanrural.io import (
    build_summary,
    read_population_grid,
    urban_clusters_to_geodataframe,
    write_clusters,
    write_geojson,
    write_output_grid,
    write_summary,
)
from urbanrural.pipeline import run_grid


def _write_geotiff(path, grid, nodata=-200.0):
    data = np.where(np.isnan(grid.values), nodata, grid.values).astype("float32")
    with rasterio.open(
        path, "w", driver="GTiff",
        height=data.shape[0], width=data.shape[1], count=1, dtype="float32",
        nodata=nodata, transform=grid.transform, crs=grid.crs,
    ) as dst:
        dst.write(data, 1)


class TestReaders:

    def test_read_npy(self, tmp_path, two_towns):
        path = tmp_path / "pop.npy"
        np.save(path, two_towns)
        grid = read_population_grid(path)
        np.testing.assert_array_equal(grid.values, two_towns)
        assert not grid.is_georeferenced

    def test_read_csv_with_sentinel(self, tmp_path):
        path = tmp_path / "pop.csv"
        path.write_text("1,2,-99\n4,,6\n")
        grid = read_population_grid(path, nodata=-99)
        assert grid.shape == (2, 3)
        assert grid.n_nodata == 2
        assert grid.total_population == 13.0

    def test_read_geotiff(self, tmp_path, georeferenced_grid):
        path = tmp_path / "pop.tif"
        _write_geotiff(path, georeferenced_grid)
        grid = read_population_grid(path)

        assert grid.is_georeferenced
        assert grid.transform == georeferenced_grid.transform
        assert grid.n_nodata == 1
        assert np.isnan(grid.values[1, 3])
        assert grid.values[0, 0] == 900.0


class TestWriters:

    def test_npy_output_without_transform(self, tmp_path, two_towns):
        result = classify(two_towns, 300, 1000, mask_mode=True)
        path = write_output_grid(result, PopulationGrid.from_array(two_towns), tmp_path)
        assert path.name == "urban_mask.npy"
        np.testing.assert_array_equal(np.load(path), result.labels)

    def test_geotiff_population_output(self, tmp_path, georeferenced_grid):
        result = classify(georeferenced_grid, 300, 1000, mask_mode=False)
        path = write_output_grid(result, georeferenced_grid, tmp_path)
        assert path.suffix == ".tif"
        with rasterio.open(path) as src:
            data = src.read(1)
            assert src.nodata == POPULATION_NODATA
            assert src.transform == georeferenced_grid.transform
        assert data[0, 0] == 900.0
        assert data[3, 3] == POPULATION_NODATA

    def test_geotiff_mask_output(self, tmp_path, georeferenced_grid):
        result = classify(georeferenced_grid, 300, 1000, mask_mode=True)
        path = write_output_grid(result, georeferenced_grid, tmp_path)
        with rasterio.open(path) as src:
            data = src.read(1)
            assert src.nodata == CellLabel.NODATA
        np.testing.assert_array_equal(data, result.labels)

    def test_clusters_parquet(self, tmp_path, two_towns):
        result = classify(two_towns, 300, 1000)
        df = pd.read_parquet(write_clusters(result, tmp_path))
        assert list(df.columns) == CLUSTER_COLUMNS
        assert df["is_urban"].tolist() == [True, False]

    def test_summary(self, tmp_path, georeferenced_grid):
        result = classify(georeferenced_grid, 300, 1000, Connectivity.EIGHT)
        path = write_summary(result, georeferenced_grid, tmp_path)
        summary = json.loads(path.read_text())

        assert summary["label_counts"] == {"NODATA": 1, "RURAL": 20, "URBAN": 4}
        assert summary["n_urban_clusters"] == 1
        assert summary["urban_population"] == 3000.0
        assert summary["parameters"]["connectivity"] == 8
        assert summary["top_clusters_by_population"][0]["cluster_id"] == 1

    def test_summary_empty_grid_share(self):
        grid = PopulationGrid.from_array(np.zeros((2, 2)))
        summary = build_summary(classify(grid, 300, 1000), grid)
        assert summary["urban_share"] is None
        assert summary["top_clusters_by_population"] == []


class TestGeoJSON:

    def test_polygons(self, georeferenced_grid):
        result = classify(georeferenced_grid, 300, 1000, Connectivity.EIGHT)
        gdf = urban_clusters_to_geodataframe(result, georeferenced_grid)

        assert len(gdf) == 1
        assert gdf.crs == georeferenced_grid.crs
        assert gdf.iloc[0]["population"] == 3000.0
        # 2x2 block of 1 km cells
        assert gdf.geometry.iloc[0].area == pytest.approx(4_000_000.0)

    def test_diagonal_cluster_is_one_polygon(self):
        grid = PopulationGrid.from_array(
            [[500.0, 0.0], [0.0, 500.0]],
            transform=from_origin(500000.0, 4000000.0, 1000.0, 1000.0),
            crs="EPSG:32633",
        )
        result = classify(grid, 300, 800, Connectivity.EIGHT)
        gdf = urban_clusters_to_geodataframe(result, grid)

        assert len(gdf) == 1
        assert gdf.geometry.iloc[0].geom_type == "Polygon", (
            "corner-joined cells follow the classifier's 8-connectivity"
        )
        assert gdf.geometry.iloc[0].area == pytest.approx(2_000_000.0)

    def test_write_geojson(self, tmp_path, georeferenced_grid):
        result = classify(georeferenced_grid, 300, 1000)
        path = write_geojson(result, georeferenced_grid, tmp_path)
        gdf = gpd.read_file(path)
        assert len(gdf) == 1

    def test_skipped_without_transform(self, tmp_path, two_towns):
        grid = PopulationGrid.from_array(two_towns)
        assert write_geojson(classify(grid, 300, 1000), grid, tmp_path) is None
        assert not list(tmp_path.iterdir())


class TestPipeline:

    def test_run_grid_geotiff(self, tmp_path, georeferenced_grid):
        src = tmp_path / "pop.tif"
        _write_geotiff(src, georeferenced_grid)
        out_dir = tmp_path / "out"

        result = run_grid(
            src,
            ClassificationParams(300, 1000, Connectivity.EIGHT, mask_mode=True),
            out_dir=out_dir,
            n_bands=2,
        )

        assert result.n_urban_clusters == 1
        names = sorted(p.name for p in out_dir.iterdir())
        assert names == ["clusters.parquet", "summary.json", "urban_clusters.geojson", "urban_mask.tif"]

    def test_run_grid_with_aggregation(self, tmp_path):
        fine = np.full((4, 4), 100.0)
        src = tmp_path / "fine.npy"
        np.save(src, fine)

        result = run_grid(src, ClassificationParams(300, 400), out_dir=tmp_path / "out", aggregate_factor=2)

        assert result.labels.shape == (2, 2)
        assert (result.labels == CellLabel.URBAN).all(), "each 2x2 block sums to 400"


class TestCLI:

    def test_main_writes_outputs(self, tmp_path, single_peak):
        src = tmp_path / "grid.npy"
        np.save(src, single_peak)
        out_dir = tmp_path / "out"

        main([
            "--input", str(src),
            "--density_cutoff", "300",
            "--min_cluster_pop", "300",
            "--connectivity", "8",
            "--mask",
            "--out_dir", str(out_dir),
        ])

        labels = np.load(out_dir / "urban_mask.npy")
        assert labels[1, 1] == CellLabel.URBAN
        assert (labels == CellLabel.URBAN).sum() == 1

    def test_preset_applies(self, tmp_path, single_peak):
        src = tmp_path / "grid.npy"
        np.save(src, single_peak)
        out_dir = tmp_path / "out"

        main(["--input", str(src), "--preset", "urban-centre", "--out_dir", str(out_dir)])

        summary = json.loads((out_dir / "summary.json").read_text())
        assert summary["parameters"]["density_cutoff"] == 1500.0
        assert summary["parameters"]["connectivity"] == 4
        assert summary["n_clusters"] == 0

    def test_missing_input_exits_nonzero(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main(["--input", str(tmp_path / "missing.npy"), "--out_dir", str(tmp_path)])
        assert excinfo.value.code == 1

    def test_negative_threshold_rejected(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main(["--input", "x.npy", "--density_cutoff", "-1"])
        assert excinfo.value.code == 2
