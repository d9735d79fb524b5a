"""
CLI entrypoint for the urban/rural classification pipeline.

Usage
-----
    python -m urbanrural --input pop_1km.tif --preset urban_cluster
    python -m urbanrural --input pop_100m.tif --aggregate 10 \\
        --density_cutoff 1500 --min_cluster_pop 50000 --connectivity 4 --mask

or via the installed script:

    urbanrural --input pop_1km.tif
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from urbanrural.config import (
    ALL_PRESET_SLUGS,
    DEFAULT_N_BANDS,
    DEFAULT_PRESET,
    OUTPUT_DIR,
    PRESETS,
    ClassificationParams,
    Connectivity,
)
from urbanrural.pipeline import run_grid


# ---------------------------------------------------------------------------
# Argument parsing helpers
# ---------------------------------------------------------------------------

def _normalise_slug(raw: str) -> str:
    """Lower-case and replace hyphens with underscores."""
    return raw.strip().lower().replace("-", "_")


def _parse_preset(value: str) -> str:
    slug = _normalise_slug(value)
    if slug not in PRESETS:
        raise argparse.ArgumentTypeError(
            f"Unknown preset: {value!r}. Valid choices: {ALL_PRESET_SLUGS}"
        )
    return slug


def _non_negative_float(value: str) -> float:
    try:
        x = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from exc
    if not x >= 0 or x == float("inf"):
        raise argparse.ArgumentTypeError(f"must be a finite number >= 0, got {value!r}")
    return x


def _positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from exc
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value!r}")
    return n


def resolve_params(args: argparse.Namespace) -> ClassificationParams:
    """Start from the preset and apply any explicitly given threshold flags."""
    preset = PRESETS[args.preset]
    params = preset.to_params(mask_mode=args.mask)
    return ClassificationParams(
        density_cutoff=(
            args.density_cutoff if args.density_cutoff is not None
            else params.density_cutoff
        ),
        min_cluster_population=(
            args.min_cluster_pop if args.min_cluster_pop is not None
            else params.min_cluster_population
        ),
        connectivity=(
            Connectivity.parse(args.connectivity) if args.connectivity is not None
            else params.connectivity
        ),
        mask_mode=args.mask,
    )


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="urbanrural",
        description=(
            "Classify a population grid into urban and rural cells by "
            "density threshold and connected-cluster population."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="\n".join([
            "Examples:",
            "  # 1 km population raster with the default urban-cluster thresholds",
            "  python -m urbanrural --input pop_1km.tif",
            "",
            "  # 100 m raster summed to 1 km, urban centres, categorical mask",
            "  python -m urbanrural --input pop_100m.tif --aggregate 10 \\",
            "      --preset urban_centre --mask",
            "",
            "  # custom thresholds on a plain numpy grid",
            "  python -m urbanrural --input grid.npy \\",
            "      --density_cutoff 300 --min_cluster_pop 300 --connectivity 8",
        ]),
    )

    parser.add_argument(
        "--input",
        required=True,
        type=Path,
        metavar="PATH",
        help="Population grid: GeoTIFF (or any rasterio raster), .npy or .csv.",
    )
    parser.add_argument(
        "--preset",
        type=_parse_preset,
        default=DEFAULT_PRESET,
        metavar="NAME",
        help=(
            f"Threshold preset. Valid: {', '.join(ALL_PRESET_SLUGS)}. "
            f"Default: {DEFAULT_PRESET}"
        ),
    )
    parser.add_argument(
        "--density_cutoff",
        type=_non_negative_float,
        default=None,
        metavar="FLOAT",
        help="Population per cell a cell must exceed (overrides preset).",
    )
    parser.add_argument(
        "--min_cluster_pop",
        type=_non_negative_float,
        default=None,
        metavar="FLOAT",
        help="Minimum cluster population to be urban (overrides preset).",
    )
    parser.add_argument(
        "--connectivity",
        default=None,
        choices=["4", "8"],
        help="4- or 8-neighbour adjacency (overrides preset).",
    )
    parser.add_argument(
        "--mask",
        action="store_true",
        help=(
            "Write the categorical urban/rural mask instead of the "
            "population of urban cells."
        ),
    )
    parser.add_argument(
        "--aggregate",
        type=_positive_int,
        default=1,
        metavar="INT",
        help="Sum INT x INT blocks of cells before classifying (default: 1).",
    )
    parser.add_argument(
        "--nodata",
        type=float,
        default=None,
        metavar="FLOAT",
        help="Extra no-data sentinel value in the input.",
    )
    parser.add_argument(
        "--bands",
        type=_positive_int,
        default=DEFAULT_N_BANDS,
        metavar="INT",
        help=f"Row bands labelled concurrently (default: {DEFAULT_N_BANDS}).",
    )
    parser.add_argument(
        "--workers",
        type=_positive_int,
        default=None,
        metavar="INT",
        help="Thread pool size for --bands > 1.",
    )
    parser.add_argument(
        "--out_dir",
        type=Path,
        default=OUTPUT_DIR,
        metavar="DIR",
        help=f"Output directory (default: {OUTPUT_DIR})",
    )
    parser.add_argument(
        "--no_geojson",
        action="store_true",
        help="Skip GeoJSON output.",
    )
    parser.add_argument(
        "--no_validate",
        action="store_true",
        help="Skip the acceptance checks.",
    )
    parser.add_argument(
        "--log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("rasterio").setLevel(logging.WARNING)
    logging.getLogger("fiona").setLevel(logging.WARNING)
    logging.getLogger("pyogrio").setLevel(logging.WARNING)

    params = resolve_params(args)

    logger = logging.getLogger(__name__)
    logger.info(
        "Pipeline starting | input=%s | preset=%s | cutoff=%.1f | min_pop=%.1f | "
        "connectivity=%d | mask=%s | aggregate=%d | bands=%d",
        args.input,
        args.preset,
        params.density_cutoff,
        params.min_cluster_population,
        int(params.connectivity),
        params.mask_mode,
        args.aggregate,
        args.bands,
    )

    try:
        run_grid(
            input_path=args.input,
            params=params,
            out_dir=args.out_dir,
            aggregate_factor=args.aggregate,
            n_bands=args.bands,
            max_workers=args.workers,
            nodata=args.nodata,
            emit_geojson=not args.no_geojson,
            check=not args.no_validate,
        )
    except Exception as exc:
        logger.error("[%s] Pipeline failed: %s", args.input, exc, exc_info=True)
        sys.exit(1)

    logger.info("Pipeline completed successfully.")


if __name__ == "__main__":
    main()
