"""Inspect chunk dumps written by disk-mode observables.

Usage:
    python -m mcobservable summary run.h5 energy
    python -m mcobservable summary run.h5 energy --binsize 64 --flat
    python -m mcobservable plot run.h5 energy energy_binning.png

`summary` prints name, count, chunks, mean and error of the committed
measurements. `plot` writes the binning chart (error vs. bin size).
"""

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np

from mcobservable.analysis.binning import BinningErrorEstimator
from mcobservable.analysis.charts import BinningChart
from mcobservable.errors import InsufficientDataError, ObservableError
from mcobservable.storage.chunk_store import ChunkedDiskStore

logger = logging.getLogger(__name__)


def _format_statistic(value) -> str:
    if np.ndim(value) == 0:
        return f"{float(value):.6g}"
    return np.array2string(np.asarray(value), precision=6)


def run_summary(args: argparse.Namespace) -> int:
    store = ChunkedDiskStore.open(args.file, args.dataset)
    metadata = store.metadata()
    series = store.load_all()

    print("=" * 60)
    print(f"Observable: {metadata.name}")
    print("=" * 60)
    print(f"Dataset:  {args.file}:{store.dataset}")
    print(f"Type:     {metadata.dtype}, shape {metadata.shape}")
    print(f"Count:    {metadata.count}")
    print(f"Chunks:   {metadata.n_chunks} (alloc {metadata.alloc})")
    if args.flat:
        print(f"Flat:     {np.moveaxis(series, 0, -1).shape} (Monte Carlo time last)")

    try:
        estimate = BinningErrorEstimator().estimate(series, args.binsize)
    except InsufficientDataError as e:
        print(f"\nNo estimate: {e}")
        return 0

    print(f"\nMean:     {_format_statistic(estimate.value)}")
    print(f"Error:    {_format_statistic(estimate.error)}")
    return 0


def run_plot(args: argparse.Namespace) -> int:
    store = ChunkedDiskStore.open(args.file, args.dataset)
    chart = BinningChart.from_series(store.load_all(), title=store.metadata().name)
    if not chart.generate_to_file(args.output):
        print(f"Error: Could not write chart to {args.output}")
        return 1
    print(f"Chart written to: {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcobservable",
        description="Inspect Monte Carlo observable chunk dumps",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    summary = subparsers.add_parser("summary", help="Print count, mean and error")
    summary.add_argument("file", help="HDF5 file holding the chunk dump")
    summary.add_argument("dataset", help="Group path of the observable")
    summary.add_argument(
        "--binsize",
        type=int,
        default=None,
        help="Fixed bin size (default: automatic plateau detection)",
    )
    summary.add_argument(
        "--flat",
        action="store_true",
        help="Also report the shape with Monte Carlo time as the last axis",
    )
    summary.set_defaults(handler=run_summary)

    plot = subparsers.add_parser("plot", help="Write the binning chart")
    plot.add_argument("file", help="HDF5 file holding the chunk dump")
    plot.add_argument("dataset", help="Group path of the observable")
    plot.add_argument("output", help="Image file to write (e.g. binning.png)")
    plot.set_defaults(handler=run_plot)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        return args.handler(args)
    except ObservableError as e:
        logger.debug(f"{args.command} failed", exc_info=True)
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
