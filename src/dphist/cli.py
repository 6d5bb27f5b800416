"""
Command line front-end: ``python -m dphist INPUT.csv``.

Reads ``name,count`` rows, releases one private histogram per trial and
prints each as a ``name,count`` CSV block in the input order. With
``--diagnostics`` each block instead lists the true count, the privatized
count at the true rank (``ideal``) and the released count (``attributed``),
sorted by true count then name, followed by the expected bias per rank.
Diagnostics expose the true counts and are for evaluation only.
"""
# 说明：命令行入口，负责 CSV 读写与参数解析，核心逻辑全部委托给 PrivateHistogramQuery。
# 职责：
# - build_parser / parse_args：统一的 argparse 参数定义
# - read_histogram / read_ranges：读取 name,count 与 name,lower,upper 两种 CSV；--historical 同样为 name,count
# - --bounds reference：以历史直方图的降序计数为参考划分，三阶段切分预算（w0:w1:w2）
# - --diagnostics：输出真实计数、ideal、attributed 三列及各秩期望偏差（非隐私输出，仅供评估）
# - main：按试验次数重复发布并输出 CSV 块，错误以非零退出码返回

from __future__ import annotations

import argparse
import csv
import sys
from fractions import Fraction
from pathlib import Path
from typing import Dict, List, Optional, Sequence, TextIO, Tuple

from dphist.composition.budget_scheduler import REFERENCE_STAGES, STAGES
from dphist.core.exceptions import MechanismError
from dphist.core.privacy.eta import Eta
from dphist.core.utils.logging import configure_logging, get_logger
from dphist.core.utils.param_validation import ParamValidationError
from dphist.mechanisms.partition_bounds import PartitionBound
from dphist.queries.histogram import PrivateHistogramQuery, PrivatizedHistogram, TrueHistogram, ideal_counts

logger = get_logger(__name__)


def parse_eta(text: str) -> Eta:
    """Parse ``x,y,z`` (z may be a fraction such as ``1/2``)."""
    parts = [part.strip() for part in text.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError("eta must be given as x,y,z")
    try:
        return Eta(int(parts[0]), int(parts[1]), Fraction(parts[2]))
    except (ValueError, MechanismError) as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_split(text: str):
    """``even``, two stage weights ``w1:w2`` (e.g. ``1:3``) or ``w0:w1:w2`` with a bounds stage."""
    if text == "even":
        return text
    parts = text.split(":")
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError("split must be 'even', 'w1:w2' or 'w0:w1:w2'")
    stages = STAGES if len(parts) == 2 else REFERENCE_STAGES
    try:
        return {stage: Fraction(part) for stage, part in zip(stages, parts)}
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dphist", description="Release differentially private integer histograms.")
    parser.add_argument("input", type=Path, help="CSV file with name,count rows")
    parser.add_argument("--eta", type=parse_eta, default=Eta(1, 1, 2), help="total budget x,y,z (default: 1,1,2)")
    parser.add_argument("--split", type=parse_split, default="even", help="'even', stage weights w1:w2, or w0:w1:w2 with reference bounds")
    parser.add_argument("--bounds", choices=["naive", "file", "reference"], default="naive", help="partition bounds strategy")
    parser.add_argument("--bounds-file", type=Path, default=None, help="CSV file with name,lower,upper rows")
    parser.add_argument("--historical", type=Path, default=None, help="CSV file with name,count rows used as the reference partition")
    parser.add_argument("--public-total", type=int, default=None, help="public total used for naive bounds")
    parser.add_argument("--attr", choices=["sequential", "independent", "scoped"], default="sequential")
    parser.add_argument("--distance", choices=["l1", "linf"], default="l1")
    parser.add_argument("--trials", type=int, default=1, help="number of independent releases")
    parser.add_argument("--diagnostics", action="store_true", help="print true, ideal and attributed counts plus bias (not private)")
    parser.add_argument("--seed", type=int, default=None, help="seed for a reproducible (non-secure) bit stream")
    parser.add_argument("--log-level", default=None, help="logging level (default: DPHIST_LOG_LEVEL or INFO)")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def _rows(path: Path, columns: Sequence[str]) -> List[Dict[str, str]]:
    with open(path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        missing = [column for column in columns if column not in (reader.fieldnames or [])]
        if missing:
            raise ParamValidationError(f"{path} is missing columns: {', '.join(missing)}")
        return list(reader)


def read_histogram(path: Path) -> TrueHistogram:
    pairs = [(row["name"], int(row["count"])) for row in _rows(path, ("name", "count"))]
    return TrueHistogram.from_pairs(pairs)


def read_ranges(path: Path) -> Dict[str, Tuple[int, int]]:
    return {row["name"]: (int(row["lower"]), int(row["upper"])) for row in _rows(path, ("name", "lower", "upper"))}


def write_histogram(counts: Dict[str, int], out: TextIO) -> None:
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(["name", "count"])
    for label, count in counts.items():
        writer.writerow([label, count])


def write_diagnostics(histogram: TrueHistogram, release: PrivatizedHistogram, bias: Sequence[float], out: TextIO) -> None:
    # 按真实计数降序、同计数按名称排列
    ideal = ideal_counts(histogram, release)
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(["name", "count", "ideal", "attributed"])
    for label, count in sorted(histogram.as_dict().items(), key=lambda item: (-item[1], item[0])):
        writer.writerow([label, count, ideal[label], release[label]])
    out.write("\n")
    writer.writerow(["rank", "bias"])
    for rank, value in enumerate(bias):
        writer.writerow([rank, f"{value:.6g}"])


def main(argv: Optional[Sequence[str]] = None, out: TextIO = sys.stdout) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        histogram = read_histogram(args.input)
        ranges = read_ranges(args.bounds_file) if args.bounds_file is not None else None
        if (args.bounds == "file" or args.attr == "scoped") and ranges is None:
            raise ParamValidationError("--bounds-file is required for file bounds and scoped attribution")
        if args.bounds == "reference" and args.historical is None:
            raise ParamValidationError("--historical is required for reference bounds")
        bound = PartitionBound.from_ranges(ranges.values()) if args.bounds == "file" else None
        reference = None
        if args.bounds == "reference":
            reference = read_histogram(args.historical).sorted_counts
        query = PrivateHistogramQuery(
            args.eta,
            split=args.split,
            distance=args.distance,
            strategy=args.attr,
            bound=bound,
            public_total=args.public_total,
            reference=reference,
            ranges=ranges,
            rng=args.seed,
        )
        for trial in range(args.trials):
            if trial:
                out.write("\n")
            release = query.evaluate(histogram)
            if args.diagnostics:
                write_diagnostics(histogram, release, query.expected_bias(histogram, release.bound), out)
            else:
                write_histogram(release.counts, out)
    except (MechanismError, ValueError, OSError) as exc:
        logger.error("release failed: %s", exc)
        return 1
    return 0
