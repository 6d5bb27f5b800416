"""
Private integer histograms.

Responsibilities
  - Validate a label -> count mapping and derive its descending ranking.
  - Split a base-2 budget between the partition and re-attribution stages,
    plus an optional first stage drawing bounds around a public reference.
  - Run the integer partition mechanism, then the re-attribution engine,
    and zip the resulting bijection with the privatized sorted counts.
  - Record every stage spend in a PrivacyAccountant bounded by the total.

Usage Context
  - Entry point for callers holding a plain mapping of nonnegative counts.
  - Each evaluation is an independent release and spends the full budget.

Limitations
  - Bounds must be public; without a public total the naive bounds fall
    back to the true total, which the caller is warned about.
"""
# 说明：整数直方图的差分隐私发布（两阶段编排器）。
# 职责：
# - TrueHistogram：校验标签与计数，保留插入顺序，并按计数降序（平局按插入顺序）给出真实排名
# - PrivateHistogramQuery：按切分策略得到 (eta1, eta2)，先整数划分再重归属，合并为最终直方图
# - PrivatizedHistogram：按原插入顺序输出 标签 -> 隐私计数，并附带排序计数、双射、所用上下界、预算分配与记账事件
# - 提供参考划分时增加 "bounds" 阶段：先以指数机制选取半径得到带状上下界，再在其上运行整数划分
# - ideal_counts / expected_bias：诊断输出（按真实排名对齐的隐私计数、各秩期望偏差）
# - privatize_histogram：一次性调用的便捷函数
# 约定：
# - 所有输入校验（直方图、预算、切分、上下界、区间）均在消耗任何随机比特之前完成
# - 每个阶段在运行前先记入 PrivacyAccountant，阶段失败时其预算同样视为已花费

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, Iterator, Mapping, Optional, Sequence, Tuple, Union

from dphist.composition.budget_scheduler import BOUNDS_STAGE, REFERENCE_STAGES, STAGES, BudgetScheduler, SplitPolicy
from dphist.core.exceptions import ArithmeticOverflowError, ValidationError
from dphist.core.privacy.eta import Eta, as_eta
from dphist.core.privacy.privacy_accountant import PrivacyAccountant, PrivacyEvent
from dphist.core.utils.config import get_config
from dphist.core.utils.logging import get_logger, release_logger
from dphist.core.utils.param_validation import ensure, ensure_count, ensure_type
from dphist.core.utils.random import create_bit_source
from dphist.core.utils.serialization import serialize_to_json
from dphist.mechanisms.attribution import Attribution, ReattributionEngine
from dphist.mechanisms.integer_partition import IntegerPartitionMechanism
from dphist.mechanisms.partition_bounds import PartitionBound
from dphist.mechanisms.reference_bounds import ReferenceBoundMechanism
from dphist.mechanisms.weight_table import WeightTable

logger = get_logger(__name__)

RESULT_VERSION = "1"


@dataclass(frozen=True)
class TrueHistogram:
    """Validated label -> count pairs in their original insertion order."""

    labels: Tuple[Hashable, ...]
    counts: Tuple[int, ...]

    def __post_init__(self) -> None:
        labels = tuple(self.labels)
        counts = tuple(ensure_count(count, error=ValidationError) for count in self.counts)
        ensure(len(labels) == len(counts), "labels and counts differ in length", error=ValidationError)
        ensure(len(set(labels)) == len(labels), "histogram labels must be unique", error=ValidationError)
        if sum(counts) > get_config().max_count:
            raise ArithmeticOverflowError("histogram total exceeds the configured count bound")
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "counts", counts)

    @classmethod
    def from_mapping(cls, mapping: Mapping[Hashable, int]) -> "TrueHistogram":
        ensure_type(mapping, (Mapping,), label="histogram", error=ValidationError)
        return cls(tuple(mapping.keys()), tuple(mapping.values()))

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[Hashable, int]]) -> "TrueHistogram":
        items = list(pairs)
        return cls(tuple(label for label, _ in items), tuple(count for _, count in items))

    @property
    def total(self) -> int:
        return sum(self.counts)

    def _order(self) -> Tuple[int, ...]:
        # sorted 是稳定排序：计数相同的标签保持插入顺序
        return tuple(sorted(range(len(self.counts)), key=lambda index: -self.counts[index]))

    @property
    def ranking(self) -> Tuple[Hashable, ...]:
        """Labels by descending true count."""
        return tuple(self.labels[index] for index in self._order())

    @property
    def sorted_counts(self) -> Tuple[int, ...]:
        return tuple(self.counts[index] for index in self._order())

    def __len__(self) -> int:
        return len(self.labels)

    def as_dict(self) -> Dict[Hashable, int]:
        return dict(zip(self.labels, self.counts))


@dataclass(frozen=True)
class PrivatizedHistogram:
    """Release artifact: privatized counts per label plus the audit trail."""

    counts: Dict[Hashable, int]
    sorted_counts: Tuple[int, ...]
    attribution: Attribution
    allocations: Dict[str, Eta]
    events: Tuple[PrivacyEvent, ...] = field(default_factory=tuple)
    bound: Optional[PartitionBound] = None

    @property
    def labels(self) -> Tuple[Hashable, ...]:
        return tuple(self.counts.keys())

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def items(self) -> Iterable[Tuple[Hashable, int]]:
        return self.counts.items()

    def __getitem__(self, label: Hashable) -> int:
        return self.counts[label]

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self.counts)

    def __len__(self) -> int:
        return len(self.counts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": [[label, count] for label, count in self.counts.items()],
            "sorted_counts": list(self.sorted_counts),
            "attribution": self.attribution.to_dict(),
            "allocations": {stage: eta.to_dict() for stage, eta in self.allocations.items()},
            "events": [event.to_dict() for event in self.events],
            "bound": None if self.bound is None else self.bound.to_dict(),
        }

    def to_json(self) -> str:
        return serialize_to_json(self.to_dict(), version=RESULT_VERSION)


class PrivateHistogramQuery:
    """
    Release a private integer histogram in two stages, or three with a reference.

    - Configuration
      - eta: total base-2 budget (Eta or positive rational).
      - split: "even", stage weights ``{"partition": w1, "attribution": w2}``
        or explicit ``(eta1, eta2)`` summing to at most the total. With a
        reference the stages are ``("bounds", "partition", "attribution")``.
      - distance: "l1" or "linf" utility of the partition stage.
      - strategy / schedule / decay: re-attribution configuration.
      - bound / public_total: public partition bounds.
      - reference: public sorted partition (for instance a historical
        release); bounds are then drawn privately around it.
      - ranges: per-label public ranges for the scoped strategy.
      - rng: seed, numpy Generator or RandomBitSource; None -> secure source.

    - Behavior
      - Validates everything before any random bit is drawn.
      - Records each stage in a PrivacyAccountant before running it.
    """

    def __init__(
        self,
        eta: Any,
        *,
        split: SplitPolicy = "even",
        distance: str = "l1",
        strategy: str = "sequential",
        schedule: str = "even",
        decay: Any = "1/2",
        bound: Optional[PartitionBound] = None,
        public_total: Optional[int] = None,
        reference: Optional[Sequence[int]] = None,
        ranges: Optional[Mapping[Hashable, Tuple[int, int]]] = None,
        rng: Optional[Any] = None,
    ):
        if reference is not None and bound is not None:
            raise ValidationError("explicit bounds and a reference partition are mutually exclusive")
        self.eta = as_eta(eta)
        self.scheduler = BudgetScheduler(self.eta)
        shares = self.scheduler.allocate_stages(split, STAGES if reference is None else REFERENCE_STAGES)
        self.bounds_eta: Optional[Eta] = shares.get(BOUNDS_STAGE)
        self.partition_eta, self.attribution_eta = shares["partition"], shares["attribution"]
        self.public_total = None if public_total is None else ensure_count(public_total, label="public_total", error=ValidationError)
        self.ranges = None if ranges is None else dict(ranges)
        # 默认的安全随机源只在最外层编排处创建，各阶段线性共享同一比特源
        self.rng = create_bit_source(rng)
        self.reference_bounds: Optional[ReferenceBoundMechanism] = None
        if reference is not None:
            self.reference_bounds = ReferenceBoundMechanism(
                self.bounds_eta,
                reference=reference,
                rng=self.rng,
                name="bounds",
            ).calibrate(public_total=self.public_total)
        self.partition = IntegerPartitionMechanism(
            self.partition_eta,
            distance=distance,
            bound=bound,
            rng=self.rng,
            name="partition",
        ).calibrate(public_total=self.public_total)
        self.attribution = ReattributionEngine(
            self.attribution_eta,
            strategy=strategy,
            schedule=schedule,
            decay=decay,
            rng=self.rng,
            name="attribution",
        ).calibrate()

    @property
    def allocations(self) -> Dict[str, Eta]:
        shares = {"partition": self.partition_eta, "attribution": self.attribution_eta}
        if self.bounds_eta is not None:
            shares = {BOUNDS_STAGE: self.bounds_eta, **shares}
        return shares

    def _prepare(self, true_sorted: Tuple[int, ...]) -> Tuple[Optional[WeightTable], Optional[int]]:
        # 参考上下界要到抽样后才确定，此时只能以朴素上界（最宽的带）预先检查规模
        if self.reference_bounds is None:
            return self.partition.prepare(true_sorted, total=self.public_total), None
        total = self.reference_bounds.resolve_total(true_sorted, self.public_total)
        self.reference_bounds.check_capacity(total)
        self.partition.check_capacity(true_sorted, bound=PartitionBound.naive(total, len(true_sorted)))
        return None, total

    def evaluate(self, histogram: Union[TrueHistogram, Mapping[Hashable, int]]) -> PrivatizedHistogram:
        """Execute the staged release for `histogram`."""
        hist = histogram if isinstance(histogram, TrueHistogram) else TrueHistogram.from_mapping(histogram)
        accountant = PrivacyAccountant(self.eta, name="histogram")
        if len(hist) == 0:
            return PrivatizedHistogram({}, (), Attribution(()), self.allocations, accountant.events)

        ranking, true_sorted = hist.ranking, hist.sorted_counts
        table, reference_total = self._prepare(true_sorted)
        if self.attribution.strategy == "scoped":
            ReattributionEngine.scoped_outcomes(hist.labels, self.ranges)

        logger.info(
            "privatizing histogram with %d cells: partition eta=%.6g, attribution eta=%.6g",
            len(hist),
            self.partition_eta.eta,
            self.attribution_eta.eta,
        )
        bound = None
        if self.reference_bounds is not None:
            release_logger(__name__, BOUNDS_STAGE).info("drawing reference bounds with eta=%.6g", self.bounds_eta.eta)
            accountant.add_event(
                self.bounds_eta,
                description="reference bounds",
                mechanism=self.reference_bounds.mechanism_id,
                metadata={"reference_cells": len(self.reference_bounds.reference)},
            )
            bound = self.reference_bounds.randomise(true_sorted, total=reference_total)
            table = self.partition.prepare(true_sorted, bound=bound)

        accountant.add_event(
            self.partition_eta,
            description="integer partition",
            mechanism=self.partition.mechanism_id,
            metadata={"distance": self.partition.distance},
        )
        private_sorted = self.partition.randomise(true_sorted, table=table)
        if bound is None:
            bound = table.bound

        release_logger(__name__, "attribution").debug("re-attributing with strategy %s", self.attribution.strategy)
        accountant.add_event(
            self.attribution_eta,
            description="re-attribution",
            mechanism=self.attribution.mechanism_id,
            metadata={"strategy": self.attribution.strategy},
        )
        attribution = self.attribution.randomise(
            ranking,
            counts=private_sorted,
            true_counts=true_sorted,
            label_order=hist.labels,
            ranges=self.ranges,
        )
        assigned = attribution.apply(private_sorted)
        counts = {label: assigned[label] for label in hist.labels}
        return PrivatizedHistogram(counts, private_sorted, attribution, self.allocations, accountant.events, bound)

    def expected_bias(
        self,
        histogram: Union[TrueHistogram, Mapping[Hashable, int]],
        bound: Optional[PartitionBound] = None,
    ) -> Tuple[float, ...]:
        """
        Expected error of the partition stage per rank, ``E[v_i] - t_i``.

        A diagnostic on the true counts, not a release: it is computed
        without randomness and must not be published. With a reference the
        bounds are random, so pass the `bound` of the release being examined.
        """
        hist = histogram if isinstance(histogram, TrueHistogram) else TrueHistogram.from_mapping(histogram)
        if len(hist) == 0:
            return ()
        if bound is None and self.reference_bounds is not None:
            raise ValidationError("a reference release needs the drawn bound to report its bias")
        return self.partition.expected_bias(hist.sorted_counts, total=self.public_total, bound=bound)


def ideal_counts(histogram: TrueHistogram, release: PrivatizedHistogram) -> Dict[Hashable, int]:
    """Privatized sorted counts assigned by the true ranking, in input order (diagnostic only)."""
    by_rank = dict(zip(histogram.ranking, release.sorted_counts))
    return {label: by_rank[label] for label in histogram.labels}


def privatize_histogram(
    histogram: Union[TrueHistogram, Mapping[Hashable, int]],
    eta: Any,
    **kwargs: Any,
) -> PrivatizedHistogram:
    """One-shot helper around :class:`PrivateHistogramQuery`."""
    return PrivateHistogramQuery(eta, **kwargs).evaluate(histogram)
