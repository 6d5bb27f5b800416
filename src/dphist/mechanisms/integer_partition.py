"""
Differentially private integer partitions.

Given the true counts sorted in descending order, release a nonincreasing
vector of nonnegative integers of the same length, drawn from the
exponential mechanism whose utility is the negative L1 (default) or
L-infinity distance to the truth. Adding or removing one record moves one
sorted count by one, so both utilities have sensitivity 1 and a release
costs exactly ``eta``.

The output total is not forced to equal the input total: for an output at
distance ``d`` the sum differs from the true total by at most ``d`` under
L1 (``K * d`` under L-infinity), and the probability of a distance of at
least ``d`` is at most ``|outcomes| * 2 ** (-eta * d)``.
"""
# 说明：差分隐私整数划分机制（第一阶段）。
# 职责：
# - 校验输入为非增的非负整数向量，并在消耗随机性之前构建权重表（含规模检查）
# - 未提供公开上下界时，使用公开总数（缺省为真实总数）的朴素上界
# - K = 0 时直接返回空元组，不消耗随机性；全零输入仍正常运行机制
# - 记录最近一次发布的距离度量与输出规模，便于审计
# - expected_bias：按秩报告期望偏差 E[v_i] - t_i，仅用于诊断，不消耗随机性

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

from dphist.core.exceptions import ArithmeticOverflowError, ValidationError
from dphist.core.privacy.base_mechanism import BaseMechanism
from dphist.core.privacy.eta import Eta
from dphist.core.utils.config import get_config
from dphist.core.utils.logging import get_logger
from dphist.core.utils.param_validation import ensure, ensure_count
from .partition_bounds import PartitionBound
from .weight_table import DISTANCES, WeightTable

logger = get_logger(__name__)


def validate_sorted_counts(values: Sequence[Any]) -> Tuple[int, ...]:
    """Return `values` as a tuple of ints after checking it is a sorted count vector."""
    counts = tuple(ensure_count(value, error=ValidationError) for value in values)
    ensure(
        all(a >= b for a, b in zip(counts, counts[1:])),
        "counts must be sorted in non-increasing order",
        error=ValidationError,
    )
    ensure(sum(counts) <= get_config().max_count, "total count exceeds the configured bound", error=ArithmeticOverflowError)
    return counts


class IntegerPartitionMechanism(BaseMechanism):
    """Exponential mechanism over bounded nonincreasing integer vectors."""

    def __init__(
        self,
        eta: Any = 1,
        *,
        distance: str = "l1",
        bound: Optional[PartitionBound] = None,
        rng: Optional[Any] = None,
        name: Optional[str] = None,
    ):
        super().__init__(eta=eta, rng=rng, name=name)
        self.distance = self._validate_distance(distance)
        self.bound = bound
        self.public_total: Optional[int] = None

    @staticmethod
    def _validate_distance(distance: str) -> str:
        key = str(distance).lower()
        if key not in DISTANCES:
            raise ValidationError(f"distance must be one of {DISTANCES}, got {distance!r}")
        return key

    # pylint: disable=arguments-differ
    def _calibrate_parameters(
        self,
        *,
        distance: Optional[str] = None,
        bound: Optional[PartitionBound] = None,
        public_total: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        del kwargs
        if distance is not None:
            self.distance = self._validate_distance(distance)
        if bound is not None:
            self.bound = bound
        if public_total is not None:
            self.public_total = ensure_count(public_total, label="public_total", error=ValidationError)
        self._meta["distance"] = self.distance

    def resolve_bound(
        self,
        counts: Sequence[int],
        total: Optional[int] = None,
        bound: Optional[PartitionBound] = None,
    ) -> PartitionBound:
        """Bounds used for a release on `counts`; an explicit `bound` wins over the configured one."""
        if bound is not None:
            return bound
        if self.bound is not None:
            return self.bound
        public = total if total is not None else self.public_total
        if public is None:
            logger.warning("no public total supplied; deriving naive partition bounds from the true total")
            public = sum(counts)
        return PartitionBound.naive(ensure_count(public, label="total", error=ValidationError), len(counts))

    def check_capacity(
        self,
        value: Sequence[Any],
        *,
        total: Optional[int] = None,
        bound: Optional[PartitionBound] = None,
    ) -> None:
        """Validate the input and the table size for a release, without building the table."""
        counts = validate_sorted_counts(value)
        if counts:
            WeightTable.check_capacity(self.distance, self.resolve_bound(counts, total, bound), counts)

    def prepare(
        self,
        value: Sequence[Any],
        *,
        total: Optional[int] = None,
        bound: Optional[PartitionBound] = None,
    ) -> Optional[WeightTable]:
        """Validate the input and build the weight table without consuming randomness."""
        counts = validate_sorted_counts(value)
        if not counts:
            return None
        bound = self.resolve_bound(counts, total, bound)
        return WeightTable.build(self.distance, self.eta, bound, counts)

    def expected_bias(
        self,
        value: Sequence[Any],
        *,
        total: Optional[int] = None,
        bound: Optional[PartitionBound] = None,
    ) -> Tuple[float, ...]:
        """Expected ``release[i] - value[i]`` per rank; reporting only, consumes no randomness."""
        table = self.prepare(value, total=total, bound=bound)
        return () if table is None else table.bias()

    def randomise(
        self,
        value: Sequence[Any],
        *,
        total: Optional[int] = None,
        bound: Optional[PartitionBound] = None,
        table: Optional[WeightTable] = None,
    ) -> Tuple[int, ...]:
        """Release a privatized sorted count vector for the sorted counts `value`."""
        self.require_calibrated()
        if table is None:
            table = self.prepare(value, total=total, bound=bound)
        if table is None:
            return ()
        result = table.sample(self._rng)
        self._meta["last_cells"] = table.cells
        logger.debug("integer partition released %d cells with %s distance", table.cells, self.distance)
        return result

    def serialize(self) -> Dict[str, Any]:
        base = super().serialize()
        base.update(
            {
                "distance": self.distance,
                "bound": None if self.bound is None else self.bound.to_dict(),
                "public_total": self.public_total,
            }
        )
        return base

    @classmethod
    def deserialize(cls, data: Dict[str, Any]) -> "IntegerPartitionMechanism":
        bound = data.get("bound")
        inst = cls(
            eta=Eta.from_dict(data["eta"]),
            distance=data.get("distance", "l1"),
            bound=None if bound is None else PartitionBound.from_dict(bound),
            rng=None,
            name=data.get("name"),
        )
        inst.public_total = data.get("public_total")
        inst._meta = dict(data.get("meta", {}))
        inst._calibrated = bool(data.get("calibrated", False))
        return inst
