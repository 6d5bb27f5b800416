"""
Public per-cell bounds for privatized integer partitions.

Bounds restrict the outcome space of the partition mechanism to vectors
``v`` with ``lower[i] <= v[i] <= upper[i]``. They must not depend on the
private data: the naive strategy derives them from a public total only,
explicit bounds come from an external source such as a prior release.
"""
# 说明：整数划分机制的公开逐格上下界。
# 职责：
# - PartitionBound：校验上下界长度一致、非负、lower <= upper 且均非增
# - naive：由公开总数 N 推出 upper[i] = N // (i + 1)、lower[i] = 0（第 i 大的格不可能超过 N/(i+1)）
# - from_ranges：由逐标签的 (lower, upper) 记录构造，两列分别降序排序后按秩对齐
# - with_reference：以历史参考划分为中心、半径 r 的带状上下界，并截断到朴素上界之内
# - cells / size：格数与权重表条目数，供机制在消耗随机性前做规模检查

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Sequence, Tuple

from dphist.core.exceptions import LengthMismatchError, ValidationError
from dphist.core.utils.param_validation import ensure, ensure_count


@dataclass(frozen=True)
class PartitionBound:
    """Nonincreasing integer bounds ``lower[i] <= v[i] <= upper[i]`` per rank."""

    upper: Tuple[int, ...]
    lower: Tuple[int, ...]

    def __post_init__(self) -> None:
        upper = tuple(ensure_count(value, label="upper bound", error=ValidationError) for value in self.upper)
        lower = tuple(ensure_count(value, label="lower bound", error=ValidationError) for value in self.lower)
        if len(upper) != len(lower):
            raise LengthMismatchError("upper and lower bounds must have the same length")
        for index, (low, high) in enumerate(zip(lower, upper)):
            ensure(low <= high, f"lower bound exceeds upper bound at rank {index}", error=ValidationError)
        for label, values in (("upper", upper), ("lower", lower)):
            ensure(
                all(a >= b for a, b in zip(values, values[1:])),
                f"{label} bounds must be non-increasing",
                error=ValidationError,
            )
        object.__setattr__(self, "upper", upper)
        object.__setattr__(self, "lower", lower)

    @classmethod
    def naive(cls, total: int, cells: int) -> "PartitionBound":
        """Bounds implied by a public total alone."""
        total = ensure_count(total, label="total", error=ValidationError)
        cells = ensure_count(cells, label="cells", error=ValidationError)
        return cls(tuple(total // (rank + 1) for rank in range(cells)), (0,) * cells)

    @classmethod
    def from_ranges(cls, ranges: Iterable[Tuple[int, int]]) -> "PartitionBound":
        """Build rank bounds from unordered per-label ``(lower, upper)`` pairs."""
        pairs = list(ranges)
        lower = sorted((pair[0] for pair in pairs), reverse=True)
        upper = sorted((pair[1] for pair in pairs), reverse=True)
        return cls(tuple(upper), tuple(lower))

    @classmethod
    def with_reference(cls, reference: Sequence[int], radius: int, total: int) -> "PartitionBound":
        """
        Band of half-width `radius` around a public reference partition.

        The reference is sorted in descending order and gives one cell per
        entry; use :meth:`align_reference` to fit it to a histogram. Upper bounds
        never exceed the naive bounds for `total`, so the band always holds
        at least one nonincreasing vector.
        """
        radius = ensure_count(radius, label="radius", error=ValidationError)
        total = ensure_count(total, label="total", error=ValidationError)
        ref = sorted((ensure_count(value, label="reference", error=ValidationError) for value in reference), reverse=True)
        upper = tuple(min(total // (rank + 1), value + radius) for rank, value in enumerate(ref))
        lower = tuple(min(max(value - radius, 0), high) for value, high in zip(ref, upper))
        return cls(upper, lower)

    @staticmethod
    def align_reference(reference: Sequence[int], cells: int) -> Tuple[int, ...]:
        """Sort `reference` descending and pad with zeros or truncate to `cells`."""
        ref = sorted((int(value) for value in reference), reverse=True)[:cells]
        return tuple(ref) + (0,) * (cells - len(ref))

    @property
    def cells(self) -> int:
        return len(self.upper)

    @property
    def size(self) -> int:
        """Number of (rank, value) pairs a weight table over these bounds holds."""
        return sum(high - low + 1 for low, high in zip(self.lower, self.upper))

    def contains(self, vector: Sequence[int]) -> bool:
        if len(vector) != self.cells:
            return False
        return all(low <= value <= high for value, low, high in zip(vector, self.lower, self.upper))

    def to_dict(self) -> Dict[str, Any]:
        return {"upper": list(self.upper), "lower": list(self.lower)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartitionBound":
        return cls(tuple(data["upper"]), tuple(data["lower"]))
