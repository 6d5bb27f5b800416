"""
Weight tables for the private integer partition mechanism.

The partition mechanism is a single exponential mechanism over every
nonincreasing integer vector ``v`` inside a :class:`PartitionBound`, with
weight ``omega ** distance(v, target)``. Enumerating that set is hopeless,
so the tables here hold the backward dynamic programme that lets the
sampler draw one cell at a time, largest rank first, from the exact
conditional distributions. The product of the conditionals is the joint
exponential mechanism, so the whole vector costs one release.

``L1WeightTable`` handles ``sum |v_i - t_i|``; ``LinfWeightTable`` handles
``max |v_i - t_i|`` by drawing the distance first (weighted by exact
integer counts of vectors at that distance) and then a uniform vector at
exactly that distance.
"""
# 说明：整数划分机制的权重表（反向动态规划），支持 L1 与 L∞ 两种距离。
# 职责：
# - L1WeightTable：W[i][v] = ω^{|v - t_i|} · S[i+1][min(v, hi_{i+1})]，S 为下一格的前缀和；按秩顺序做链式条件采样
# - LinfWeightTable：先以 ω^d · count(d) 抽取最大距离 d（count 为精确整数计数），再在"是否已达到 d"标志下均匀抽取向量
# - 表按精度缓存，采样器需要更高精度时按需重建
# - 表规模超过 RuntimeConfig.max_table_entries 时在消耗随机性前抛出 InsufficientPrecisionError
# 约定：
# - 目标向量 t 与上下界长度必须一致（LengthMismatchError）
# - 下界非增，因此任意前缀都存在可行的补全

from __future__ import annotations

from abc import ABC, abstractmethod
from fractions import Fraction
from typing import Dict, List, Optional, Sequence, Tuple

from dphist.core.arithmetic import ONE_INTERVAL, ZERO_INTERVAL, DyadicInterval, PowerBase
from dphist.core.exceptions import InsufficientPrecisionError, LengthMismatchError
from dphist.core.privacy.eta import Eta
from dphist.core.utils.config import get_config
from dphist.core.utils.logging import get_logger
from dphist.core.utils.random import RandomBitSource
from .exponential import normalized_sample
from .partition_bounds import PartitionBound

logger = get_logger(__name__)

DISTANCES = ("l1", "linf")


def l1_distance(left: Sequence[int], right: Sequence[int]) -> int:
    return sum(abs(a - b) for a, b in zip(left, right))


def linf_distance(left: Sequence[int], right: Sequence[int]) -> int:
    return max((abs(a - b) for a, b in zip(left, right)), default=0)


def _max_distance(bound: PartitionBound, target: Sequence[int]) -> int:
    return max(
        (max(abs(low - t), abs(high - t)) for low, high, t in zip(bound.lower, bound.upper, target)),
        default=0,
    )


def _midpoint(value: DyadicInterval) -> Fraction:
    return (value.lo.to_fraction() + value.hi.to_fraction()) / 2


class WeightTable(ABC):
    """Sampler state for one (budget, bounds, target) triple."""

    distance: str = ""

    def __init__(self, eta: Eta, bound: PartitionBound, target: Sequence[int]):
        if len(target) != bound.cells:
            raise LengthMismatchError(
                f"target has {len(target)} cells but the bounds describe {bound.cells}"
            )
        self.eta = eta
        self.bound = bound
        self.target = tuple(int(value) for value in target)
        # 整数损失 L 的权重为 base^(z·L) = ω^(L·unit)，ω = base^(1/root)
        self.power_base: PowerBase = eta.weight_base(1)
        self.unit = int(eta.z * self.power_base.root)
        self._check_size()

    @classmethod
    def l1(cls, eta: Eta, bound: PartitionBound, target: Sequence[int]) -> "L1WeightTable":
        return L1WeightTable(eta, bound, target)

    @classmethod
    def linf(cls, eta: Eta, bound: PartitionBound, target: Sequence[int]) -> "LinfWeightTable":
        return LinfWeightTable(eta, bound, target)

    @classmethod
    def build(cls, distance: str, eta: Eta, bound: PartitionBound, target: Sequence[int]) -> "WeightTable":
        key = distance.lower()
        if key == "l1":
            return cls.l1(eta, bound, target)
        if key == "linf":
            return cls.linf(eta, bound, target)
        raise ValueError(f"unknown partition distance {distance!r}; expected one of {DISTANCES}")

    @property
    def cells(self) -> int:
        return self.bound.cells

    @property
    def max_distance(self) -> int:
        """Largest per-cell distance to the target allowed by the bounds."""
        return _max_distance(self.bound, self.target)

    @staticmethod
    def required_entries(distance: str, bound: PartitionBound, target: Sequence[int]) -> int:
        # L∞ 对每个候选距离 d 都要做一次计数动态规划
        if distance == "linf":
            return bound.size * (_max_distance(bound, target) + 1)
        return bound.size

    @classmethod
    def check_capacity(cls, distance: str, bound: PartitionBound, target: Sequence[int]) -> None:
        """Raise before any randomness is drawn when the table would be too large."""
        limit = get_config().max_table_entries
        entries = cls.required_entries(distance, bound, target)
        if entries > limit:
            raise InsufficientPrecisionError(
                f"weight table needs {entries} entries, above the configured limit of {limit}"
            )

    def _check_size(self) -> None:
        self.check_capacity(self.distance, self.bound, self.target)

    def _distance_weights(self, count: int, precision: int) -> List[DyadicInterval]:
        """Enclosures of ``omega ** (unit * d)`` for d in ``range(count)``."""
        step = self.power_base.power(self.unit, precision + 8)
        values = [ONE_INTERVAL]
        for _ in range(1, count):
            values.append(values[-1].mul(step, precision))
        return values

    @abstractmethod
    def sample(self, rng: RandomBitSource) -> Tuple[int, ...]:
        """Draw one vector from the joint exponential mechanism."""

    @abstractmethod
    def _marginals(self, precision: int) -> List[List[Fraction]]:
        """Unnormalised mass of ``v_i = lower[i] + offset`` for every rank."""

    def bias(self, precision: Optional[int] = None) -> Tuple[float, ...]:
        """
        Expected ``v_i - target_i`` per rank under the joint mechanism.

        Reporting only: the masses are interval midpoints, so the figures
        carry the rounding error of the enclosures at `precision` bits.
        """
        precision = precision or get_config().initial_precision
        result = []
        for rank, masses in enumerate(self._marginals(precision)):
            total = sum(masses, Fraction(0))
            low = self.bound.lower[rank]
            expected = sum((m * (low + offset) for offset, m in enumerate(masses)), Fraction(0)) / total
            result.append(float(expected - self.target[rank]))
        return tuple(result)


class L1WeightTable(WeightTable):
    distance = "l1"

    def __init__(self, eta: Eta, bound: PartitionBound, target: Sequence[int]):
        super().__init__(eta, bound, target)
        self._rows: Dict[int, List[List[DyadicInterval]]] = {}

    def rows(self, precision: int) -> List[List[DyadicInterval]]:
        """Per-rank weight rows ``W[i][v - lower[i]]`` at `precision` bits."""
        cached = self._rows.get(precision)
        if cached is None:
            cached = self._build(precision)
            self._rows[precision] = cached
        return cached

    def _build(self, precision: int) -> List[List[DyadicInterval]]:
        lower, upper, target = self.bound.lower, self.bound.upper, self.target
        weights = self._distance_weights(self.max_distance + 1, precision)
        rows: List[List[DyadicInterval]] = [[] for _ in range(self.cells)]
        prefix: List[DyadicInterval] = []
        for rank in reversed(range(self.cells)):
            row = []
            for value in range(lower[rank], upper[rank] + 1):
                weight = weights[abs(value - target[rank])]
                if rank + 1 < self.cells:
                    # 下一格取值不超过 value 的所有补全权重之和
                    cap = min(value, upper[rank + 1]) - lower[rank + 1]
                    weight = weight.mul(prefix[cap], precision) if cap >= 0 else ZERO_INTERVAL
                row.append(weight)
            rows[rank] = row
            prefix = []
            running = ZERO_INTERVAL
            for weight in row:
                running = running.add(weight, precision)
                prefix.append(running)
        logger.debug("built L1 weight table with %d cells at %d bits", self.cells, precision)
        return rows

    def sample(self, rng: RandomBitSource) -> Tuple[int, ...]:
        result: List[int] = []
        previous = None
        for rank in range(self.cells):
            low = self.bound.lower[rank]
            high = self.bound.upper[rank] if previous is None else min(self.bound.upper[rank], previous)
            width = high - low + 1

            def weights(precision: int, rank: int = rank, width: int = width) -> List[DyadicInterval]:
                return self.rows(precision)[rank][:width]

            previous = low + normalized_sample(weights, rng)
            result.append(previous)
        return tuple(result)

    def _marginals(self, precision: int) -> List[List[Fraction]]:
        # 前向权重 F[i][v]：秩 0..i-1 的所有可行前缀（末值 >= v）的权重之和；边缘质量为 F · W
        lower, upper, target = self.bound.lower, self.bound.upper, self.target
        rows = self.rows(precision)
        weights = self._distance_weights(self.max_distance + 1, precision)
        forward = [ONE_INTERVAL] * len(rows[0])
        masses: List[List[Fraction]] = []
        for rank in range(self.cells):
            masses.append([_midpoint(f.mul(w, precision)) for f, w in zip(forward, rows[rank])])
            if rank + 1 == self.cells:
                break
            own = [f.mul(weights[abs(lower[rank] + offset - target[rank])], precision) for offset, f in enumerate(forward)]
            suffix = [ZERO_INTERVAL] * (len(own) + 1)
            for offset in reversed(range(len(own))):
                suffix[offset] = suffix[offset + 1].add(own[offset], precision)
            forward = [
                suffix[min(max(value, lower[rank]) - lower[rank], len(own))]
                for value in range(lower[rank + 1], upper[rank + 1] + 1)
            ]
        return masses


class LinfWeightTable(WeightTable):
    distance = "linf"

    def __init__(self, eta: Eta, bound: PartitionBound, target: Sequence[int]):
        super().__init__(eta, bound, target)
        self._counts = self._distance_counts()

    def _box(self, rank: int, distance: int) -> Tuple[int, int]:
        t = self.target[rank]
        return max(self.bound.lower[rank], t - distance), min(self.bound.upper[rank], t + distance)

    def _count_within(self, distance: int) -> int:
        """Number of nonincreasing vectors inside the bounds within `distance` of the target."""
        prefix: List[int] = []
        previous_low = 0
        for rank in reversed(range(self.cells)):
            low, high = self._box(rank, distance)
            row = []
            for value in range(low, high + 1):
                if rank + 1 < self.cells:
                    cap = min(value, high_next) - previous_low
                    row.append(prefix[cap] if cap >= 0 and prefix else 0)
                else:
                    row.append(1)
            prefix = []
            running = 0
            for count in row:
                running += count
                prefix.append(running)
            previous_low, high_next = low, high
            if not prefix:
                return 0
        return prefix[-1] if prefix else 1

    def _distance_counts(self) -> List[int]:
        # count(d) = N(<= d) - N(<= d-1)，均为精确整数
        counts: List[int] = []
        below = 0
        for distance in range(self.max_distance + 1):
            within = self._count_within(distance)
            counts.append(within - below)
            below = within
        return counts

    @property
    def distance_counts(self) -> Tuple[int, ...]:
        return tuple(self._counts)

    def _distance_weights_scaled(self, precision: int) -> List[DyadicInterval]:
        weights = self._distance_weights(len(self._counts), precision)
        return [
            weight.scale(count, precision) if count else ZERO_INTERVAL
            for weight, count in zip(weights, self._counts)
        ]

    def _exact_tables(self, distance: int) -> List[Tuple[int, List[List[int]]]]:
        # F[i][v][flag]：从第 i 格取值 v 出发（flag 表示之前是否已有格恰好达到距离 d）的补全数
        tables: List[Tuple[int, List[List[int]]]] = [(0, [])] * self.cells
        for rank in reversed(range(self.cells)):
            low, high = self._box(rank, distance)
            t = self.target[rank]
            row: List[List[int]] = []
            for value in range(low, high + 1):
                hit = abs(value - t) == distance
                counts = []
                for reached in (False, True):
                    flag = reached or hit
                    if rank + 1 < self.cells:
                        counts.append(self._completions(tables[rank + 1], value, flag))
                    else:
                        counts.append(1 if flag else 0)
                row.append(counts)
            tables[rank] = (low, self._prefix(row))
        return tables

    @staticmethod
    def _prefix(row: List[List[int]]) -> List[List[int]]:
        out: List[List[int]] = []
        running = [0, 0]
        for counts in row:
            running = [running[0] + counts[0], running[1] + counts[1]]
            out.append(running)
        return out

    @staticmethod
    def _completions(table: Tuple[int, List[List[int]]], cap: int, reached: bool) -> int:
        low, prefix = table
        index = min(cap - low, len(prefix) - 1)
        if index < 0:
            return 0
        return prefix[index][1 if reached else 0]

    def sample(self, rng: RandomBitSource) -> Tuple[int, ...]:
        distance = normalized_sample(self._distance_weights_scaled, rng)
        logger.debug("L-infinity partition drew its distance; building exact counting tables")
        tables = self._exact_tables(distance)
        result: List[int] = []
        previous = None
        reached = False
        for rank in range(self.cells):
            low, high = self._box(rank, distance)
            if previous is not None:
                high = min(high, previous)
            t = self.target[rank]
            choices = []
            for value in range(low, high + 1):
                flag = reached or abs(value - t) == distance
                if rank + 1 < self.cells:
                    weight = self._completions(tables[rank + 1], value, flag)
                else:
                    weight = 1 if flag else 0
                choices.append(weight)
            # 同一距离内的向量权重相同，因此按精确整数计数均匀抽取
            pick = rng.randbelow(sum(choices))
            for offset, weight in enumerate(choices):
                if pick < weight:
                    previous = low + offset
                    break
                pick -= weight
            reached = reached or abs(previous - t) == distance
            result.append(previous)
        return tuple(result)

    def _within_marginals(self, distance: int) -> List[Dict[int, int]]:
        """Per rank, how many vectors within `distance` of the target take each value."""
        boxes = [self._box(rank, distance) for rank in range(self.cells)]
        if any(low > high for low, high in boxes):
            return [{} for _ in boxes]
        backward: List[Dict[int, int]] = [{} for _ in boxes]
        low, high = boxes[-1]
        backward[-1] = {value: 1 for value in range(low, high + 1)}
        for rank in reversed(range(self.cells - 1)):
            next_low, next_high = boxes[rank + 1]
            running, prefix = 0, {}
            for value in range(next_low, next_high + 1):
                running += backward[rank + 1][value]
                prefix[value] = running
            low, high = boxes[rank]
            backward[rank] = {value: prefix.get(min(value, next_high), 0) for value in range(low, high + 1)}
        forward: List[Dict[int, int]] = [{} for _ in boxes]
        low, high = boxes[0]
        forward[0] = {value: 1 for value in range(low, high + 1)}
        for rank in range(self.cells - 1):
            low, high = boxes[rank]
            running, suffix = 0, {}
            for value in range(high, low - 1, -1):
                running += forward[rank][value]
                suffix[value] = running
            next_low, next_high = boxes[rank + 1]
            forward[rank + 1] = {value: suffix.get(max(value, low), 0) for value in range(next_low, next_high + 1)}
        return [
            {value: forward[rank][value] * backward[rank][value] for value in forward[rank]}
            for rank in range(self.cells)
        ]

    def _marginals(self, precision: int) -> List[List[Fraction]]:
        # 恰好距离 d 的计数 = 距离 <= d 的计数 - 距离 <= d-1 的计数，再乘以 ω^(unit·d)
        weights = self._distance_weights(len(self._counts), precision)
        masses = [[Fraction(0)] * (high - low + 1) for low, high in zip(self.bound.lower, self.bound.upper)]
        previous: List[Dict[int, int]] = [{} for _ in range(self.cells)]
        for distance, weight in enumerate(weights):
            within = self._within_marginals(distance)
            scale = _midpoint(weight)
            for rank, counts in enumerate(within):
                low = self.bound.lower[rank]
                for value, count in counts.items():
                    exact = count - previous[rank].get(value, 0)
                    if exact:
                        masses[rank][value - low] += scale * exact
            previous = within
        return masses
