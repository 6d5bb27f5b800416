"""
Outward-rounded dyadic intervals and fractional powers of dyadic bases.

Weights of the form ``b ** (n / q)`` are irrational whenever ``q`` does not
divide ``n``. Instead of approximating them with floats they are enclosed in
``DyadicInterval`` objects whose endpoints are rounded outward, so the true
value is always inside the interval and the relative width is bounded by
``O(operations * 2**-precision)``. Samplers only take decisions that hold
for every value inside the enclosures and request more precision otherwise.
"""
# 说明：外向舍入的二进区间算术与二进底数的分数次幂包络。
# 职责：
# - DyadicInterval：非负区间 [lo, hi]，加/乘/幂运算时 lo 向下舍入、hi 向上舍入，真实值始终在区间内
# - PowerBase：ω = base^(1/root) 的区间包络，通过精确的整数比较（mid^root <= base）二分求得
# - PowerBase.power / powers：ω^n 的区间包络，按 (指数, 精度) 缓存，条目数有上限（先进先出淘汰）
# 约定：
# - precision 表示有效位数，区间相对宽度约为 运算次数 × 2^-precision
# - root == 1 时包络在精度足够后退化为精确值（lo == hi）

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Dict, Hashable, List, Tuple, TypeVar

from dphist.core.exceptions import ArithmeticOverflowError
from .dyadic import ONE, ZERO, Dyadic

_V = TypeVar("_V")

# 单个 PowerBase 保留的包络条目上限；超出时淘汰最早写入的条目
BRACKET_CACHE_LIMIT = 64
POWER_CACHE_LIMIT = 4096


def _remember(cache: Dict[Hashable, _V], key: Hashable, value: _V, limit: int) -> _V:
    while len(cache) >= limit:
        del cache[next(iter(cache))]
    cache[key] = value
    return value


def _add_down(a: Dyadic, b: Dyadic, precision: int) -> Dyadic:
    # 非负数相加的下界：若一项相对另一项小到低于舍入粒度，则直接丢弃（仍为合法下界）
    if a < b:
        a, b = b, a
    if b.is_zero():
        return a.round_down(precision)
    if a.floor_log2() - b.floor_log2() > precision + 1:
        return a.round_down(precision)
    return (a + b).round_down(precision)


def _add_up(a: Dyadic, b: Dyadic, precision: int) -> Dyadic:
    # 非负数相加的上界：小项被替换为不小于它的一个 ulp，避免与巨大指数差做精确对齐
    if a < b:
        a, b = b, a
    if b.is_zero():
        return a.round_up(precision)
    if a.floor_log2() - b.floor_log2() > precision + 1:
        ulp = Dyadic(1, a.floor_log2() - precision + 1)
        return (a.round_up(precision) + ulp).round_up(precision)
    return (a + b).round_up(precision)


@dataclass(frozen=True)
class DyadicInterval:
    """Closed interval ``[lo, hi]`` of nonnegative dyadic rationals."""

    lo: Dyadic
    hi: Dyadic

    def __post_init__(self) -> None:
        if self.lo.sign() < 0:
            raise ValueError("interval bounds must be non-negative")
        if self.hi < self.lo:
            raise ValueError("interval lower bound exceeds upper bound")

    @classmethod
    def exact(cls, value: Dyadic) -> "DyadicInterval":
        return cls(value, value)

    @classmethod
    def from_int(cls, value: int) -> "DyadicInterval":
        point = Dyadic.from_int(value)
        return cls(point, point)

    @property
    def is_exact(self) -> bool:
        return self.lo == self.hi

    def is_zero(self) -> bool:
        return self.hi.is_zero()

    def contains(self, value: Dyadic) -> bool:
        return self.lo <= value <= self.hi

    def add(self, other: "DyadicInterval", precision: int) -> "DyadicInterval":
        return DyadicInterval(_add_down(self.lo, other.lo, precision), _add_up(self.hi, other.hi, precision))

    def mul(self, other: "DyadicInterval", precision: int) -> "DyadicInterval":
        return DyadicInterval(
            (self.lo * other.lo).round_down(precision),
            (self.hi * other.hi).round_up(precision),
        )

    def scale(self, factor: int, precision: int) -> "DyadicInterval":
        """Multiply by a nonnegative integer."""
        return self.mul(DyadicInterval.from_int(factor), precision)

    def pow(self, power: int, precision: int) -> "DyadicInterval":
        # 平方-乘法求幂，每一步都外向舍入，保持包络有效
        result = DyadicInterval(ONE, ONE)
        base = self
        while power > 0:
            if power & 1:
                result = result.mul(base, precision)
            power >>= 1
            if power:
                base = base.mul(base, precision)
        return result

    def round(self, precision: int) -> "DyadicInterval":
        return DyadicInterval(self.lo.round_down(precision), self.hi.round_up(precision))


ZERO_INTERVAL = DyadicInterval(ZERO, ZERO)
ONE_INTERVAL = DyadicInterval(ONE, ONE)


def interval_sum(values: List[DyadicInterval], precision: int) -> DyadicInterval:
    total = ZERO_INTERVAL
    for value in values:
        total = total.add(value, precision)
    return total


def cumulative(values: List[DyadicInterval], precision: int) -> Tuple[List[Dyadic], List[Dyadic]]:
    """Return lower and upper bounds of the running sums of `values`."""
    lows: List[Dyadic] = []
    highs: List[Dyadic] = []
    running = ZERO_INTERVAL
    for value in values:
        running = running.add(value, precision)
        lows.append(running.lo)
        highs.append(running.hi)
    return lows, highs


class PowerBase:
    """
    Enclosures of ``omega = base ** (1 / root)`` and its integer powers.

    `base` is a dyadic rational in (0, 1]; `root` a positive integer.
    """

    def __init__(self, base: Dyadic, root: int = 1):
        if base.sign() <= 0 or ONE < base:
            raise ValueError("weight base must lie in (0, 1]")
        if root < 1:
            raise ValueError("root must be a positive integer")
        self.base = base
        self.root = int(root)
        self._brackets: Dict[int, DyadicInterval] = {}
        self._powers: Dict[Tuple[int, int], DyadicInterval] = {}

    @property
    def exact(self) -> bool:
        """True when omega itself is a dyadic rational."""
        return self.root == 1 or self.base == ONE

    def bracket(self, precision: int) -> DyadicInterval:
        """Interval containing omega with relative width at most 2**-precision."""
        cached = self._brackets.get(precision)
        if cached is not None:
            return cached
        if self.exact:
            result = DyadicInterval(self.base, self.base).round(precision)
        else:
            result = self._bisect(precision)
        return _remember(self._brackets, precision, result, BRACKET_CACHE_LIMIT)

    def _bisect(self, precision: int) -> DyadicInterval:
        # log2(base) ∈ [f, f+1)，因此 log2(ω) ∈ [f/root, (f+1)/root)
        floor = self.base.floor_log2()
        lo = Dyadic(1, floor // self.root)
        hi = Dyadic(1, -((-(floor + 1)) // self.root))
        if ONE < hi:
            hi = ONE
        while True:
            width = hi - lo
            if width.is_zero() or width.floor_log2() < lo.floor_log2() - precision:
                return DyadicInterval(lo, hi)
            mid = (lo + hi).ldexp(-1)
            try:
                # mid^root 与 base 的比较是精确的整数比较
                below = mid**self.root <= self.base
            except ArithmeticOverflowError as exc:
                raise ArithmeticOverflowError(
                    f"bracketing base**(1/{self.root}) at {precision} bits exceeds arithmetic bounds"
                ) from exc
            if below:
                lo = mid
            else:
                hi = mid

    def _exact_bits(self, exponent: int) -> int:
        return (self.base.mantissa.bit_length() - 1) * exponent + 1

    def power(self, exponent: int, precision: int) -> DyadicInterval:
        """Interval containing ``omega ** exponent``."""
        if exponent < 0:
            raise ValueError("exponent must be non-negative")
        key = (exponent, precision)
        cached = self._powers.get(key)
        if cached is not None:
            return cached
        if exponent == 0:
            result = ONE_INTERVAL
        elif self.exact and self._exact_bits(exponent) <= 4 * precision:
            # ω 为二进有理数且结果尾数不大时，先精确求幂再舍入
            result = DyadicInterval.exact(self.base**exponent).round(precision)
        else:
            result = self.bracket(precision + 8).pow(exponent, precision)
        return _remember(self._powers, key, result, POWER_CACHE_LIMIT)

    def clear(self) -> None:
        self._brackets.clear()
        self._powers.clear()

    @property
    def cache_size(self) -> int:
        return len(self._brackets) + len(self._powers)

    def powers(self, count: int, precision: int) -> List[DyadicInterval]:
        """Enclosures of omega**0 .. omega**(count - 1) by successive multiplication."""
        if count <= 0:
            return []
        step = self.bracket(precision + 8)
        values = [ONE_INTERVAL]
        current = ONE_INTERVAL
        for _ in range(1, count):
            current = current.mul(step, precision)
            values.append(current)
        return values


@functools.lru_cache(maxsize=256)
def shared_power_base(base: Dyadic, root: int = 1) -> PowerBase:
    """PowerBase instances are memoised so repeated releases reuse their brackets."""
    return PowerBase(base, root)
