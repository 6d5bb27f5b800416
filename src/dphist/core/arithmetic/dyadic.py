"""
Exact dyadic rationals.

A ``Dyadic`` is the exact value ``mantissa * 2**exponent``. Every weight
and cumulative sum the samplers compare is a dyadic rational or is enclosed
between two of them, so no probability is ever represented as a float.

Responsibilities
  - Canonical immutable representation (odd mantissa, or zero).
  - Exact add / subtract / multiply / integer power / comparison.
  - Directed rounding to a number of significant bits (floor / ceiling),
    used by interval arithmetic to keep enclosures small.
  - Loud failure when a mantissa exceeds the configured bit bound.
"""
# 说明：二进有理数（mantissa · 2^exponent）的精确实现，是所有概率计算的基础数值类型。
# 职责：
# - 规范化表示：尾数为奇数（或零），保证相等判断与哈希按值进行
# - 精确的加减乘、整数次幂与全序比较，不产生任何浮点中间量
# - round_down / round_up：按有效位数向下/向上取整，供区间算术做外向舍入
# - 尾数位宽超过 RuntimeConfig.max_mantissa_bits 时抛出 ArithmeticOverflowError

from __future__ import annotations

import functools
import numbers
from dataclasses import dataclass
from fractions import Fraction
from typing import Tuple, Union

from dphist.core.exceptions import ArithmeticOverflowError
from dphist.core.utils.config import get_config

DyadicLike = Union["Dyadic", int]


def _check_bits(bits: int) -> None:
    limit = get_config().max_mantissa_bits
    if bits > limit:
        raise ArithmeticOverflowError(f"mantissa of {bits} bits exceeds the configured bound of {limit} bits")


@functools.total_ordering
@dataclass(frozen=True)
class Dyadic:
    """Exact value ``mantissa * 2**exponent`` in canonical form."""

    mantissa: int = 0
    exponent: int = 0

    def __post_init__(self) -> None:
        mantissa, exponent = self.mantissa, self.exponent
        if isinstance(mantissa, bool) or not isinstance(mantissa, numbers.Integral):
            raise TypeError("mantissa must be an integer")
        if isinstance(exponent, bool) or not isinstance(exponent, numbers.Integral):
            raise TypeError("exponent must be an integer")
        mantissa, exponent = int(mantissa), int(exponent)
        if mantissa == 0:
            exponent = 0
        else:
            # 去掉尾数的低位 0，得到唯一的规范形式
            trailing = (mantissa & -mantissa).bit_length() - 1
            mantissa >>= trailing
            exponent += trailing
            _check_bits(mantissa.bit_length())
        object.__setattr__(self, "mantissa", mantissa)
        object.__setattr__(self, "exponent", exponent)

    # ------------------------------------------------------------------ constructors
    @classmethod
    def from_int(cls, value: int) -> "Dyadic":
        return cls(int(value), 0)

    @classmethod
    def from_fraction(cls, value: Fraction) -> "Dyadic":
        """Exact conversion; the denominator must be a power of two."""
        value = Fraction(value)
        denominator = value.denominator
        if denominator & (denominator - 1):
            raise ValueError(f"{value} is not a dyadic rational")
        return cls(value.numerator, -(denominator.bit_length() - 1))

    @staticmethod
    def coerce(value: DyadicLike) -> "Dyadic":
        if isinstance(value, Dyadic):
            return value
        if isinstance(value, numbers.Integral) and not isinstance(value, bool):
            return Dyadic(int(value), 0)
        raise TypeError(f"cannot interpret {value!r} as a dyadic rational")

    # ------------------------------------------------------------------ queries
    def is_zero(self) -> bool:
        return self.mantissa == 0

    def sign(self) -> int:
        return (self.mantissa > 0) - (self.mantissa < 0)

    def floor_log2(self) -> int:
        """Largest k with 2**k <= |self| (self must be non-zero)."""
        if self.mantissa == 0:
            raise ValueError("log2 of zero")
        return abs(self.mantissa).bit_length() - 1 + self.exponent

    def ceil_log2(self) -> int:
        """Smallest k with 2**k >= |self| (self must be non-zero)."""
        floor = self.floor_log2()
        return floor if abs(self.mantissa) == 1 else floor + 1

    def to_fraction(self) -> Fraction:
        if self.exponent >= 0:
            return Fraction(self.mantissa << self.exponent)
        return Fraction(self.mantissa, 1 << -self.exponent)

    # ------------------------------------------------------------------ arithmetic
    @staticmethod
    def _align(a: "Dyadic", b: "Dyadic") -> Tuple[int, int, int]:
        exponent = min(a.exponent, b.exponent)
        return a.mantissa << (a.exponent - exponent), b.mantissa << (b.exponent - exponent), exponent

    def __add__(self, other: DyadicLike) -> "Dyadic":
        other = Dyadic.coerce(other)
        if other.mantissa == 0:
            return self
        if self.mantissa == 0:
            return other
        left, right, exponent = self._align(self, other)
        return Dyadic(left + right, exponent)

    __radd__ = __add__

    def __neg__(self) -> "Dyadic":
        return Dyadic(-self.mantissa, self.exponent)

    def __sub__(self, other: DyadicLike) -> "Dyadic":
        return self + (-Dyadic.coerce(other))

    def __rsub__(self, other: DyadicLike) -> "Dyadic":
        return Dyadic.coerce(other) - self

    def __mul__(self, other: DyadicLike) -> "Dyadic":
        other = Dyadic.coerce(other)
        _check_bits(abs(self.mantissa).bit_length() + abs(other.mantissa).bit_length() - 1)
        return Dyadic(self.mantissa * other.mantissa, self.exponent + other.exponent)

    __rmul__ = __mul__

    def __pow__(self, power: int) -> "Dyadic":
        if isinstance(power, bool) or not isinstance(power, numbers.Integral) or power < 0:
            raise ValueError("dyadic powers must use a non-negative integer exponent")
        power = int(power)
        if power == 0:
            return Dyadic(1, 0)
        # 先估算结果位宽，超限时在真正计算大整数之前失败
        _check_bits((abs(self.mantissa).bit_length() - 1) * power + 1)
        return Dyadic(self.mantissa**power, self.exponent * power)

    def ldexp(self, shift: int) -> "Dyadic":
        """Multiply by ``2**shift`` exactly."""
        return Dyadic(self.mantissa, self.exponent + shift)

    # ------------------------------------------------------------------ rounding
    def round_down(self, bits: int) -> "Dyadic":
        """Floor to at most `bits` significant bits."""
        if bits <= 0:
            raise ValueError("bits must be positive")
        excess = abs(self.mantissa).bit_length() - bits
        if excess <= 0:
            return self
        # Python 的算术右移对负数同样向下取整
        return Dyadic(self.mantissa >> excess, self.exponent + excess)

    def round_up(self, bits: int) -> "Dyadic":
        """Ceiling to at most `bits` significant bits (may carry to a power of two)."""
        return -((-self).round_down(bits))

    # ------------------------------------------------------------------ ordering
    def _compare(self, other: "Dyadic") -> int:
        if self.sign() != other.sign():
            return -1 if self.sign() < other.sign() else 1
        if self.mantissa == 0:
            return 0
        # 同号时先比较数量级，避免对相距很远的指数做巨大的移位
        mag_self, mag_other = self.floor_log2(), other.floor_log2()
        if mag_self != mag_other:
            larger = mag_self > mag_other
            if self.sign() < 0:
                larger = not larger
            return 1 if larger else -1
        left, right, _ = self._align(self, other)
        return (left > right) - (left < right)

    def __lt__(self, other: DyadicLike) -> bool:
        return self._compare(Dyadic.coerce(other)) < 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, numbers.Integral) and not isinstance(other, bool):
            other = Dyadic(int(other), 0)
        if not isinstance(other, Dyadic):
            return NotImplemented
        return self.mantissa == other.mantissa and self.exponent == other.exponent

    def __hash__(self) -> int:
        return hash((self.mantissa, self.exponent))

    def __repr__(self) -> str:
        return f"Dyadic({self.mantissa}, {self.exponent})"


ZERO = Dyadic(0, 0)
ONE = Dyadic(1, 0)
