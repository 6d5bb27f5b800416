"""
Base-2 privacy parameter.

``Eta(x, y, z)`` describes the weight base ``(x * 2**-y) ** z`` used by the
exact exponential mechanism: an outcome whose loss is ``L`` receives weight
``base ** L``. With ``eta = z * (y - log2 x)`` the mechanism satisfies
``epsilon``-DP for ``epsilon = 2 * eta * ln 2`` and a sensitivity-1 utility,
but ``epsilon`` is only ever reported, never used to build a weight.

Splitting and composing budgets operates on the rational ``z`` exactly, so
``Eta(1, 1, 1/2) + Eta(1, 1, 1/2) == Eta(1, 1, 1)`` holds with no rounding.
"""
# 说明：以 2 为底的隐私参数 Eta(x, y, z)，权重底数为 (x·2^-y)^z。
# 职责：
# - 校验 x、y 为整数且 x < 2^y，z 为正有理数，否则抛出 InvalidBudgetError
# - 提供 eta / epsilon（仅用于报告的浮点值）与 eta_fraction（x 为 2 的幂时的精确值）
# - scale / split / __add__：在 z 上做精确有理运算，实现无舍入的顺序组合与预算切分
# - weight_exponents：把一组有理损失转换为 PowerBase 与整数指数，供精确采样器使用
# - as_eta：把调用方传入的数值（视作以 2 为底的 η）规范化为 Eta

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, List, Optional, Sequence, Tuple

from dphist.core.arithmetic import Dyadic, PowerBase, shared_power_base
from dphist.core.exceptions import InvalidBudgetError

_MAX_Z_DENOMINATOR = 2**16


def _coerce_rational(value: Any, label: str) -> Fraction:
    if isinstance(value, bool):
        raise InvalidBudgetError(f"{label} must be a positive rational number")
    if isinstance(value, numbers.Integral):
        return Fraction(int(value))
    if isinstance(value, numbers.Rational):
        return Fraction(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidBudgetError(f"{label} must be finite")
        exact = Fraction(value)
        if exact.denominator > _MAX_Z_DENOMINATOR:
            raise InvalidBudgetError(f"{label}={value!r} is not a short rational; pass a Fraction instead")
        return exact
    if isinstance(value, str):
        try:
            return Fraction(value)
        except ValueError as exc:
            raise InvalidBudgetError(f"{label} must be a rational number, got {value!r}") from exc
    raise InvalidBudgetError(f"{label} must be a rational number, got {type(value).__name__}")


def _lcm(a: int, b: int) -> int:
    return a * b // math.gcd(a, b)


@dataclass(frozen=True)
class Eta:
    """Base-2 privacy parameter with weight base ``(x * 2**-y) ** z``."""

    x: int = 1
    y: int = 1
    z: Fraction = field(default=Fraction(1))

    def __post_init__(self) -> None:
        for label in ("x", "y"):
            value = getattr(self, label)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise InvalidBudgetError(f"{label} must be an integer")
        if self.x < 1:
            raise InvalidBudgetError("x must be at least 1")
        if self.y < 0:
            raise InvalidBudgetError("y must be non-negative")
        # x < 2^y 等价于底数小于 1，即 eta > 0
        if self.x >= 1 << self.y:
            raise InvalidBudgetError("x must be smaller than 2**y for a positive privacy parameter")
        z = _coerce_rational(self.z, "z")
        if z <= 0:
            raise InvalidBudgetError("z must be positive")
        object.__setattr__(self, "x", int(self.x))
        object.__setattr__(self, "y", int(self.y))
        object.__setattr__(self, "z", z)

    # ------------------------------------------------------------------ views
    @property
    def eta(self) -> float:
        """Approximate base-2 privacy loss (reporting only)."""
        return float(self.z) * (self.y - math.log2(self.x))

    @property
    def eta_fraction(self) -> Optional[Fraction]:
        """Exact eta when x is a power of two, otherwise None."""
        if self.x & (self.x - 1):
            return None
        return self.z * (self.y - (self.x.bit_length() - 1))

    @property
    def epsilon(self) -> float:
        """Equivalent natural-base epsilon (reporting only)."""
        return 2.0 * math.log(2.0) * self.eta

    @property
    def base(self) -> Dyadic:
        """The dyadic rational ``x * 2**-y`` (before applying z)."""
        return Dyadic(self.x, -self.y)

    # ------------------------------------------------------------------ composition
    def same_base(self, other: "Eta") -> bool:
        return self.x == other.x and self.y == other.y

    def scale(self, share: Any) -> "Eta":
        """Return the parameter for a fraction `share` of this budget."""
        ratio = _coerce_rational(share, "share")
        if ratio <= 0:
            raise InvalidBudgetError("budget share must be positive")
        return Eta(self.x, self.y, self.z * ratio)

    def split(self, parts: int) -> "Eta":
        """Even share for one of `parts` sequential invocations."""
        if isinstance(parts, bool) or not isinstance(parts, numbers.Integral) or parts < 1:
            raise InvalidBudgetError("parts must be a positive integer")
        return Eta(self.x, self.y, self.z / int(parts))

    def __add__(self, other: "Eta") -> "Eta":
        if not isinstance(other, Eta):
            return NotImplemented
        if not self.same_base(other):
            raise InvalidBudgetError("only parameters sharing (x, y) compose exactly")
        return Eta(self.x, self.y, self.z + other.z)

    def __sub__(self, other: "Eta") -> "Eta":
        if not isinstance(other, Eta):
            return NotImplemented
        if not self.same_base(other):
            raise InvalidBudgetError("only parameters sharing (x, y) compose exactly")
        # 差值必须仍为正，否则由构造函数抛出 InvalidBudgetError
        return Eta(self.x, self.y, self.z - other.z)

    # ------------------------------------------------------------------ weights
    def weight_base(self, loss_denominator: int = 1) -> PowerBase:
        """PowerBase whose integer powers cover every loss that is a multiple of ``1 / loss_denominator``."""
        if loss_denominator < 1:
            raise InvalidBudgetError("loss denominator must be a positive integer")
        return shared_power_base(self.base, (self.z / loss_denominator).denominator)

    def weight_exponents(self, losses: Sequence[Fraction]) -> Tuple[PowerBase, List[int]]:
        """
        Express ``base ** (z * loss)`` for every loss as ``omega ** n``.

        Returns the PowerBase for omega and the integer exponents n. Losses
        must be nonnegative rationals.
        """
        scaled = [self.z * Fraction(loss) for loss in losses]
        root = 1
        for value in scaled:
            if value < 0:
                raise InvalidBudgetError("losses must be non-negative")
            root = _lcm(root, value.denominator)
        exponents = [int(value * root) for value in scaled]
        return shared_power_base(self.base, root), exponents

    # ------------------------------------------------------------------ serialization
    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": str(self.z), "eta": self.eta, "epsilon": self.epsilon}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Eta":
        return cls(int(data.get("x", 1)), int(data.get("y", 1)), Fraction(str(data.get("z", "1"))))

    @classmethod
    def from_epsilon(cls, epsilon: float, *, max_denominator: int = 1000) -> "Eta":
        """Largest ``Eta(1, 1, z)`` with denominator bound whose epsilon does not exceed `epsilon`."""
        if isinstance(epsilon, bool) or not isinstance(epsilon, numbers.Real):
            raise InvalidBudgetError("epsilon must be a real number")
        if not math.isfinite(float(epsilon)) or epsilon <= 0:
            raise InvalidBudgetError("epsilon must be positive and finite")
        target = float(epsilon) / (2.0 * math.log(2.0))
        z = Fraction(target).limit_denominator(max_denominator)
        # 向下取整，保证实际隐私损失不超过调用方给定的 epsilon
        while z > 0 and float(z) > target:
            z = Fraction(z.numerator - 1, z.denominator)
        if z <= 0:
            raise InvalidBudgetError("epsilon too small for the requested denominator bound")
        return cls(1, 1, z)

    def __str__(self) -> str:
        return f"Eta(x={self.x}, y={self.y}, z={self.z})"


def as_eta(value: Any) -> Eta:
    """Normalise an Eta or a positive rational (read as base-2 eta) into an Eta."""
    if isinstance(value, Eta):
        return value
    if value is None:
        raise InvalidBudgetError("a privacy parameter is required")
    z = _coerce_rational(value, "eta")
    if z <= 0:
        raise InvalidBudgetError("privacy parameter must be positive")
    return Eta(1, 1, z)
