"""
Budget scheduler for splitting a base-2 privacy budget across stages or steps.

Every split operates on the rational ``z`` of an :class:`Eta`, so the
shares of a split always compose back to the total exactly.
"""
# 说明：在总 Eta 预算之上为阶段或顺序步骤进行精确预算切分的调度器。
# 职责：
# - allocate_uniform / allocate_proportional：按键均分或按权重成比例切分，份额为精确有理数
# - allocate_windows：按有序窗口切分，decay = 1 时精确均分，decay < 1 时按几何衰减分配（前面的窗口更多）
# - remaining_after_allocation：计算一组分配之后的剩余预算
# - allocate_stages：按阶段名解析切分策略（"even"、权重映射或与阶段数等长的显式预算）
# - split_stages：两阶段（划分、归属）的便捷形式；启用参考上下界时另有 "bounds" 阶段
# 约定：
# - 任一份额非正时抛出 BudgetExceededError
# - 几何衰减的份额量化为 z / (resolution · count) 的整数倍，保证各份额的分母有界且总和精确等于 z

from __future__ import annotations

import numbers
from fractions import Fraction
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from dphist.core.exceptions import BudgetExceededError, InvalidBudgetError
from dphist.core.privacy.eta import Eta, as_eta
from dphist.core.utils.param_validation import ParamValidationError, ensure

STAGES = ("partition", "attribution")
BOUNDS_STAGE = "bounds"
REFERENCE_STAGES = (BOUNDS_STAGE,) + STAGES

SplitPolicy = Union[str, Mapping[str, Any], Sequence[Any]]


def _share(value: Any, label: str) -> Fraction:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ParamValidationError(f"{label} must be a real number")
    return Fraction(value) if isinstance(value, numbers.Rational) else Fraction(str(value))


class BudgetScheduler:
    """
    Schedule base-2 budgets over stages or ordered steps.

    Strategies:
        * uniform: equal split
        * proportional: split by user-provided weights
        * windows: ordered steps, optionally with geometric decay
    """

    def __init__(self, total: Any):
        self.total: Eta = as_eta(total)

    def _portion(self, ratio: Fraction) -> Eta:
        if ratio <= 0:
            raise BudgetExceededError("allocation policy assigns a non-positive share")
        return Eta(self.total.x, self.total.y, self.total.z * ratio)

    # ------------------------------ task-based allocation
    def allocate_uniform(self, items: Iterable[str]) -> Dict[str, Eta]:
        """Equal split across items (mapping values, if any, are ignored)."""
        keys = list(items)
        if not keys:
            raise ParamValidationError("items cannot be empty")
        share = Fraction(1, len(keys))
        return {key: self._portion(share) for key in keys}

    def allocate_proportional(self, weights: Mapping[str, Any]) -> Dict[str, Eta]:
        """Split proportionally to provided weights."""
        if not weights:
            raise ParamValidationError("weights cannot be empty")
        exact = {key: _share(weight, f"weight for {key!r}") for key, weight in weights.items()}
        total_weight = sum(exact.values(), Fraction(0))
        if total_weight <= 0:
            raise BudgetExceededError("weights must sum to a positive value")
        return {key: self._portion(weight / total_weight) for key, weight in exact.items()}

    # ------------------------------ ordered allocation
    def allocate_windows(
        self,
        window_count: int,
        *,
        decay: Any = 1,
        resolution: int = 16,
    ) -> Tuple[Eta, ...]:
        """
        Allocate across ordered windows with optional geometric decay.
        decay=1 -> exact uniform split; decay<1 distributes more to early windows.
        """
        if isinstance(window_count, bool) or not isinstance(window_count, numbers.Integral) or window_count <= 0:
            raise ParamValidationError("window_count must be a positive integer")
        ratio = _share(decay, "decay")
        ensure(ratio > 0, "decay must be positive")
        if ratio == 1:
            return tuple(self._portion(Fraction(1, window_count)) for _ in range(window_count))

        # 以整数单位分配：每个窗口至少一个单位，其余按几何权重向下取整，余数归第一个窗口
        units = resolution * window_count
        weights = [ratio**index for index in range(window_count)]
        total_weight = sum(weights, Fraction(0))
        spare = units - window_count
        counts = [1 + int(weight / total_weight * spare) for weight in weights]
        counts[0] += units - sum(counts)
        return tuple(self._portion(Fraction(count, units)) for count in counts)

    # ------------------------------ convenience
    def remaining_after_allocation(self, allocations: Union[Mapping[str, Eta], Iterable[Eta]]) -> Optional[Eta]:
        """Residual budget after a set of allocations; None once the budget is exhausted."""
        values = allocations.values() if isinstance(allocations, Mapping) else allocations
        spent = Fraction(0)
        for allocation in values:
            if not self.total.same_base(allocation):
                raise InvalidBudgetError("allocations must share the total's weight base")
            spent += allocation.z
        if spent > self.total.z:
            raise BudgetExceededError("allocations exceed the total budget")
        if spent == self.total.z:
            return None
        return Eta(self.total.x, self.total.y, self.total.z - spent)

    def allocate_stages(self, policy: SplitPolicy = "even", stages: Sequence[str] = STAGES) -> Dict[str, Eta]:
        """Resolve a split policy into one budget per named stage, in stage order."""
        stages = tuple(stages)
        if isinstance(policy, str):
            if policy.lower() != "even":
                raise BudgetExceededError(f"unknown split policy {policy!r}")
            return self.allocate_uniform(stages)
        if isinstance(policy, Mapping):
            unknown = set(policy) - set(stages)
            if unknown:
                raise BudgetExceededError(f"unknown stages in split policy: {sorted(unknown)}")
            return self.allocate_proportional({stage: policy.get(stage, 0) for stage in stages})
        parts = list(policy)
        if len(parts) != len(stages):
            raise BudgetExceededError(f"explicit split must name exactly {len(stages)} stage budgets")
        try:
            budgets = [as_eta(part) for part in parts]
        except InvalidBudgetError as exc:
            raise BudgetExceededError(f"explicit split assigns an invalid share: {exc}") from exc
        self.remaining_after_allocation(budgets)
        return dict(zip(stages, budgets))

    def split_stages(self, policy: SplitPolicy = "even") -> Tuple[Eta, Eta]:
        """Resolve a two-stage split policy into ``(partition, attribution)`` budgets."""
        shares = self.allocate_stages(policy)
        return shares["partition"], shares["attribution"]
