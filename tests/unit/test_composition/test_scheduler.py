"""
Unit tests for the base-2 budget scheduler.
"""
# 说明：BudgetScheduler 的行为验证测试，所有份额均在 z 上精确计算。
# 覆盖：
# - allocate_uniform / allocate_proportional 的精确切分与异常分支
# - allocate_windows 在均分与几何衰减场景下的分配与总和守恒
# - remaining_after_allocation 在预算用尽、超额与不同底时的行为
# - split_stages 对 "even"、权重映射与显式 (eta1, eta2) 的解析
# - allocate_stages 在三阶段（bounds、partition、attribution）下的解析与形状校验

from fractions import Fraction

import pytest

from dphist.composition import REFERENCE_STAGES, BudgetScheduler
from dphist.core.exceptions import BudgetExceededError, InvalidBudgetError
from dphist.core.privacy import Eta
from dphist.core.utils import ParamValidationError


def test_allocate_uniform_splits_evenly() -> None:
    # 按键数量精确等分 z
    allocations = BudgetScheduler(Eta(1, 1, 1)).allocate_uniform(["a", "b", "c"])
    assert {key: eta.z for key, eta in allocations.items()} == {k: Fraction(1, 3) for k in "abc"}
    with pytest.raises(ParamValidationError):
        BudgetScheduler(1).allocate_uniform([])


def test_allocate_proportional_uses_weights() -> None:
    # 权重 2:1 切分 z = 2
    allocations = BudgetScheduler(Eta(1, 1, 2)).allocate_proportional({"heavy": 2, "light": 1})
    assert allocations["heavy"].z == Fraction(4, 3)
    assert allocations["light"].z == Fraction(2, 3)


def test_allocate_proportional_rejects_bad_weights() -> None:
    # 空权重、非数值权重、零份额均被拒绝
    scheduler = BudgetScheduler(1)
    with pytest.raises(ParamValidationError):
        scheduler.allocate_proportional({})
    with pytest.raises(ParamValidationError):
        scheduler.allocate_proportional({"a": "heavy"})
    with pytest.raises(BudgetExceededError):
        scheduler.allocate_proportional({"a": 1, "b": 0})
    with pytest.raises(BudgetExceededError):
        scheduler.allocate_proportional({"a": 0})


def test_allocate_windows_uniform_and_decay() -> None:
    # 均分与几何衰减的份额之和都精确等于总预算
    scheduler = BudgetScheduler(Eta(1, 1, 1))
    uniform = scheduler.allocate_windows(4)
    assert [w.z for w in uniform] == [Fraction(1, 4)] * 4
    decayed = scheduler.allocate_windows(3, decay=Fraction(1, 2))
    assert [w.z for w in decayed] == [Fraction(28, 48), Fraction(13, 48), Fraction(7, 48)]
    assert sum((w.z for w in decayed), Fraction(0)) == 1
    assert decayed[0].z > decayed[1].z > decayed[2].z


def test_allocate_windows_every_window_is_funded() -> None:
    # 衰减很强时每个窗口仍至少获得一个单位
    windows = BudgetScheduler(Eta(1, 1, 1)).allocate_windows(5, decay=Fraction(1, 100))
    assert all(w.z > 0 for w in windows)
    assert sum((w.z for w in windows), Fraction(0)) == 1


@pytest.mark.parametrize("count, decay", [(0, 1), (-1, 1), (True, 1), (2, 0), (2, -1)])
def test_allocate_windows_invalid(count, decay) -> None:
    # 非法窗口数量与非正衰减
    with pytest.raises(ParamValidationError):
        BudgetScheduler(1).allocate_windows(count, decay=decay)


def test_remaining_after_allocation() -> None:
    # 用尽返回 None；超额或不同底报错
    scheduler = BudgetScheduler(Eta(1, 1, 1))
    half = Eta(1, 1, Fraction(1, 2))
    assert scheduler.remaining_after_allocation([half]) == half
    assert scheduler.remaining_after_allocation({"a": half, "b": half}) is None
    with pytest.raises(BudgetExceededError):
        scheduler.remaining_after_allocation([half, half, half])
    with pytest.raises(InvalidBudgetError):
        scheduler.remaining_after_allocation([Eta(1, 2, 1)])


def test_split_stages_policies() -> None:
    # "even"、权重映射与显式对
    scheduler = BudgetScheduler(Eta(1, 1, 1))
    assert scheduler.split_stages("even") == (Eta(1, 1, Fraction(1, 2)), Eta(1, 1, Fraction(1, 2)))
    first, second = scheduler.split_stages({"partition": 1, "attribution": 3})
    assert (first.z, second.z) == (Fraction(1, 4), Fraction(3, 4))
    first, second = scheduler.split_stages((Fraction(1, 3), Fraction(1, 2)))
    assert (first.z, second.z) == (Fraction(1, 3), Fraction(1, 2))


@pytest.mark.parametrize(
    "policy",
    ["uneven", {"partition": 1, "noise": 1}, {"partition": 1}, (Fraction(3, 4), Fraction(1, 2)), (1,), (0, 1)],
)
def test_split_stages_rejects_bad_policies(policy) -> None:
    # 未知策略、零份额、超出总预算或形状错误
    with pytest.raises(BudgetExceededError):
        BudgetScheduler(Eta(1, 1, 1)).split_stages(policy)


def test_allocate_stages_with_bounds_stage() -> None:
    # 启用参考上下界时按三个阶段切分，显式预算的个数必须与阶段数一致
    scheduler = BudgetScheduler(Eta(1, 1, 3))
    shares = scheduler.allocate_stages("even", REFERENCE_STAGES)
    assert list(shares) == ["bounds", "partition", "attribution"]
    assert all(share.z == 1 for share in shares.values())
    shares = scheduler.allocate_stages({"bounds": 1, "partition": 1, "attribution": 4}, REFERENCE_STAGES)
    assert shares["bounds"].z == Fraction(1, 2)
    assert shares["attribution"].z == 2
    with pytest.raises(BudgetExceededError):
        scheduler.allocate_stages((1, 1), REFERENCE_STAGES)
    with pytest.raises(BudgetExceededError):
        scheduler.allocate_stages({"partition": 1, "attribution": 1}, REFERENCE_STAGES)
