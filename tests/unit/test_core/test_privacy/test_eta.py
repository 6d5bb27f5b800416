"""
Unit tests for the base-2 privacy parameter.
"""
# 说明：Eta(x, y, z) 的单元测试。
# 覆盖：
# - 参数校验：x、y 为整数且 x < 2^y，z 为正有理数，否则 InvalidBudgetError
# - eta / eta_fraction / epsilon 的报告值
# - scale / split / 加减法在 z 上的精确组合（0.5 + 0.5 == 1）
# - weight_exponents / weight_base：有理损失到整数指数的转换
# - as_eta 与 from_epsilon 的规范化及序列化往返

import math
from fractions import Fraction

import numpy as np
import pytest

from dphist.core.arithmetic import Dyadic
from dphist.core.exceptions import InvalidBudgetError
from dphist.core.privacy import Eta, as_eta


@pytest.mark.parametrize(
    "args",
    [(1, 1, 0), (1, 1, -1), (2, 1, 1), (0, 1, 1), (1, -1, 1), (1.5, 1, 1), (1, 1, "abc"), (1, 1, float("nan"))],
)
def test_invalid_parameters_raise(args) -> None:
    # 非正 z、底数不小于 1、非整数 x/y 或无法解析的 z 都应失败
    with pytest.raises(InvalidBudgetError):
        Eta(*args)


def test_reporting_values() -> None:
    # Eta(1, 1, 1) 即 eta = 1，epsilon = 2 ln 2
    eta = Eta(1, 1, 1)
    assert eta.eta == pytest.approx(1.0)
    assert eta.eta_fraction == Fraction(1)
    assert eta.epsilon == pytest.approx(2 * math.log(2))
    assert eta.base == Dyadic(1, -1)
    assert Eta(3, 2, 1).eta_fraction is None
    assert Eta(3, 2, 1).eta == pytest.approx(2 - math.log2(3))


def test_exact_composition() -> None:
    # 同底参数的加法与切分在 z 上精确进行
    half = Eta(1, 1, Fraction(1, 2))
    assert half + half == Eta(1, 1, 1)
    assert Eta(1, 1, 1).split(3).z == Fraction(1, 3)
    assert Eta(1, 1, 1).scale(Fraction(2, 5)).z == Fraction(2, 5)
    assert Eta(1, 1, 1) - half == half
    assert Eta(1, 1, "1/2").z == Fraction(1, 2)


def test_composition_errors() -> None:
    # 不同底、非正份额或差值非正都应失败
    with pytest.raises(InvalidBudgetError):
        Eta(1, 1, 1) + Eta(1, 2, 1)
    with pytest.raises(InvalidBudgetError):
        Eta(1, 1, 1).scale(0)
    with pytest.raises(InvalidBudgetError):
        Eta(1, 1, 1).split(0)
    with pytest.raises(InvalidBudgetError):
        Eta(1, 1, 1) - Eta(1, 1, 1)


def test_weight_exponents() -> None:
    # z = 1/2 时损失 0, 1, 2 对应 ω = (1/2)^(1/2) 的指数 0, 1, 2
    power_base, exponents = Eta(1, 1, Fraction(1, 2)).weight_exponents([0, 1, 2])
    assert power_base.root == 2
    assert exponents == [0, 1, 2]
    # 分数损失扩大 root
    power_base, exponents = Eta(1, 1, 1).weight_exponents([0, Fraction(1, 3)])
    assert power_base.root == 3
    assert exponents == [0, 1]
    with pytest.raises(InvalidBudgetError):
        Eta(1, 1, 1).weight_exponents([-1])


def test_weight_base() -> None:
    # 整数损失的权重底数：root 为 z 的分母
    assert Eta(1, 1, Fraction(2, 3)).weight_base().root == 3
    assert Eta(1, 1, 2).weight_base().root == 1
    with pytest.raises(InvalidBudgetError):
        Eta(1, 1, 1).weight_base(0)


def test_as_eta_normalisation() -> None:
    # 数值按以 2 为底的 eta 解释；numpy 整数同样可用
    assert as_eta(Fraction(1, 2)) == Eta(1, 1, Fraction(1, 2))
    assert as_eta(np.int64(2)) == Eta(1, 1, 2)
    assert as_eta(0.5) == Eta(1, 1, Fraction(1, 2))
    eta = Eta(1, 2, 1)
    assert as_eta(eta) is eta
    for bad in (0, -1, None, True):
        with pytest.raises(InvalidBudgetError):
            as_eta(bad)


def test_from_epsilon_rounds_down() -> None:
    # 转换后的 epsilon 不超过请求值
    eta = Eta.from_epsilon(1.0)
    assert eta.epsilon <= 1.0 + 1e-12
    assert eta.epsilon == pytest.approx(1.0, rel=5e-2)
    with pytest.raises(InvalidBudgetError):
        Eta.from_epsilon(0.0)


def test_dict_roundtrip() -> None:
    # z 以字符串保存，往返后保持精确
    eta = Eta(3, 2, Fraction(5, 7))
    data = eta.to_dict()
    assert data["z"] == "5/7"
    assert Eta.from_dict(data) == eta
