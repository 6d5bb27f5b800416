"""
Unit tests for the exact base-2 exponential mechanism.
"""
# 说明：ExponentialMechanism 与 normalized_sample 的单元测试。
# 覆盖：
# - 精确概率：效用 [2, 1, 0]、Eta(1, 1, 1) 时概率为 4/7、2/7、1/7
# - 经验频率按效用排序；平局的候选概率相同
# - mapping / (候选, 分数) 对 / utility_fn 等多种输入形式
# - 固定种子下逐比特可复现
# - 校验：空候选集、长度不匹配、非有限效用、超出校准区间、未校准
# - normalized_sample：零权重、拒绝上限、精度上限与单次抽取的比特深度上限
# - 精确权重的累积和被舍入时仍会细化精度并正确判定
# - 序列化/反序列化往返

from collections import Counter
from fractions import Fraction

import pytest

from dphist.core.arithmetic import ONE_INTERVAL, Dyadic, DyadicInterval
from dphist.core.exceptions import (
    InsufficientPrecisionError,
    InvalidBudgetError,
    InvalidCandidateSetError,
    NotCalibratedError,
    SamplingDidNotConvergeError,
)
from dphist.core.privacy import Eta
from dphist.core.utils import GeneratorBitSource, RandomBitSource
from dphist.mechanisms import ExponentialMechanism, normalized_sample, to_utility


class OnesBitSource(RandomBitSource):
    """Bit source that only ever produces ones."""

    def _next_word(self) -> int:
        return 0xFFFFFFFF

    def spawn(self, num):
        return [OnesBitSource() for _ in range(num)]


class PrefixBitSource(RandomBitSource):
    """Bit source whose first word is `first` and every later word is zero."""

    def __init__(self, first: int = 0x80000000) -> None:
        super().__init__()
        self._first = first
        self._words = 0

    def _next_word(self) -> int:
        self._words += 1
        return self._first if self._words == 1 else 0

    def spawn(self, num):
        return [PrefixBitSource(self._first) for _ in range(num)]


@pytest.fixture
def mechanism() -> ExponentialMechanism:
    # 提供 Eta(1, 1, 1) 且带固定种子的指数机制实例
    return ExponentialMechanism(Eta(1, 1, 1), rng=0, candidates=["red", "blue", "green"]).calibrate()


def test_exact_probabilities(mechanism: ExponentialMechanism) -> None:
    # 权重 1, 1/2, 1/4 归一化后为 4/7, 2/7, 1/7
    choice = mechanism.select(["a", "b", "c"], [2, 1, 0])
    assert choice in {"a", "b", "c"}
    assert mechanism.last_probabilities == [Fraction(4, 7), Fraction(2, 7), Fraction(1, 7)]


def test_empirical_frequencies_follow_utilities() -> None:
    # 大量采样后，高效用候选的频率严格更高
    mech = ExponentialMechanism(Eta(1, 1, 1), rng=123).calibrate()
    counts = Counter(mech.select(["a", "b", "c"], [2, 1, 0]) for _ in range(2000))
    assert counts["a"] > counts["b"] > counts["c"] > 0


def test_ties_receive_equal_probability(mechanism: ExponentialMechanism) -> None:
    # 效用相同的候选权重完全相同
    mechanism.select(["x", "y"], [1, 1])
    assert mechanism.last_probabilities == [Fraction(1, 2), Fraction(1, 2)]


def test_fractional_budget_records_float_probabilities() -> None:
    # z = 1/2 时权重为无理数，记录的近似概率之和约为 1
    mech = ExponentialMechanism(Eta(1, 1, Fraction(1, 2)), rng=1).calibrate()
    mech.select(["a", "b"], [1, 0])
    probs = mech.last_probabilities
    assert sum(probs) == pytest.approx(1.0)
    assert probs[0] > probs[1]


def test_input_forms(mechanism: ExponentialMechanism) -> None:
    # 映射与 (候选, 分数) 对都能被解析
    assert mechanism.randomise({"red": 0, "blue": 1}) in {"red", "blue"}
    assert mechanism.randomise([("x", 0), ("y", 3)]) in {"x", "y"}
    assert mechanism.randomise([["p", "q"], [1, 2]]) in {"p", "q"}
    assert mechanism.randomise(None, scores=[0, 1, 2]) in {"red", "blue", "green"}


def test_utility_fn() -> None:
    # utility_fn 基于上下文为默认候选集打分：效用 -|ctx - cand|
    def util(ctx, cand):
        return -abs(ctx - cand)

    mech = ExponentialMechanism(Eta(1, 1, 1), utility_fn=util, candidates=[0, 1, 2], rng=5).calibrate()
    assert mech.randomise(1) in {0, 1, 2}
    assert mech.last_probabilities == [Fraction(1, 4), Fraction(1, 2), Fraction(1, 4)]
    assert mech.sample_index([0, 1]) in {0, 1}


def test_reproducible_under_seed() -> None:
    # 相同种子给出完全相同的选择序列
    def run():
        mech = ExponentialMechanism(Eta(1, 1, Fraction(1, 3)), rng=42).calibrate()
        return [mech.select(range(5), [0, 1, 2, 1, 0]) for _ in range(30)]

    assert run() == run()


def test_validation_errors(mechanism: ExponentialMechanism) -> None:
    # 所有校验都在消耗随机比特之前完成
    source = GeneratorBitSource(0)
    mech = ExponentialMechanism(1, rng=source).calibrate()
    with pytest.raises(InvalidCandidateSetError):
        mech.select([], [])
    with pytest.raises(InvalidCandidateSetError):
        mech.select(["a", "b"], [1])
    with pytest.raises(InvalidBudgetError):
        mech.select(["a", "b"], [1, float("inf")])
    with pytest.raises(InvalidBudgetError):
        mech.select(["a", "b"], [1, True])
    assert source.bits_consumed == 0
    with pytest.raises(InvalidCandidateSetError):
        mechanism.calibrate(candidates=[])


def test_calibrated_utility_range() -> None:
    # 超出校准区间的效用视为无界效用
    mech = ExponentialMechanism(1, rng=0).calibrate(utility_min=0, utility_max=1)
    with pytest.raises(InvalidBudgetError):
        mech.select(["a", "b"], [0, 5])
    with pytest.raises(InvalidBudgetError):
        ExponentialMechanism(1).calibrate(utility_min=2, utility_max=1)


def test_requires_calibration() -> None:
    # 未校准时拒绝采样
    with pytest.raises(NotCalibratedError):
        ExponentialMechanism(1, rng=0).select(["a"], [0])


def test_invalid_budget_and_sensitivity() -> None:
    # 非正预算或非正敏感度
    with pytest.raises(InvalidBudgetError):
        ExponentialMechanism(0)
    with pytest.raises(InvalidBudgetError):
        ExponentialMechanism(1, sensitivity=0)


def test_to_utility_conversions() -> None:
    # 浮点效用被精确转换
    assert to_utility(0.5) == Fraction(1, 2)
    assert to_utility(Fraction(2, 3)) == Fraction(2, 3)
    with pytest.raises(InvalidBudgetError):
        to_utility("1")


def test_normalized_sample_skips_zero_weights() -> None:
    # 零权重的候选永远不会被选中
    weights = [DyadicInterval.from_int(0), ONE_INTERVAL, DyadicInterval.from_int(0)]
    rng = GeneratorBitSource(3)
    assert {normalized_sample(lambda p: weights, rng) for _ in range(20)} == {1}


def test_normalized_sample_rejects_degenerate_inputs() -> None:
    # 空权重或全零权重
    rng = GeneratorBitSource(0)
    with pytest.raises(InvalidCandidateSetError):
        normalized_sample(lambda p: [], rng)
    with pytest.raises(InvalidCandidateSetError):
        normalized_sample(lambda p: [DyadicInterval.from_int(0)], rng)


def test_normalized_sample_rejection_cap() -> None:
    # 总权重为 3 时随机点落在 [3, 4) 会被拒绝；全 1 比特流永远被拒绝
    with pytest.raises(SamplingDidNotConvergeError):
        normalized_sample(lambda p: [ONE_INTERVAL] * 3, OnesBitSource(), max_rejections=5)


def test_normalized_sample_precision_cap() -> None:
    # 包络宽度不随精度收紧时无法判定，超出最大精度后抛出 InsufficientPrecisionError
    coarse = [DyadicInterval(Dyadic(1, -1), Dyadic(1, 0)), ONE_INTERVAL]
    with pytest.raises(InsufficientPrecisionError):
        normalized_sample(lambda p: coarse, OnesBitSource(), initial_precision=8, max_precision=32)


def test_exact_weights_with_rounded_cumulative_sums() -> None:
    # 权重精确但累积和在初始精度下被舍入：必须细化精度而不是无限抽取比特
    tiny = DyadicInterval.exact(Dyadic(1, -70))
    source = PrefixBitSource()
    assert normalized_sample(lambda p: [ONE_INTERVAL, tiny], source) == 1
    assert source.bits_consumed == 71


def test_exact_weights_keep_small_candidates_reachable() -> None:
    # 夹在两个大权重之间的极小精确权重仍然可被选中：比特 0, 1 之后全零时随机点落在 [1, 1 + 2^-70)
    tiny = DyadicInterval.exact(Dyadic(1, -70))
    source = PrefixBitSource(0x40000000)
    assert normalized_sample(lambda p: [ONE_INTERVAL, tiny, ONE_INTERVAL], source) == 1
    assert source.bits_consumed == 72


def test_normalized_sample_depth_cap() -> None:
    # 单次抽取揭示的比特数超过 max_depth 时抛出 SamplingDidNotConvergeError
    coarse = [DyadicInterval(ONE_INTERVAL.lo, Dyadic(1, 1))] * 2
    with pytest.raises(SamplingDidNotConvergeError):
        normalized_sample(lambda p: coarse, OnesBitSource(), max_depth=20)


def test_serialization_roundtrip(mechanism: ExponentialMechanism) -> None:
    # 序列化保留敏感度、候选集与最近一次的精确概率
    mechanism.select(["a", "b", "c"], [2, 1, 0])
    restored = ExponentialMechanism.deserialize(mechanism.serialize())
    assert restored.eta == Eta(1, 1, 1)
    assert restored.default_candidates == ("red", "blue", "green")
    assert restored.last_probabilities == [Fraction(4, 7), Fraction(2, 7), Fraction(1, 7)]
    assert restored.calibrated is True
