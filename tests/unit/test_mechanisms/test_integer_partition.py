"""
Unit tests for the private integer partition mechanism.
"""
# 说明：IntegerPartitionMechanism 的单元测试。
# 覆盖：
# - [10, 5, 2]、eta = 1 的输出长度为 3，且非负、非增
# - K = 0 返回空元组且不消耗比特；全零输入照常运行
# - 未提供公开总数时回退到真实总数并记录警告
# - 输入校验、表规模上限均在消耗随机比特前触发
# - 显式上下界、L∞ 距离、固定种子复现与序列化往返
# - 单次调用传入的上下界优先于构造时的上下界；expected_bias 不消耗随机比特

import logging

import pytest

from dphist.core.exceptions import (
    ArithmeticOverflowError,
    InsufficientPrecisionError,
    NotCalibratedError,
    ValidationError,
)
from dphist.core.privacy import Eta
from dphist.core.utils import GeneratorBitSource, configure
from dphist.mechanisms import IntegerPartitionMechanism, PartitionBound, validate_sorted_counts


def _nonincreasing(values) -> bool:
    return all(a >= b for a, b in zip(values, values[1:]))


@pytest.mark.parametrize("distance", ["l1", "linf"])
def test_release_shape(distance) -> None:
    # 输出与输入等长，非负且非增
    mech = IntegerPartitionMechanism(1, distance=distance, rng=0).calibrate(public_total=17)
    for _ in range(10):
        out = mech.randomise([10, 5, 2])
        assert len(out) == 3
        assert all(isinstance(v, int) and v >= 0 for v in out)
        assert _nonincreasing(out)
        assert PartitionBound.naive(17, 3).contains(out)


def test_empty_input_spends_no_bits() -> None:
    # K = 0 直接返回空元组
    source = GeneratorBitSource(0)
    mech = IntegerPartitionMechanism(1, rng=source).calibrate(public_total=0)
    assert mech.randomise([]) == ()
    assert source.bits_consumed == 0


def test_all_zero_input() -> None:
    # 全零输入仍运行机制；公开总数为 0 时唯一可行输出为全零
    mech = IntegerPartitionMechanism(1, rng=1).calibrate(public_total=0)
    assert mech.randomise([0, 0, 0]) == (0, 0, 0)
    mech = IntegerPartitionMechanism(1, rng=1).calibrate(public_total=4)
    out = mech.randomise([0, 0, 0])
    assert len(out) == 3 and _nonincreasing(out)


def test_missing_public_total_warns(caplog) -> None:
    # 没有公开总数时使用真实总数作为朴素上界
    mech = IntegerPartitionMechanism(1, rng=3).calibrate()
    with caplog.at_level(logging.WARNING, logger="dphist.mechanisms.integer_partition"):
        out = mech.randomise([3, 1])
    assert "no public total" in caplog.text
    assert PartitionBound.naive(4, 2).contains(out)


def test_explicit_bound_is_respected() -> None:
    # 输出落在显式上下界之内
    bound = PartitionBound((6, 4, 2), (4, 2, 1))
    mech = IntegerPartitionMechanism(Eta(1, 1, 2), bound=bound, rng=5).calibrate()
    for _ in range(20):
        assert bound.contains(mech.randomise([5, 3, 1]))


def test_validation_happens_before_sampling() -> None:
    # 非法输入与超大权重表都在消耗随机比特之前失败
    source = GeneratorBitSource(0)
    mech = IntegerPartitionMechanism(1, rng=source).calibrate(public_total=1000)
    with pytest.raises(ValidationError):
        mech.randomise([1, 2])
    with pytest.raises(ValidationError):
        mech.randomise([3, -1])
    configure(max_table_entries=10)
    with pytest.raises(InsufficientPrecisionError):
        mech.randomise([600, 400])
    assert source.bits_consumed == 0


def test_validate_sorted_counts() -> None:
    # 返回 int 元组；总数超过配置上限时报溢出
    assert validate_sorted_counts([3, 3, 0]) == (3, 3, 0)
    configure(max_count=5)
    with pytest.raises(ArithmeticOverflowError):
        validate_sorted_counts([4, 2])


def test_requires_calibration_and_valid_distance() -> None:
    # 未校准拒绝发布；未知距离在构造时失败
    with pytest.raises(NotCalibratedError):
        IntegerPartitionMechanism(1, rng=0).randomise([1])
    with pytest.raises(ValidationError):
        IntegerPartitionMechanism(1, distance="l2")


def test_reproducible_under_seed() -> None:
    # 相同种子得到相同的输出序列
    def run():
        mech = IntegerPartitionMechanism(Eta(1, 1, "1/2"), rng=11).calibrate(public_total=20)
        return [mech.randomise([9, 6, 5]) for _ in range(5)]

    assert run() == run()


def test_serialization_roundtrip() -> None:
    # 序列化保留距离、上下界与公开总数
    bound = PartitionBound((5, 3), (0, 0))
    mech = IntegerPartitionMechanism(2, distance="linf", bound=bound, rng=0).calibrate(public_total=8)
    restored = IntegerPartitionMechanism.deserialize(mech.serialize())
    assert restored.distance == "linf"
    assert restored.bound == bound
    assert restored.public_total == 8
    assert restored.calibrated is True
    assert restored.mechanism_id == "integerpartition"


def test_call_bound_and_expected_bias() -> None:
    # [2, 1]、N = 3、eta = 1 时 E[v] = (1.92, 0.64)
    source = GeneratorBitSource(0)
    mech = IntegerPartitionMechanism(1, rng=source).calibrate(public_total=3)
    bias = mech.expected_bias([2, 1])
    assert bias == pytest.approx((-0.08, -0.36))
    assert mech.expected_bias([]) == ()
    assert source.bits_consumed == 0
    band = PartitionBound((2, 1), (2, 1))
    assert mech.randomise([2, 1], bound=band) == (2, 1)
    configure(max_table_entries=3)
    with pytest.raises(InsufficientPrecisionError):
        mech.check_capacity([2, 1])
    mech.check_capacity([2, 1], bound=band)
