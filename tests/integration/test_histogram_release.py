"""
Integration tests for the end-to-end private histogram release.
"""
# 说明：从直方图输入到最终发布结果的端到端集成测试。
# 覆盖：
# - 同一查询对象多次发布：每次发布使用独立的记账器，比特源线性消耗
# - 发布结果与其记账事件的 JSON 往返
# - 由 epsilon 换算得到的 Eta 驱动完整发布
# - 显式文件上下界 + scoped 重归属的组合路径
# - 以上一期发布为参考划分的三阶段发布：记账事件之和等于总预算，带状上下界包含发布的排序计数
# - 经验上的准确度：中等预算下多数发布与真实直方图的 L1 距离较小

from __future__ import annotations

from fractions import Fraction

from dphist import (
    Eta,
    PartitionBound,
    PrivacyAccountant,
    PrivateHistogramQuery,
    TrueHistogram,
    privatize_histogram,
)
from dphist.core.utils import GeneratorBitSource, deserialize_from_json
from dphist.mechanisms import l1_distance

HIST = {"north": 40, "south": 25, "east": 25, "west": 3, "center": 0}


def test_repeated_releases_share_the_bit_stream() -> None:
    # 每次 evaluate 都花费完整预算，事件记在各自的记账器中；随机流持续前进
    source = GeneratorBitSource(10)
    query = PrivateHistogramQuery(Eta(1, 1, 2), public_total=93, rng=source)
    first = query.evaluate(HIST)
    consumed = source.bits_consumed
    second = query.evaluate(HIST)
    assert consumed > 0
    assert source.bits_consumed > consumed
    assert len(first.events) == len(second.events) == 2
    assert first.labels == second.labels == tuple(HIST)


def test_result_json_rebuilds_accountant() -> None:
    # JSON 中的事件可以重建一个预算一致的记账器
    result = privatize_histogram(HIST, Eta(1, 1, 2), public_total=93, rng=4)
    payload = deserialize_from_json(result.to_json(), expect_version="1")
    accountant = PrivacyAccountant.deserialize({"total": Eta(1, 1, 2).to_dict(), "events": payload["events"]})
    assert accountant.spent == Eta(1, 1, 2)
    assert not accountant.can_allocate(Eta(1, 1, Fraction(1, 1000)))
    assert dict((label, count) for label, count in payload["counts"]) == result.counts


def test_release_from_epsilon() -> None:
    # epsilon 换算为以 2 为底的参数后驱动完整发布
    eta = Eta.from_epsilon(2.0, max_denominator=16)
    result = privatize_histogram(HIST, eta, public_total=93, rng=8)
    assert result.allocations["partition"] + result.allocations["attribution"] == eta
    assert sorted(result.attribution) == sorted(HIST)


def test_file_bounds_with_scoped_attribution() -> None:
    # 公开区间同时给出划分上下界与逐标签的重归属范围
    ranges = {"north": (30, 50), "south": (20, 30), "east": (20, 30), "west": (0, 10), "center": (0, 5)}
    bound = PartitionBound.from_ranges(ranges.values())
    result = privatize_histogram(
        HIST,
        Eta(1, 1, 4),
        bound=bound,
        strategy="scoped",
        ranges=ranges,
        rng=GeneratorBitSource(6),
    )
    assert bound.contains(result.sorted_counts)
    assert set(result.counts) == set(HIST)


def test_moderate_budget_is_accurate() -> None:
    # eta = 8 时发布结果与真实直方图的 L1 距离通常很小
    truth = TrueHistogram.from_mapping(HIST)
    query = PrivateHistogramQuery(Eta(1, 1, 8), public_total=truth.total, rng=GeneratorBitSource(2))
    distances = []
    for _ in range(20):
        result = query.evaluate(truth)
        distances.append(l1_distance(result.sorted_counts, truth.sorted_counts))
    assert sorted(distances)[len(distances) // 2] <= 4


def test_release_against_previous_release() -> None:
    # 上一期的发布结果作为本期的参考划分
    truth = TrueHistogram.from_mapping(HIST)
    previous = privatize_histogram(truth, Eta(1, 1, 4), public_total=93, rng=GeneratorBitSource(11))
    query = PrivateHistogramQuery(
        Eta(1, 1, 6),
        split={"bounds": 1, "partition": 2, "attribution": 3},
        public_total=93,
        reference=previous.sorted_counts,
        rng=GeneratorBitSource(12),
    )
    result = query.evaluate(truth)
    payload = deserialize_from_json(result.to_json(), expect_version="1")
    accountant = PrivacyAccountant.deserialize({"total": Eta(1, 1, 6).to_dict(), "events": payload["events"]})
    assert accountant.spent == Eta(1, 1, 6)
    assert [event.description for event in result.events][0] == "reference bounds"
    assert result.bound.contains(result.sorted_counts)
    assert all(high <= cap for high, cap in zip(result.bound.upper, PartitionBound.naive(93, 5).upper))
