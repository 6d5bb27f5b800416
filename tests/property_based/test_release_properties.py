"""
Property-based tests for the partition, re-attribution and histogram release.
"""
# 说明：两阶段发布各组件的属性测试。
# 覆盖：
# - 整数划分：输出长度为 K，非负、非增且落在公开上下界内
# - 重归属：任意策略、任意预算下输出都是输入标签的双射
# - 完整发布：固定种子下逐比特可复现；输出保持输入标签顺序
# - 记账：两阶段事件之和精确等于总预算

from fractions import Fraction

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from dphist.core.utils import GeneratorBitSource
from dphist.mechanisms import IntegerPartitionMechanism, PartitionBound, ReattributionEngine
from dphist.queries import TrueHistogram, privatize_histogram

from strategies import etas, histograms, seeds, sorted_counts

SLOW = settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.too_slow])


@SLOW
@given(sorted_counts(), etas(), seeds(), st.sampled_from(["l1", "linf"]))
def test_partition_output_is_valid(counts, eta, seed, distance) -> None:
    # 输出与输入等长、非负、非增，且在朴素上下界之内
    total = sum(counts)
    mech = IntegerPartitionMechanism(eta, distance=distance, rng=seed).calibrate(public_total=total)
    out = mech.randomise(counts)
    assert len(out) == len(counts)
    assert all(v >= 0 for v in out)
    assert all(a >= b for a, b in zip(out, out[1:]))
    assert PartitionBound.naive(total, len(counts)).contains(out)


@SLOW
@given(histograms(), etas(), seeds(), st.sampled_from(["sequential", "independent"]))
def test_reattribution_is_bijection(mapping, eta, seed, strategy) -> None:
    # 重归属输出恰好是真实排名标签的一个排列
    hist = TrueHistogram.from_mapping(mapping)
    engine = ReattributionEngine(eta, strategy=strategy, rng=seed).calibrate()
    result = engine.assign(hist.ranking, hist.sorted_counts, true_counts=hist.sorted_counts, label_order=hist.labels)
    assert len(result) == len(hist)
    assert set(result) == set(hist.labels)


@SLOW
@given(histograms(), etas(), seeds())
def test_release_is_reproducible(mapping, eta, seed) -> None:
    # 相同种子与输入给出完全相同的发布
    total = sum(mapping.values())
    first = privatize_histogram(mapping, eta, public_total=total, rng=GeneratorBitSource(seed))
    second = privatize_histogram(mapping, eta, public_total=total, rng=GeneratorBitSource(seed))
    assert first.counts == second.counts
    assert first.attribution == second.attribution
    assert first.labels == tuple(mapping)


@SLOW
@given(histograms(), etas(), st.integers(min_value=1, max_value=5), st.integers(min_value=1, max_value=5))
def test_stage_spends_compose_exactly(mapping, eta, w1, w2) -> None:
    # 两阶段记账事件的 z 之和精确等于总预算
    result = privatize_histogram(
        mapping,
        eta,
        split={"partition": w1, "attribution": w2},
        public_total=sum(mapping.values()),
        rng=0,
    )
    assert sum((event.eta.z for event in result.events), Fraction(0)) == eta.z
    assert result.events[0].eta.z == eta.z * Fraction(w1, w1 + w2)
