"""
Exact base-2 exponential mechanism.

Responsibilities:
    * sample a candidate with probability proportional to ``base ** loss``
      where ``loss = max(utility) - utility`` and ``base = (x * 2**-y) ** z``
    * never normalise with floats: inversion sampling compares lazily drawn
      random bits against exact (or outward-rounded) cumulative weights
    * support pre-computed utility scores or on-the-fly scoring functions
    * persist recent sampling metadata for auditability
"""
# 说明：精确的以 2 为底的指数机制实现。
# 职责：
# - 按 base^(u_max - u) 构造候选权重，全程使用二进有理数或外向舍入区间，不产生浮点概率
# - normalized_sample：不做除法的逆变换采样，从高位懒惰地抽取随机比特，直到随机区间完全落入某个候选的累积区间
# - 权重区间过粗无法判定时倍增精度（超过 max_precision_bits 抛出 InsufficientPrecisionError）
# - 拒绝次数超过 max_rejections 时抛出 SamplingDidNotConvergeError
# - 效用相同的候选权重完全相同，因此平局按均匀随机打破，与插入顺序无关
# - 序列化时保留候选集与最近一次采样概率（权重精确时为 Fraction），便于审计与测试

from __future__ import annotations

import math
import numbers
from bisect import bisect_right
from fractions import Fraction
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from dphist.core.arithmetic import Dyadic, DyadicInterval, cumulative
from dphist.core.exceptions import (
    InsufficientPrecisionError,
    InvalidBudgetError,
    InvalidCandidateSetError,
    SamplingDidNotConvergeError,
)
from dphist.core.privacy.base_mechanism import BaseMechanism
from dphist.core.privacy.eta import Eta
from dphist.core.utils.config import get_config
from dphist.core.utils.logging import get_logger
from dphist.core.utils.random import RandomBitSource

UtilityFn = Callable[[Any, Any], Any]
WeightsFn = Callable[[int], Sequence[DyadicInterval]]

logger = get_logger(__name__)


def to_utility(value: Any) -> Fraction:
    """Convert an int, Fraction or finite float utility into an exact Fraction."""
    if isinstance(value, bool):
        raise InvalidBudgetError("utilities must be numeric, not bool")
    if isinstance(value, numbers.Integral):
        result = Fraction(int(value))
    elif isinstance(value, numbers.Rational):
        result = Fraction(value)
    elif isinstance(value, numbers.Real):
        as_float = float(value)
        if not math.isfinite(as_float):
            raise InvalidBudgetError("unbounded utilities: non-finite score")
        result = Fraction(as_float)
    else:
        raise InvalidBudgetError(f"utilities must be numeric, got {type(value).__name__}")
    limit = get_config().max_utility_denominator
    if result.denominator > limit:
        raise InvalidBudgetError(
            f"unbounded utilities: denominator {result.denominator} exceeds the configured bound {limit}"
        )
    return result


def _is_scored_pair(item: Any) -> bool:
    return isinstance(item, tuple) and len(item) == 2 and isinstance(item[1], numbers.Real)


def _enclose(weights: WeightsFn, precision: int) -> Tuple[List[Dyadic], List[Dyadic], bool]:
    values = list(weights(precision))
    lows, highs = cumulative(values, precision)
    # 权重本身精确并不足够：累积和同样按 precision 舍入，只有每个累积端点都重合时才无需再细化
    return lows, highs, all(low == high for low, high in zip(lows, highs))


def normalized_sample(
    weights: WeightsFn,
    rng: RandomBitSource,
    *,
    initial_precision: Optional[int] = None,
    max_precision: Optional[int] = None,
    max_rejections: Optional[int] = None,
    max_depth: Optional[int] = None,
) -> int:
    """
    Return index ``i`` with probability ``w_i / sum(w)`` without dividing.

    `weights(precision)` must return enclosures of the nonnegative weights
    whose relative width shrinks as `precision` grows. A uniform point of
    ``[0, 2**top)`` with ``2**top >= total`` is revealed bit by bit from the
    most significant position; the draw restarts when the point lies beyond
    the total and stops once the revealed dyadic interval fits inside one
    cumulative slot for every value the enclosures admit. A single draw
    reveals at most `max_depth` bits (default ``2 * max_precision`` plus a
    small slack) before failing with :class:`SamplingDidNotConvergeError`.
    """
    config = get_config()
    precision = initial_precision or config.initial_precision
    max_precision = max_precision or config.max_precision_bits
    max_rejections = config.max_rejections if max_rejections is None else max_rejections

    lows, highs, exact = _enclose(weights, precision)
    if not highs:
        raise InvalidCandidateSetError("cannot sample from an empty candidate set")
    if highs[-1].is_zero():
        raise InvalidCandidateSetError("all candidate weights are zero")
    # 2^top 对真实总和成立上界；之后精度提高不会改变该性质，因为所有包络都包含真实值
    top = highs[-1].ceil_log2()
    slack_bits = len(highs).bit_length() + 2
    max_depth = 2 * max_precision + slack_bits if max_depth is None else max_depth

    rejections = 0
    while True:
        prefix = 0
        depth = 0
        while True:
            step = top - depth
            start = Dyadic(prefix, step)
            index = bisect_right(highs, start)
            if index == len(highs):
                break
            if Dyadic(prefix + 1, step) <= lows[index]:
                return index
            if not exact and step < highs[-1].floor_log2() - precision + slack_bits:
                precision *= 2
                if precision > max_precision:
                    raise InsufficientPrecisionError(
                        f"sampling decision needs more than {max_precision} bits of precision"
                    )
                logger.debug("refining weight enclosures to %d bits", precision)
                lows, highs, exact = _enclose(weights, precision)
                continue
            if depth >= max_depth:
                raise SamplingDidNotConvergeError(f"no candidate decided after {max_depth} random bits")
            prefix = (prefix << 1) | rng.bit()
            depth += 1
        rejections += 1
        if rejections > max_rejections:
            raise SamplingDidNotConvergeError(f"no candidate accepted after {max_rejections} restarts")


class ExponentialMechanism(BaseMechanism):
    """Pure-DP exponential mechanism with exact base-2 weights."""

    def __init__(
        self,
        eta: Any = 1,
        sensitivity: Any = 1,
        *,
        candidates: Optional[Sequence[Any]] = None,
        utility_fn: Optional[UtilityFn] = None,
        rng: Optional[Any] = None,
        name: Optional[str] = None,
    ):
        super().__init__(eta=eta, rng=rng, name=name)
        self.sensitivity = self._validate_sensitivity(sensitivity)
        self.utility_fn = utility_fn
        self.default_candidates: Optional[Tuple[Any, ...]] = tuple(candidates) if candidates else None
        self.utility_min: Optional[Fraction] = None
        self.utility_max: Optional[Fraction] = None
        self._last_candidates: Optional[Tuple[Any, ...]] = None
        self._last_probabilities: Optional[List[Any]] = None

    @staticmethod
    def _validate_sensitivity(sensitivity: Any) -> Fraction:
        value = to_utility(sensitivity)
        if value <= 0:
            raise InvalidBudgetError("sensitivity must be positive")
        return value

    # pylint: disable=arguments-differ
    def _calibrate_parameters(
        self,
        *,
        sensitivity: Optional[Any] = None,
        candidates: Optional[Sequence[Any]] = None,
        utility_min: Optional[Any] = None,
        utility_max: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        """Update sensitivity, optional utility range and default candidate set."""
        del kwargs
        if sensitivity is not None:
            self.sensitivity = self._validate_sensitivity(sensitivity)
        if candidates is not None:
            candidate_tuple = tuple(candidates)
            if not candidate_tuple:
                raise InvalidCandidateSetError("candidates must be a non-empty sequence")
            self.default_candidates = candidate_tuple
        low = None if utility_min is None else to_utility(utility_min)
        high = None if utility_max is None else to_utility(utility_max)
        if low is not None and high is not None and low > high:
            raise InvalidBudgetError("utility_min must not exceed utility_max")
        self.utility_min, self.utility_max = low, high
        self._meta["distribution"] = "exponential-base2"

    def _resolve_candidates_and_scores(
        self,
        value: Any,
        *,
        candidates: Optional[Sequence[Any]],
        scores: Optional[Sequence[Any]],
    ) -> Tuple[Tuple[Any, ...], List[Any]]:
        # 统一解析"候选集 + 分数"输入形式：显式 scores、映射、(候选, 分数) 对或 utility_fn
        if scores is not None:
            candidate_source = candidates or self.default_candidates
            if candidate_source is None:
                raise InvalidCandidateSetError("candidates must be provided when passing scores")
            return tuple(candidate_source), list(scores)

        if isinstance(value, Mapping):
            return tuple(value.keys()), list(value.values())

        if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
            # (候选, 数值分数) 对优先于"候选序列 + 分数序列"的二元形式
            if value and all(_is_scored_pair(item) for item in value):
                return tuple(item[0] for item in value), [item[1] for item in value]
            if len(value) == 2 and isinstance(value[0], Sequence) and not isinstance(value[0], (str, bytes)):
                return tuple(value[0]), list(value[1])

        if self.utility_fn is not None:
            candidate_source = candidates or self.default_candidates
            if candidate_source is None:
                raise InvalidCandidateSetError("candidates must be provided when using a utility function")
            candidate_tuple = tuple(candidate_source)
            return candidate_tuple, [self.utility_fn(value, cand) for cand in candidate_tuple]

        raise InvalidCandidateSetError("value must provide candidate utilities via mapping, pairs, or utility_fn")

    def _losses(self, candidates: Tuple[Any, ...], scores: Sequence[Any]) -> List[Fraction]:
        # 所有校验都在抽取任何随机比特之前完成
        if not candidates:
            raise InvalidCandidateSetError("candidates must be non-empty")
        if len(scores) != len(candidates):
            raise InvalidCandidateSetError("scores length must match candidates length")
        utilities = [to_utility(score) for score in scores]
        for utility in utilities:
            if (self.utility_min is not None and utility < self.utility_min) or (
                self.utility_max is not None and utility > self.utility_max
            ):
                raise InvalidBudgetError("unbounded utilities: score outside the calibrated range")
        best = max(utilities)
        return [(best - utility) / self.sensitivity for utility in utilities]

    def sample_index(self, scores: Sequence[Any]) -> int:
        """Draw an index into `scores` without touching the candidate bookkeeping."""
        self.require_calibrated()
        losses = self._losses(tuple(range(len(scores))), scores)
        return self._draw(losses)

    def _draw(self, losses: List[Fraction]) -> int:
        power_base, exponents = self.eta.weight_exponents(losses)

        def weights(precision: int) -> List[DyadicInterval]:
            return [power_base.power(n, precision) for n in exponents]

        index = normalized_sample(weights, self._rng)
        self._last_probabilities = self._probabilities(weights)
        logger.debug(
            "exponential mechanism selected among %d candidates (root=%d)",
            len(exponents),
            power_base.root,
        )
        return index

    @staticmethod
    def _probabilities(weights: WeightsFn) -> List[Any]:
        # 权重精确时记录 Fraction 概率；否则记录区间下端点的浮点近似，仅用于审计展示
        values = list(weights(get_config().initial_precision))
        if all(value.is_exact for value in values):
            exact = [value.lo.to_fraction() for value in values]
            total = sum(exact, Fraction(0))
            return [weight / total for weight in exact]
        approx = [float(value.lo.to_fraction()) for value in values]
        total = sum(approx)
        return [weight / total for weight in approx]

    def randomise(
        self,
        value: Any,
        *,
        candidates: Optional[Sequence[Any]] = None,
        scores: Optional[Sequence[Any]] = None,
    ) -> Any:
        """Sample a candidate with probability proportional to ``base ** loss``."""
        self.require_calibrated()
        candidates_tuple, score_list = self._resolve_candidates_and_scores(
            value,
            candidates=candidates,
            scores=scores,
        )
        losses = self._losses(candidates_tuple, score_list)
        chosen = self._draw(losses)
        self._last_candidates = candidates_tuple
        return candidates_tuple[chosen]

    def select(self, candidates: Sequence[Any], utilities: Sequence[Any]) -> Any:
        """Convenience wrapper: pick one of `candidates` scored by `utilities`."""
        return self.randomise(None, candidates=candidates, scores=utilities)

    @property
    def last_probabilities(self) -> Optional[List[Any]]:
        return None if self._last_probabilities is None else list(self._last_probabilities)

    def serialize(self) -> Dict[str, Any]:
        """Include sensitivity, utility range and recent sampling metadata."""
        base = super().serialize()
        base.update(
            {
                "sensitivity": str(self.sensitivity),
                "utility_min": None if self.utility_min is None else str(self.utility_min),
                "utility_max": None if self.utility_max is None else str(self.utility_max),
                "default_candidates": list(self.default_candidates) if self.default_candidates is not None else None,
                "last_candidates": list(self._last_candidates) if self._last_candidates is not None else None,
                "last_probabilities": None
                if self._last_probabilities is None
                else [str(p) if isinstance(p, Fraction) else p for p in self._last_probabilities],
            }
        )
        return base

    @classmethod
    def deserialize(cls, data: Dict[str, Any]) -> "ExponentialMechanism":
        inst = cls(
            eta=Eta.from_dict(data["eta"]) if "eta" in data else 1,
            sensitivity=Fraction(str(data.get("sensitivity", "1"))),
            candidates=data.get("default_candidates"),
            rng=None,
            name=data.get("name"),
        )
        inst._meta = dict(data.get("meta", {}))
        inst._calibrated = bool(data.get("calibrated", False))
        for attr in ("utility_min", "utility_max"):
            raw = data.get(attr)
            setattr(inst, attr, None if raw is None else Fraction(str(raw)))
        last_candidates = data.get("last_candidates")
        inst._last_candidates = tuple(last_candidates) if last_candidates else None
        last_probs = data.get("last_probabilities")
        inst._last_probabilities = (
            None if last_probs is None else [Fraction(p) if isinstance(p, str) else p for p in last_probs]
        )
        return inst
