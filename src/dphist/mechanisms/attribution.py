"""
Differentially private re-attribution of sorted counts to labels.

Responsibilities:
    * ``sequential``: fill ranks 0..K-1 in turn, each time choosing among the
      labels not yet placed with utility ``-|true_rank(label) - rank|``; the
      stage budget is split over the K steps (evenly or with geometric decay)
      so the composed loss equals the stage budget exactly; each step is
      calibrated to the rank sensitivity ``K - 1``
    * ``independent``: every label draws one of the privatized counts with
      utility ``-|value - true_count|`` using the whole stage budget (one
      record touches one label); labels are then ordered by their draw
    * ``scoped``: like ``independent`` but each label draws from its own
      public ``[lower, upper]`` range
    * always return a bijection between ranks and labels
"""
# 说明：差分隐私重归属引擎（第二阶段），把隐私化的降序计数重新分配给原始标签。
# 职责：
# - Attribution：秩 -> 标签的不可变双射，构造时校验无重复标签
# - sequential：不放回地逐秩选择标签，效用为 -|真实秩 - 当前秩|（敏感度 K - 1：平局按标签顺序排名，一条记录可使标签越过整个平局组），各步预算由 BudgetScheduler.allocate_windows 精确切分
# - independent：每个标签以整个阶段预算从隐私化计数中抽取一个值（效用 -|值 - 真实计数|），再按抽取值降序、按公开标签顺序打破平局
# - scoped：与 independent 相同，但每个标签从自身公开区间 [lower, upper] 中抽取
# 约定：
# - 真实排名与隐私化计数长度不一致时抛出 LengthMismatchError
# - 平局的打破只使用公开顺序（label_order），不依赖真实计数

from __future__ import annotations

from fractions import Fraction
from typing import Any, Dict, Hashable, Iterator, List, Mapping, Optional, Sequence, Tuple

from dphist.composition.budget_scheduler import BudgetScheduler
from dphist.core.exceptions import LengthMismatchError, ValidationError
from dphist.core.privacy.base_mechanism import BaseMechanism
from dphist.core.privacy.eta import Eta
from dphist.core.utils.logging import get_logger
from dphist.core.utils.param_validation import ensure, ensure_count
from .exponential import ExponentialMechanism

logger = get_logger(__name__)

STRATEGIES = ("sequential", "independent", "scoped")
SCHEDULES = ("even", "geometric")


class Attribution:
    """Immutable bijection from rank index to label."""

    __slots__ = ("_labels", "_ranks")

    def __init__(self, labels: Sequence[Hashable]):
        labels = tuple(labels)
        ranks = {label: rank for rank, label in enumerate(labels)}
        if len(ranks) != len(labels):
            raise ValidationError("attribution labels must be unique")
        self._labels = labels
        self._ranks = ranks

    @property
    def labels(self) -> Tuple[Hashable, ...]:
        return self._labels

    def rank_of(self, label: Hashable) -> int:
        return self._ranks[label]

    def apply(self, counts: Sequence[int]) -> Dict[Hashable, int]:
        """Zip the bijection with a count vector of the same length."""
        if len(counts) != len(self._labels):
            raise LengthMismatchError("attribution and counts differ in length")
        return {label: counts[rank] for rank, label in enumerate(self._labels)}

    def __getitem__(self, rank: int) -> Hashable:
        return self._labels[rank]

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._labels)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attribution):
            return NotImplemented
        return self._labels == other._labels

    def __hash__(self) -> int:
        return hash(self._labels)

    def __repr__(self) -> str:
        return f"Attribution({list(self._labels)!r})"

    def to_dict(self) -> Dict[str, Any]:
        return {"labels": list(self._labels)}


class ReattributionEngine(BaseMechanism):
    """Assign privatized sorted counts back to labels under a base-2 budget."""

    def __init__(
        self,
        eta: Any = 1,
        *,
        strategy: str = "sequential",
        schedule: str = "even",
        decay: Any = Fraction(1, 2),
        rng: Optional[Any] = None,
        name: Optional[str] = None,
    ):
        super().__init__(eta=eta, rng=rng, name=name)
        self.strategy = self._validate_choice(strategy, STRATEGIES, "strategy")
        self.schedule = self._validate_choice(schedule, SCHEDULES, "schedule")
        self.decay = Fraction(str(decay))

    @staticmethod
    def _validate_choice(value: str, allowed: Tuple[str, ...], label: str) -> str:
        key = str(value).lower()
        if key not in allowed:
            raise ValidationError(f"{label} must be one of {allowed}, got {value!r}")
        return key

    # pylint: disable=arguments-differ
    def _calibrate_parameters(
        self,
        *,
        strategy: Optional[str] = None,
        schedule: Optional[str] = None,
        decay: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        del kwargs
        if strategy is not None:
            self.strategy = self._validate_choice(strategy, STRATEGIES, "strategy")
        if schedule is not None:
            self.schedule = self._validate_choice(schedule, SCHEDULES, "schedule")
        if decay is not None:
            self.decay = Fraction(str(decay))
        ensure(0 < self.decay <= 1, "decay must lie in (0, 1]", error=ValidationError)
        self._meta["strategy"] = self.strategy

    def step_budgets(self, steps: int) -> Tuple[Eta, ...]:
        """Per-step budgets of the sequential strategy; they sum to ``eta`` exactly."""
        decay = 1 if self.schedule == "even" else self.decay
        return BudgetScheduler(self.eta).allocate_windows(steps, decay=decay)

    @staticmethod
    def rank_sensitivity(cells: int) -> int:
        """
        Sensitivity of the rank utility ``-|true_rank(label) - rank|``.

        Ranks break count ties by label order, so one added or removed
        record can carry a label across its whole tie group: a true rank
        moves by up to ``cells - 1`` positions.
        """
        return max(1, cells - 1)

    def _selector(self, eta: Eta, sensitivity: int = 1) -> ExponentialMechanism:
        # 所有子机制共享同一个比特源，保证整个阶段按同一随机流线性消耗
        return ExponentialMechanism(eta, sensitivity, rng=self._rng, name=f"{self.name}.select").calibrate()

    def randomise(
        self,
        value: Sequence[Hashable],
        *,
        counts: Sequence[int],
        true_counts: Optional[Sequence[int]] = None,
        label_order: Optional[Sequence[Hashable]] = None,
        ranges: Optional[Mapping[Hashable, Tuple[int, int]]] = None,
    ) -> Attribution:
        """Return a private bijection for the true ranking `value` and privatized `counts`."""
        self.require_calibrated()
        ranking = Attribution(value)
        if len(ranking) != len(counts):
            raise LengthMismatchError(
                f"true ranking has {len(ranking)} labels but {len(counts)} privatized counts were given"
            )
        if len(ranking) == 0:
            return ranking
        if self.strategy == "sequential":
            return self._sequential(ranking)
        if true_counts is None:
            raise ValidationError(f"the {self.strategy} strategy requires true_counts")
        if len(true_counts) != len(ranking):
            raise LengthMismatchError("true counts and true ranking differ in length")
        order = ranking.labels if label_order is None else tuple(label_order)
        if set(order) != set(ranking.labels) or len(order) != len(ranking):
            raise ValidationError("label_order must list exactly the ranked labels")
        truth = {label: ensure_count(true_counts[rank], error=ValidationError) for rank, label in enumerate(ranking)}
        if self.strategy == "independent":
            outcomes = {label: tuple(counts) for label in order}
        else:
            outcomes = self.scoped_outcomes(order, ranges)
        return self._independent(order, truth, outcomes)

    def assign(
        self,
        ranking: Sequence[Hashable],
        counts: Sequence[int],
        true_counts: Optional[Sequence[int]] = None,
        **kwargs: Any,
    ) -> Attribution:
        return self.randomise(ranking, counts=counts, true_counts=true_counts, **kwargs)

    def _sequential(self, ranking: Attribution) -> Attribution:
        budgets = self.step_budgets(len(ranking))
        sensitivity = self.rank_sensitivity(len(ranking))
        remaining: List[Hashable] = list(ranking)
        chosen: List[Hashable] = []
        for rank, budget in enumerate(budgets):
            utilities = [-abs(ranking.rank_of(label) - rank) for label in remaining]
            label = self._selector(budget, sensitivity).select(remaining, utilities)
            remaining.remove(label)
            chosen.append(label)
        logger.debug("sequential re-attribution placed %d labels", len(chosen))
        return Attribution(chosen)

    @staticmethod
    def scoped_outcomes(
        order: Sequence[Hashable],
        ranges: Optional[Mapping[Hashable, Tuple[int, int]]],
    ) -> Dict[Hashable, Tuple[int, ...]]:
        """Per-label outcome sets of the scoped strategy; validates `ranges` without drawing bits."""
        if ranges is None:
            raise ValidationError("the scoped strategy requires per-label ranges")
        outcomes: Dict[Hashable, Tuple[int, ...]] = {}
        for label in order:
            if label not in ranges:
                raise ValidationError(f"no range supplied for label {label!r}")
            low, high = (ensure_count(bound, label="range bound", error=ValidationError) for bound in ranges[label])
            ensure(low <= high, f"empty range for label {label!r}", error=ValidationError)
            outcomes[label] = tuple(range(low, high + 1))
        return outcomes

    def _independent(
        self,
        order: Sequence[Hashable],
        truth: Mapping[Hashable, int],
        outcomes: Mapping[Hashable, Tuple[int, ...]],
    ) -> Attribution:
        selector = self._selector(self.eta)
        drawn: Dict[Hashable, int] = {}
        for label in order:
            values = outcomes[label]
            drawn[label] = selector.select(values, [-abs(v - truth[label]) for v in values])
        position = {label: index for index, label in enumerate(order)}
        placed = sorted(order, key=lambda label: (-drawn[label], position[label]))
        logger.debug("%s re-attribution placed %d labels", self.strategy, len(placed))
        return Attribution(placed)

    def serialize(self) -> Dict[str, Any]:
        base = super().serialize()
        base.update({"strategy": self.strategy, "schedule": self.schedule, "decay": str(self.decay)})
        return base

    @classmethod
    def deserialize(cls, data: Dict[str, Any]) -> "ReattributionEngine":
        inst = cls(
            eta=Eta.from_dict(data["eta"]),
            strategy=data.get("strategy", "sequential"),
            schedule=data.get("schedule", "even"),
            decay=Fraction(str(data.get("decay", "1/2"))),
            rng=None,
            name=data.get("name"),
        )
        inst._meta = dict(data.get("meta", {}))
        inst._calibrated = bool(data.get("calibrated", False))
        return inst
