"""
Partition bounds drawn around a public reference partition.

A historical release (or any other public partition) is often close to
today's sorted counts. Rather than bounding every rank by the naive
``total // (i + 1)``, this mechanism privately chooses a radius ``r`` and
restricts the partition stage to the band ``ref[i] +- r``. The radius is
drawn by the exponential mechanism with utility ``-|r - d|``, where ``d``
is the L-infinity distance between the reference and the true sorted
counts; one record moves one sorted count by one, so the utility has
sensitivity 1 and the draw costs exactly its ``eta``.
"""
# 说明：以公开参考划分为中心、经隐私化半径构造的划分上下界（可选的第零阶段）。
# 职责：
# - 将参考划分按秩对齐到当前格数（降序、补零或截断）
# - 以指数机制在 0..N 中选取半径 r，效用为 -|r - L∞(参考, 真实计数)|，敏感度 1
# - 由 PartitionBound.with_reference 生成带状上下界，上界不超过朴素上界
# 约定：
# - 候选半径个数超过 RuntimeConfig.max_table_entries 时在消耗随机性前抛出 InsufficientPrecisionError
# - 未提供公开总数时退回真实总数并记录警告，与朴素上界的处理一致

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Tuple

from dphist.core.exceptions import InsufficientPrecisionError, ValidationError
from dphist.core.privacy.base_mechanism import BaseMechanism
from dphist.core.privacy.eta import Eta
from dphist.core.utils.config import get_config
from dphist.core.utils.logging import get_logger
from dphist.core.utils.param_validation import ensure_count
from .exponential import ExponentialMechanism
from .partition_bounds import PartitionBound
from .weight_table import linf_distance

logger = get_logger(__name__)


class ReferenceBoundMechanism(BaseMechanism):
    """Release partition bounds centred on a public reference partition."""

    def __init__(
        self,
        eta: Any = 1,
        *,
        reference: Optional[Sequence[int]] = None,
        rng: Optional[Any] = None,
        name: Optional[str] = None,
    ):
        super().__init__(eta=eta, rng=rng, name=name)
        self.reference: Tuple[int, ...] = self._validate_reference(reference or ())
        self.public_total: Optional[int] = None
        self.last_radius: Optional[int] = None

    @staticmethod
    def _validate_reference(reference: Sequence[Any]) -> Tuple[int, ...]:
        return tuple(ensure_count(value, label="reference", error=ValidationError) for value in reference)

    # pylint: disable=arguments-differ
    def _calibrate_parameters(
        self,
        *,
        reference: Optional[Sequence[int]] = None,
        public_total: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        del kwargs
        if reference is not None:
            self.reference = self._validate_reference(reference)
        if public_total is not None:
            self.public_total = ensure_count(public_total, label="public_total", error=ValidationError)
        self._meta["reference_cells"] = len(self.reference)

    def resolve_total(self, counts: Sequence[int], total: Optional[int] = None) -> int:
        public = total if total is not None else self.public_total
        if public is None:
            logger.warning("no public total supplied; bounding the reference radius by the true total")
            public = sum(counts)
        return ensure_count(public, label="total", error=ValidationError)

    @staticmethod
    def check_capacity(total: int) -> None:
        """Raise before any randomness is drawn when there are too many radii to weigh."""
        limit = get_config().max_table_entries
        if total + 1 > limit:
            raise InsufficientPrecisionError(
                f"reference radius has {total + 1} candidates, above the configured limit of {limit}"
            )

    def randomise(self, value: Sequence[int], *, total: Optional[int] = None) -> PartitionBound:
        """Draw a radius for the sorted counts `value` and return the resulting band."""
        self.require_calibrated()
        counts = tuple(value)
        total = self.resolve_total(counts, total)
        self.check_capacity(total)
        reference = PartitionBound.align_reference(self.reference, len(counts))
        distance = linf_distance(reference, counts)
        radii = list(range(total + 1))
        selector = ExponentialMechanism(self.eta, 1, rng=self._rng, name=f"{self.name}.radius").calibrate()
        radius = selector.select(radii, [-abs(r - distance) for r in radii])
        self.last_radius = radius
        self._meta["last_radius"] = radius
        logger.debug("reference bounds drawn with radius %d over %d cells", radius, len(counts))
        return PartitionBound.with_reference(reference, radius, total)

    def serialize(self) -> Dict[str, Any]:
        base = super().serialize()
        base.update({"reference": list(self.reference), "public_total": self.public_total})
        return base

    @classmethod
    def deserialize(cls, data: Dict[str, Any]) -> "ReferenceBoundMechanism":
        inst = cls(
            eta=Eta.from_dict(data["eta"]),
            reference=data.get("reference"),
            rng=None,
            name=data.get("name"),
        )
        inst.public_total = data.get("public_total")
        inst._meta = dict(data.get("meta", {}))
        inst._calibrated = bool(data.get("calibrated", False))
        inst.last_radius = inst._meta.get("last_radius")
        return inst
