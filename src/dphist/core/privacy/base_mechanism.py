"""
Core abstractions shared by every mechanism implementation.

Responsibilities:
    * base-2 privacy parameter validation and random bit source management
    * consistent calibration lifecycle
    * serialization helpers
"""
# 说明：定义本库所有机制共享的抽象基类。
# 职责：
# - 隐私参数（Eta）校验与随机比特源管理
# - 统一的校准生命周期（calibrate / require_calibrated）
# - 序列化辅助工具（serialize / to_json）

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from dphist.core.exceptions import (
    MechanismError,
    NotCalibratedError,
    ValidationError,
)
from dphist.core.utils.random import RandomBitSource, create_bit_source
from .eta import Eta, as_eta


# 所有机制的抽象基类：
#  - 负责 Eta 校验与随机比特源管理
#  - 约定统一的校准生命周期（calibrate/require_calibrated）
#  - 提供序列化/反序列化与 JSON 辅助
class BaseMechanism(ABC):
    """Abstract base class for all mechanisms."""

    def __init__(
        self,
        eta: Any,
        rng: Optional[Any] = None,
        name: Optional[str] = None,
    ):
        # as_eta 对非正或格式错误的参数抛出 InvalidBudgetError
        self.eta: Eta = as_eta(eta)
        self.name: str = name or self.__class__.__name__
        self._rng: RandomBitSource = create_bit_source(rng)
        self._calibrated: bool = False
        self._meta: Dict[str, Any] = {}

    # Calibration lifecycle ---------------------------------------------------
    def calibrate(self, **kwargs: Any) -> "BaseMechanism":
        """
        Common calibration entry point.
        - Args:
            - **kwargs: Mechanism specific calibration kwargs.
        - Returns:
            - self (allows chaining).
        """
        # 仅在子类成功应用参数后才切换生命周期标志位
        self._calibrate_parameters(**kwargs)
        self._calibrated = True
        return self

    @abstractmethod
    def _calibrate_parameters(self, **kwargs: Any) -> None:
        """Subclasses implement their own calibration logic."""

    @abstractmethod
    def randomise(self, value: Any, **kwargs: Any) -> Any:
        """Release a privatized view of `value`."""

    def reset_calibration(self) -> None:
        self._calibrated = False

    @property
    def calibrated(self) -> bool:
        return self._calibrated

    @property
    def rng(self) -> RandomBitSource:
        return self._rng

    def require_calibrated(self) -> None:
        if not self._calibrated:
            raise NotCalibratedError("mechanism not calibrated; call calibrate() first")

    def reseed(self, seed: Optional[Any]) -> None:
        """Replace the bit source with one constructed from `seed`."""
        self._rng = create_bit_source(seed)

    # Serialization -----------------------------------------------------------
    def serialize(self) -> Dict[str, Any]:
        """Return a JSON serialisable snapshot of the mechanism."""
        return {
            "class": f"{self.__class__.__module__}.{self.__class__.__qualname__}",
            "mechanism": self.mechanism_id,
            "name": self.name,
            "eta": self.eta.to_dict(),
            "calibrated": bool(self._calibrated),
            "meta": dict(self._meta),
        }

    @classmethod
    def deserialize(cls: Type["BaseMechanism"], data: Dict[str, Any]) -> "BaseMechanism":
        """Generic reconstruction for subclasses whose constructor only requires eta/rng/name."""
        if "eta" not in data:
            raise ValidationError("serialized data missing 'eta' field")
        instance = cls(eta=Eta.from_dict(data["eta"]), rng=None, name=data.get("name"))
        instance._meta = dict(data.get("meta", {}))
        instance._calibrated = bool(data.get("calibrated", False))
        return instance

    def to_json(self) -> str:
        return json.dumps(self.serialize(), default=str)

    @classmethod
    def from_json(cls: Type["BaseMechanism"], text: str) -> "BaseMechanism":
        return cls.deserialize(json.loads(text))

    @property
    def mechanism_id(self) -> str:
        """Stable identifier used in serialization and accountant events."""
        lowered = self.__class__.__name__.lower()
        suffix = "mechanism"
        if lowered.endswith(suffix):
            return lowered[: -len(suffix)] or lowered
        return lowered

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name} eta={self.eta} calibrated={self._calibrated}>"


__all__ = ["BaseMechanism", "MechanismError", "ValidationError", "NotCalibratedError"]
