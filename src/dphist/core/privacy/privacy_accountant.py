"""
Privacy budget accounting under basic sequential composition.

Records every mechanism invocation that spends budget, enforces a global
bound, and exposes a serialisable audit trail. When all events share the
total's weight base ``(x, y)`` the bookkeeping is exact rational arithmetic
on ``z``; mixed bases fall back to comparing float eta with a small slack.
"""
# 说明：顺序组合下的隐私预算记账器，负责跟踪与约束每次机制调用的 Eta 花费。
# 职责：
# - PrivacyEvent：记录单次花费事件（Eta、描述、机制、元数据）
# - PrivacyAccountant：维护总预算、累计花费与事件列表，提供超额检测、批量登记与序列化/反序列化
# 约定：
# - 同底 (x, y) 的事件在 z 上精确累加，0.5 + 0.5 == 1 严格成立
# - 不同底的事件只能用浮点 eta 近似比较，比较时使用 slack 容差

from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dphist.core.exceptions import BudgetExceededError, ValidationError
from .eta import Eta, as_eta


@dataclass(frozen=True)
class PrivacyEvent:
    """Record for a single privacy allocation."""

    eta: Eta
    description: Optional[str] = None
    mechanism: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eta": self.eta.to_dict(),
            "description": self.description,
            "mechanism": self.mechanism,
            "metadata": dict(self.metadata),
        }


class PrivacyAccountant:
    """Track cumulative privacy usage and guard against exceeding allocations."""

    def __init__(
        self,
        total: Optional[Any] = None,
        *,
        name: Optional[str] = None,
        slack: float = 1e-12,
    ):
        """
        Args:
            total: Optional global budget (Eta or base-2 eta); None -> unbounded.
            name: Optional identifier used in logs or serialization.
            slack: Tolerance used only when events use different weight bases.
        """
        self.name = name or "PrivacyAccountant"
        self.total: Optional[Eta] = None if total is None else as_eta(total)
        self.slack = float(slack)
        if self.slack < 0:
            raise ValidationError("slack must be non-negative")
        self._events: List[PrivacyEvent] = []

    # --------------------------------------------------------------------- helpers
    def _exact_reference(self) -> Optional[Eta]:
        # 返回用于精确累加的参考底数；无总预算时以首个事件为准
        if self.total is not None:
            return self.total
        return self._events[0].eta if self._events else None

    def _is_exact(self, extra: Optional[Eta] = None) -> bool:
        reference = self._exact_reference() or extra
        if reference is None:
            return True
        etas = [event.eta for event in self._events]
        if extra is not None:
            etas.append(extra)
        return all(reference.same_base(eta) for eta in etas)

    def _ensure_within_budget(self, eta: Eta) -> None:
        if self.total is None:
            return
        if self._is_exact(eta):
            fits = self.spent_z + eta.z <= self.total.z
        else:
            fits = self.spent_eta + eta.eta <= self.total.eta + self.slack
        if not fits:
            raise BudgetExceededError(
                "privacy budget exceeded: "
                f"requested eta={eta.eta:.6g} while remaining eta={self.remaining_eta:.6g}"
            )

    # --------------------------------------------------------------------- queries
    @property
    def spent_z(self) -> Fraction:
        """Exact sum of z over recorded events (meaningful when bases agree)."""
        return sum((event.eta.z for event in self._events), Fraction(0))

    @property
    def spent(self) -> Optional[Eta]:
        """Composed spend as an Eta when it can be represented exactly."""
        if not self._events or not self._is_exact():
            return None
        first = self._events[0].eta
        return Eta(first.x, first.y, self.spent_z)

    @property
    def spent_eta(self) -> float:
        return sum(event.eta.eta for event in self._events)

    @property
    def remaining_eta(self) -> float:
        if self.total is None:
            return float("inf")
        return max(self.total.eta - self.spent_eta, 0.0)

    @property
    def events(self) -> Tuple[PrivacyEvent, ...]:
        return tuple(self._events)

    def can_allocate(self, eta: Any) -> bool:
        """Check availability without mutating internal state."""
        try:
            self._ensure_within_budget(as_eta(eta))
        except (ValidationError, BudgetExceededError):
            return False
        return True

    # ----------------------------------------------------------------- mutations
    def add_event(
        self,
        eta: Any,
        *,
        description: Optional[str] = None,
        mechanism: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PrivacyEvent:
        """Record a privacy-spending event after checking it fits the budget."""
        normalized = as_eta(eta)
        # 超出预算时抛出异常，内部状态保持不变
        self._ensure_within_budget(normalized)
        event = PrivacyEvent(
            eta=normalized,
            description=description,
            mechanism=mechanism,
            metadata=dict(metadata or {}),
        )
        self._events.append(event)
        return event

    def extend(self, etas: Iterable[Any]) -> None:
        for eta in etas:
            self.add_event(eta)

    def reset(self) -> None:
        # 丢弃审计历史，只适合在明确的新会话边界或测试场景中使用
        self._events.clear()

    # -------------------------------------------------------------- serialization
    def serialize(self) -> Dict[str, Any]:
        spent = self.spent
        return {
            "name": self.name,
            "total": None if self.total is None else self.total.to_dict(),
            "spent": None if spent is None else spent.to_dict(),
            "spent_eta": self.spent_eta,
            "events": [event.to_dict() for event in self._events],
            "slack": self.slack,
        }

    @classmethod
    def deserialize(cls, payload: Dict[str, Any]) -> "PrivacyAccountant":
        total = payload.get("total")
        accountant = cls(
            None if total is None else Eta.from_dict(total),
            name=payload.get("name"),
            slack=payload.get("slack", 1e-12),
        )
        accountant._events = [
            PrivacyEvent(
                eta=Eta.from_dict(item["eta"]),
                description=item.get("description"),
                mechanism=item.get("mechanism"),
                metadata=dict(item.get("metadata") or {}),
            )
            for item in payload.get("events", [])
        ]
        return accountant

    def __repr__(self) -> str:
        total = None if self.total is None else str(self.total)
        return (
            f"<PrivacyAccountant name={self.name!r} total={total} "
            f"spent_eta={self.spent_eta:.6g} events={len(self._events)}>"
        )
