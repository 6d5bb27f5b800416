"""Entry point for the core library components."""

from __future__ import annotations

from .exceptions import (
    ArithmeticOverflowError,
    BudgetExceededError,
    InsufficientPrecisionError,
    InvalidBudgetError,
    InvalidCandidateSetError,
    LengthMismatchError,
    MechanismError,
    NotCalibratedError,
    SamplingDidNotConvergeError,
    ValidationError,
)
from .arithmetic import Dyadic, DyadicInterval, PowerBase
from .privacy import BaseMechanism, Eta, PrivacyAccountant, PrivacyEvent, as_eta
from .utils import (
    ParamValidationError,
    RuntimeConfig,
    configure,
    get_config,
    get_logger,
)

__all__ = [
    "ArithmeticOverflowError",
    "BudgetExceededError",
    "InsufficientPrecisionError",
    "InvalidBudgetError",
    "InvalidCandidateSetError",
    "LengthMismatchError",
    "MechanismError",
    "NotCalibratedError",
    "SamplingDidNotConvergeError",
    "ValidationError",
    "Dyadic",
    "DyadicInterval",
    "PowerBase",
    "BaseMechanism",
    "Eta",
    "PrivacyAccountant",
    "PrivacyEvent",
    "as_eta",
    "ParamValidationError",
    "RuntimeConfig",
    "configure",
    "get_config",
    "get_logger",
]
