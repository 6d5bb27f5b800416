"""
Error taxonomy shared by every dphist component.

All errors are local preconditions or hard failures surfaced synchronously
to the caller. Nothing is retried internally: a call that fails after
randomness was consumed must be treated as having spent its budget.
"""
# 说明：统一的异常层级，覆盖预算、候选集、长度、算术溢出与采样收敛等失败场景。
# 约定：
# - 输入类错误（预算/候选集/长度）均继承 ValidationError，在消耗任何随机比特之前抛出
# - 算术溢出同时继承内置 ArithmeticError，便于调用方按标准异常捕获
# - 精度不足是溢出的特例：所需精度超过配置上限

from __future__ import annotations


class MechanismError(Exception):
    """Base exception for mechanism errors."""


class ValidationError(MechanismError):
    """Raised when input parameters are invalid."""


class InvalidBudgetError(ValidationError):
    """Non-positive or malformed privacy parameter, or unbounded utilities."""


class InvalidCandidateSetError(ValidationError):
    """Empty or degenerate sampling input."""


class LengthMismatchError(ValidationError):
    """Vectors handed between stages differ in length."""


class NotCalibratedError(MechanismError):
    """Raised when an operation requires prior calibration."""


class ArithmeticOverflowError(MechanismError, ArithmeticError):
    """An exact quantity exceeded the configured magnitude bound."""


class InsufficientPrecisionError(ArithmeticOverflowError):
    """The precision or table size needed for a release exceeds configured limits."""


class SamplingDidNotConvergeError(MechanismError):
    """Rejection sampling hit its iteration cap."""


class BudgetExceededError(MechanismError):
    """A split policy or allocation would exceed (or not fund) the privacy budget."""


__all__ = [
    "MechanismError",
    "ValidationError",
    "InvalidBudgetError",
    "InvalidCandidateSetError",
    "LengthMismatchError",
    "NotCalibratedError",
    "ArithmeticOverflowError",
    "InsufficientPrecisionError",
    "SamplingDidNotConvergeError",
    "BudgetExceededError",
]
