"""
dphist: exact differentially private integer histograms.

A two-stage release: a private integer partition of the sorted counts
followed by a private re-attribution of those counts to labels, both built
on an exact base-2 exponential mechanism. An optional first stage draws the
partition bounds around a public reference partition.
"""

from __future__ import annotations

from dphist.core.exceptions import (
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
from dphist.core.privacy import Eta, PrivacyAccountant
from dphist.core.utils import configure, create_bit_source, get_config
from dphist.composition import BudgetScheduler
from dphist.mechanisms import (
    Attribution,
    ExponentialMechanism,
    IntegerPartitionMechanism,
    PartitionBound,
    ReattributionEngine,
    ReferenceBoundMechanism,
)
from dphist.queries import PrivateHistogramQuery, PrivatizedHistogram, TrueHistogram, ideal_counts, privatize_histogram

__version__ = "0.1.0"

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
    "Eta",
    "PrivacyAccountant",
    "configure",
    "create_bit_source",
    "get_config",
    "BudgetScheduler",
    "Attribution",
    "ExponentialMechanism",
    "IntegerPartitionMechanism",
    "PartitionBound",
    "ReattributionEngine",
    "ReferenceBoundMechanism",
    "PrivateHistogramQuery",
    "PrivatizedHistogram",
    "TrueHistogram",
    "ideal_counts",
    "privatize_histogram",
]
