"""Exact mechanisms for private integer histograms."""
from .exponential import ExponentialMechanism, normalized_sample, to_utility
from .partition_bounds import PartitionBound
from .weight_table import L1WeightTable, LinfWeightTable, WeightTable, l1_distance, linf_distance
from .integer_partition import IntegerPartitionMechanism, validate_sorted_counts
from .attribution import Attribution, ReattributionEngine
from .reference_bounds import ReferenceBoundMechanism

__all__ = [
    "ExponentialMechanism",
    "normalized_sample",
    "to_utility",
    "PartitionBound",
    "WeightTable",
    "L1WeightTable",
    "LinfWeightTable",
    "l1_distance",
    "linf_distance",
    "IntegerPartitionMechanism",
    "validate_sorted_counts",
    "Attribution",
    "ReattributionEngine",
    "ReferenceBoundMechanism",
]
