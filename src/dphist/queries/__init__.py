"""Query layer for private integer histograms."""
from .histogram import PrivateHistogramQuery, PrivatizedHistogram, TrueHistogram, ideal_counts, privatize_histogram

__all__ = ["PrivateHistogramQuery", "PrivatizedHistogram", "TrueHistogram", "ideal_counts", "privatize_histogram"]
