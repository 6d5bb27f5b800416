"""Shared utility helpers used across the core library."""

from .random import (
    create_rng,
    split_rng,
    RandomBitSource,
    SecureBitSource,
    GeneratorBitSource,
    create_bit_source,
    split_bit_source,
)
from .config import (
    RuntimeConfig,
    get_config,
    configure,
)
from .serialization import (
    serialize_to_json,
    deserialize_from_json,
    mask_sensitive_data,
)
from .logging import (
    get_logger,
    configure_logging,
    release_logger,
    PrivacyFilter,
    ReleaseLogger,
)
from .param_validation import (
    ensure,
    ensure_type,
    ensure_count,
    ParamValidationError,
)

__all__ = [
    "create_rng",
    "split_rng",
    "RandomBitSource",
    "SecureBitSource",
    "GeneratorBitSource",
    "create_bit_source",
    "split_bit_source",
    "RuntimeConfig",
    "get_config",
    "configure",
    "serialize_to_json",
    "deserialize_from_json",
    "mask_sensitive_data",
    "get_logger",
    "configure_logging",
    "release_logger",
    "PrivacyFilter",
    "ReleaseLogger",
    "ensure",
    "ensure_type",
    "ensure_count",
    "ParamValidationError",
]
