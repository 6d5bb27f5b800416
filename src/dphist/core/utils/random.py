"""
Random bit sources for the exact samplers.

Responsibilities
  - Define the RandomBitSource capability consumed by every mechanism.
  - Provide a cryptographically secure default and a seedable,
    reproducible numpy-backed source for tests and audits.
  - Offer reproducible splits so concurrent releases own independent streams.

Usage Context
  - Mechanisms receive a source explicitly; only the outermost boundary
    (query orchestrator, CLI) creates a default one.

Limitations
  - The numpy source is reproducible, not cryptographically secure.
"""
# 说明：随机比特源抽象及其实现，统一管理精确采样器所需的均匀随机比特。
# 职责：
# - RandomBitSource：约定 bit / randbits / randbelow / spawn 接口，并统计已消耗比特数
# - SecureBitSource：基于 secrets 的密码学安全比特源，作为生产默认值
# - GeneratorBitSource：基于 numpy Generator 的可播种比特源，给定种子时逐比特可复现
# - create_rng / split_rng：集中封装 numpy Generator 的创建与 SeedSequence 派生
# - create_bit_source / split_bit_source：将种子、Generator 或已有比特源规范化为比特源，并派生独立子流

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import numpy as np

from .config import get_config
from .param_validation import ParamValidationError

_WORD_BITS = 32


def create_rng(seed: Optional[Any] = None) -> np.random.Generator:
    """Create a numpy Generator from a seed, SeedSequence, or existing generator."""
    if isinstance(seed, np.random.Generator):
        return seed
    return np.random.default_rng(seed)


def split_rng(rng: np.random.Generator, num: int) -> List[np.random.Generator]:
    """Split an RNG into `num` independent generators."""
    # 基于底层 SeedSequence.spawn 从单一 RNG 派生出 num 个彼此独立的生成器
    if num <= 0:
        raise ParamValidationError("num must be positive")
    seeds = rng.bit_generator._seed_seq.spawn(num)  # type: ignore[attr-defined]
    return [np.random.default_rng(seed) for seed in seeds]


class RandomBitSource(ABC):
    """Uniform random bits on demand; used linearly by one consumer at a time."""

    def __init__(self) -> None:
        self._word = 0
        self._available = 0
        self.bits_consumed = 0

    @abstractmethod
    def _next_word(self) -> int:
        """Return `_WORD_BITS` fresh uniform bits as an int."""

    @abstractmethod
    def spawn(self, num: int) -> List["RandomBitSource"]:
        """Derive `num` independent sources."""

    def bit(self) -> int:
        # 按字缓存随机比特，从高位到低位依次取出，保证同一种子下比特序列确定
        if self._available == 0:
            self._word = self._next_word()
            self._available = _WORD_BITS
        self._available -= 1
        self.bits_consumed += 1
        return (self._word >> self._available) & 1

    def randbits(self, k: int) -> int:
        """Return a uniform integer in [0, 2**k)."""
        if k < 0:
            raise ParamValidationError("k must be non-negative")
        value = 0
        for _ in range(k):
            value = (value << 1) | self.bit()
        return value

    def randbelow(self, n: int) -> int:
        """Return a uniform integer in [0, n) by exact rejection."""
        if n <= 0:
            raise ParamValidationError("n must be positive")
        k = (n - 1).bit_length()
        while True:
            candidate = self.randbits(k)
            if candidate < n:
                return candidate


class SecureBitSource(RandomBitSource):
    """Bits from the operating system CSPRNG via `secrets`."""

    def _next_word(self) -> int:
        return secrets.randbits(_WORD_BITS)

    def spawn(self, num: int) -> List[RandomBitSource]:
        if num <= 0:
            raise ParamValidationError("num must be positive")
        return [SecureBitSource() for _ in range(num)]


class GeneratorBitSource(RandomBitSource):
    """Reproducible bits drawn from a numpy Generator."""

    def __init__(self, rng: Optional[Any] = None) -> None:
        super().__init__()
        self._rng = create_rng(rng)

    def _next_word(self) -> int:
        return int(self._rng.integers(0, 1 << _WORD_BITS))

    def spawn(self, num: int) -> List[RandomBitSource]:
        return [GeneratorBitSource(child) for child in split_rng(self._rng, num)]


def create_bit_source(seed: Optional[Any] = None) -> RandomBitSource:
    """
    Normalise `seed` into a RandomBitSource.

    None falls back to the configured `rng_seed`, and to a SecureBitSource
    when that is unset as well.
    """
    if isinstance(seed, RandomBitSource):
        return seed
    if seed is None:
        seed = get_config().rng_seed
    if seed is None:
        return SecureBitSource()
    return GeneratorBitSource(seed)


def split_bit_source(source: RandomBitSource, num: int) -> List[RandomBitSource]:
    """Split a source into `num` independent sub-streams."""
    return source.spawn(num)
