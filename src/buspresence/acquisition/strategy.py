"""Acquisition strategies and the device-dependent policy that orders them."""

from __future__ import annotations

import dataclasses

from buspresence.config import DeviceProfile


@dataclasses.dataclass(frozen=True)
class AcquisitionStrategy:
    """One attempt profile for obtaining a fix.

    Parameters
    ----------
    high_accuracy : bool
        Ask for satellite-grade accuracy (slower, more power).
    timeout_ms : int
        Give up on this attempt after this many milliseconds.
    max_cache_age_ms : int
        Accept a previously cached fix up to this old; ``0`` demands a
        fresh reading.
    name : str
        Label used in logs.
    """

    high_accuracy: bool
    timeout_ms: int
    max_cache_age_ms: int
    name: str = "custom"

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.max_cache_age_ms < 0:
            raise ValueError("max_cache_age_ms must be >= 0")

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    def same_parameters(self, other: AcquisitionStrategy) -> bool:
        return (self.high_accuracy, self.timeout_ms, self.max_cache_age_ms) == (
            other.high_accuracy,
            other.timeout_ms,
            other.max_cache_age_ms,
        )


CACHED = AcquisitionStrategy(high_accuracy=False, timeout_ms=5_000, max_cache_age_ms=10 * 60_000, name="cached")
NETWORK = AcquisitionStrategy(high_accuracy=False, timeout_ms=15_000, max_cache_age_ms=60_000, name="network")
PRECISE = AcquisitionStrategy(high_accuracy=True, timeout_ms=30_000, max_cache_age_ms=0, name="precise")
QUICK = AcquisitionStrategy(high_accuracy=True, timeout_ms=10_000, max_cache_age_ms=60_000, name="quick")
FRESH = AcquisitionStrategy(high_accuracy=False, timeout_ms=15_000, max_cache_age_ms=0, name="fresh")
WATCH_FALLBACK = AcquisitionStrategy(high_accuracy=False, timeout_ms=10_000, max_cache_age_ms=5 * 60_000, name="watch")

# Mobile chipsets answer fastest from cache and often stall on high accuracy.
MOBILE_STRATEGIES: tuple[AcquisitionStrategy, ...] = (CACHED, NETWORK, PRECISE)
DESKTOP_STRATEGIES: tuple[AcquisitionStrategy, ...] = (QUICK, CACHED, FRESH)


@dataclasses.dataclass(frozen=True)
class AcquisitionPolicy:
    """Ordered one-shot strategies plus the continuous-watch last resort."""

    strategies: tuple[AcquisitionStrategy, ...]
    watch_fallback: AcquisitionStrategy | None = WATCH_FALLBACK

    def __post_init__(self) -> None:
        if not self.strategies and self.watch_fallback is None:
            raise ValueError("policy needs at least one strategy or a watch fallback")

    @classmethod
    def for_device(cls, device: DeviceProfile) -> AcquisitionPolicy:
        strategies = MOBILE_STRATEGIES if device.is_mobile else DESKTOP_STRATEGIES
        return cls(strategies=strategies)

    def with_preferred(self, preferred: AcquisitionStrategy | None) -> tuple[AcquisitionStrategy, ...]:
        """Strategies to try, with a caller-supplied one first and deduplicated."""
        if preferred is None:
            return self.strategies
        rest = tuple(s for s in self.strategies if not s.same_parameters(preferred))
        return (preferred, *rest)
