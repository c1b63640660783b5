"""Signal result types and the collector failure boundary."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol, Union

from ..errors import CollectorUnavailable

logger = logging.getLogger(__name__)


class SignalValue(Protocol):
    """What every collector value exposes to the aggregator."""

    risk_score: int
    reasons: list[str]

    def to_dict(self) -> dict: ...


@dataclass(frozen=True)
class Available:
    """A collector answered."""

    source: str
    value: Any
    confidence: float = 1.0

    @property
    def available(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "status": "available",
            "confidence": round(self.confidence, 3),
            "value": self.value.to_dict(),
        }


@dataclass(frozen=True)
class Unavailable:
    """A collector could not answer; never treated as zero risk."""

    source: str
    reason: str

    @property
    def available(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {"source": self.source, "status": "unavailable", "reason": self.reason}


SignalResult = Union[Available, Unavailable]


def cap_score(points: int) -> int:
    return max(0, min(100, int(points)))


async def run_collector(source: str, call: Awaitable, timeout: float) -> SignalResult:
    """Await a collector call under its own timeout, converting any failure to Unavailable.

    Cancellation is not a failure of the collector and is re-raised so the
    caller's deadline handling can release the task.
    """
    try:
        result = await asyncio.wait_for(call, timeout=timeout)
    except asyncio.CancelledError:
        raise
    except asyncio.TimeoutError:
        logger.warning("Collector %s timed out after %.1fs", source, timeout)
        return Unavailable(source, f"timed out after {timeout:g}s")
    except CollectorUnavailable as exc:
        logger.info("Collector %s unavailable: %s", source, exc.reason)
        return Unavailable(source, exc.reason)
    except Exception as exc:
        logger.warning("Collector %s failed: %s", source, exc, exc_info=True)
        return Unavailable(source, f"{type(exc).__name__}: {exc}")

    if isinstance(result, (Available, Unavailable)):
        return result
    return Available(source, result)
