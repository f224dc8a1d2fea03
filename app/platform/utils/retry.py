import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from app.platform.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _always_valid(result) -> bool:
    return result is not None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with a fixed delay between attempts.

    An attempt succeeds when it returns without raising and its result passes
    `is_valid`. Exceptions raised by an attempt are logged and count toward
    the budget; they never escape `run`.
    """
    max_attempts: int
    delay_seconds: float
    is_valid: Callable[[object], bool] = _always_valid

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "operation",
    ) -> Optional[T]:
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self.delay_seconds)
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"{label}: attempt {attempt}/{self.max_attempts} failed: {e}")
                continue

            if self.is_valid(result):
                if attempt > 1:
                    logger.info(f"{label}: succeeded on attempt {attempt}/{self.max_attempts}")
                return result

            logger.warning(f"{label}: attempt {attempt}/{self.max_attempts} returned an invalid result")

        logger.error(f"{label}: giving up after {self.max_attempts} attempts")
        return None
