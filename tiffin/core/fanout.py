"""
Bounded fan-out for independent units of work.

Generation and bulk operations submit one task per subscription/order to a
thread pool of limited size and collect every outcome, in submission order,
whether it returned, raised or timed out.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

logger = logging.getLogger(__name__)

U = TypeVar("U")


@dataclass
class UnitOutcome(Generic[U]):
    unit: U
    result: Any = None
    error: Optional[BaseException] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.timed_out


def run_bounded(units: Iterable[U], work: Callable[[U], Any], max_workers: int,
                timeout: Optional[float] = None) -> List[UnitOutcome[U]]:
    """
    Run work(unit) for every unit with at most max_workers in flight.

    Args:
        units: independent units of work
        work: callable executed once per unit
        max_workers: concurrency bound
        timeout: seconds to wait for each unit's result

    Returns:
        list[UnitOutcome]: one outcome per unit, in submission order
    """
    units = list(units)
    if not units:
        return []

    outcomes: List[UnitOutcome[U]] = []
    # timed-out units keep running; shutdown below does not wait for them
    executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="tiffin-unit")
    try:
        futures = [(unit, executor.submit(work, unit)) for unit in units]
        for unit, future in futures:
            try:
                outcomes.append(UnitOutcome(unit=unit, result=future.result(timeout=timeout)))
            except FutureTimeout:
                logger.warning("Unit %r timed out after %ss", unit, timeout)
                outcomes.append(UnitOutcome(unit=unit, timed_out=True))
            except Exception as e:
                outcomes.append(UnitOutcome(unit=unit, error=e))
    finally:
        executor.shutdown(wait=False)
    return outcomes
