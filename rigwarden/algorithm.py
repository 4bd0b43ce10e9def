"""Hashrate split between the local pool and the donation service.

Every cycle the controllable hashrate is divided so the miner keeps at least
one share in the local pool's PPLNS window while the donation quota for the
selected mode is met. The arithmetic is kept in pure functions; the
:class:`CycleRunner` only performs the pool switches and the waiting.
"""
from __future__ import annotations
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Iterable, Optional, Tuple

from .errors import RigwardenError
from .logging_setup import get_logger
from .models import CycleReport, DonationMode, DonationRound, DonationTier
from .pools import Pool

logger = get_logger(__name__)

CYCLE = 600
MIN_TIME_SEND = 6
SIDE_MARGIN_1H = 1.2

TIER_HASHRATE = {
    DonationTier.DONOR: 1_000,
    DonationTier.DONOR_VIP: 10_000,
    DonationTier.DONOR_WHALE: 100_000,
    DonationTier.DONOR_MEGA: 1_000_000,
}

PPLNS_WINDOW = {"main": 2160, "mini": 2160, "nano": 2160}
SECONDS_PER_BLOCK = {"main": 10, "mini": 10, "nano": 30}

SAMPLES_1H = 6
SAMPLES_24H = 144


class Decision(str, Enum):
    ALL_LOCAL = "all_local"
    ALL_DONATION = "all_donation"
    SPLIT = "split"


def mean(samples: Iterable[float]) -> float:
    values = list(samples)
    if not values:
        return 0.0
    return sum(values) / len(values)


def external_hashrate(pool_total: float, local_samples: Iterable[float]) -> float:
    """Hashrate in the local pool that does not come from this rig."""
    return max(0.0, pool_total - mean(local_samples))


def share_minimum_hashrate(difficulty: int, chain: str, external: float, buffer: int) -> float:
    window = PPLNS_WINDOW[chain]
    block_time = SECONDS_PER_BLOCK[chain]
    minimum = (difficulty // (window * block_time)) * (1 + buffer / 100) - external
    logger.debug(
        f"difficulty({difficulty}) // (window({window}) * block time({block_time})) "
        f"* (1 + {buffer}/100) - external({external}) = {minimum}"
    )
    return max(0.0, minimum)


def auto_tier(spareable: float) -> Optional[DonationTier]:
    """Highest tier whose threshold fits in the spareable hashrate."""
    for tier in (DonationTier.DONOR_MEGA, DonationTier.DONOR_WHALE, DonationTier.DONOR_VIP, DonationTier.DONOR):
        if spareable >= TIER_HASHRATE[tier]:
            return tier
    return None


def target_donation_hashrate(
    mode: DonationMode,
    controllable: float,
    spareable: float,
    manual_amount: float = 0.0,
    manual_tier: DonationTier = DonationTier.DONOR,
) -> float:
    if mode == DonationMode.AUTO:
        tier = auto_tier(spareable)
        target = float(TIER_HASHRATE[tier]) if tier else 0.0
    elif mode == DonationMode.HERO:
        target = spareable
    elif mode == DonationMode.MANUAL_DONATE_ABSOLUTE:
        target = manual_amount
    elif mode == DonationMode.MANUAL_KEEP_ABSOLUTE:
        target = controllable - manual_amount
    else:
        target = float(TIER_HASHRATE[manual_tier])
    return max(0.0, target)


def needed_time(target: float, controllable: float, cycle: int = CYCLE) -> int:
    """Seconds of the cycle to spend on the donation pool."""
    if controllable <= 0:
        return 0
    return int(min(max(target * cycle / controllable, 0.0), float(cycle)))


def round_type(share: int, avg_1h: float, avg_24h: float) -> Optional[DonationRound]:
    """Donation round the averages currently qualify for; None without a share."""
    if share <= 0:
        return None
    margin_1h = avg_1h * SIDE_MARGIN_1H
    for tier, rnd in (
        (DonationTier.DONOR_MEGA, DonationRound.DONOR_MEGA),
        (DonationTier.DONOR_WHALE, DonationRound.DONOR_WHALE),
        (DonationTier.DONOR_VIP, DonationRound.DONOR_VIP),
        (DonationTier.DONOR, DonationRound.DONOR),
    ):
        threshold = TIER_HASHRATE[tier]
        if margin_1h >= threshold and avg_24h >= threshold:
            return rnd
    return DonationRound.VIP


class DonationRuntimeConfig:
    """Mode selection plus the sample windows the algorithm averages over."""

    def __init__(
        self,
        mode: DonationMode = DonationMode.AUTO,
        manual_amount: float = 0.0,
        manual_tier: DonationTier = DonationTier.DONOR,
    ) -> None:
        self._lock = threading.Lock()
        self.mode = mode
        self.manual_amount = manual_amount
        self.manual_tier = manual_tier
        self.donated_1h: Deque[float] = deque(maxlen=SAMPLES_1H)
        self.donated_24h: Deque[float] = deque(maxlen=SAMPLES_24H)
        self.local_1h: Deque[float] = deque(maxlen=SAMPLES_1H)

    def update(
        self,
        mode: Optional[DonationMode] = None,
        manual_amount: Optional[float] = None,
        manual_tier: Optional[DonationTier] = None,
    ) -> None:
        if manual_amount is not None and manual_amount < 0:
            raise ValueError("manual_amount must be >= 0")
        with self._lock:
            if mode is not None:
                self.mode = mode
            if manual_amount is not None:
                self.manual_amount = float(manual_amount)
            if manual_tier is not None:
                self.manual_tier = manual_tier

    def settings(self) -> Tuple[DonationMode, float, DonationTier]:
        with self._lock:
            return self.mode, self.manual_amount, self.manual_tier

    def push_cycle(self, local: float, donated: float) -> None:
        with self._lock:
            self.local_1h.append(max(0.0, local))
            self.donated_1h.append(max(0.0, donated))
            self.donated_24h.append(max(0.0, donated))

    def local_samples(self) -> list:
        with self._lock:
            return list(self.local_1h)

    @property
    def donor_1h_avg(self) -> float:
        with self._lock:
            return mean(self.donated_1h)

    @property
    def donor_24h_avg(self) -> float:
        with self._lock:
            return mean(self.donated_24h)


@dataclass
class CycleInputs:
    controllable: float
    share: int
    pool_total: float
    difficulty: int
    chain: str = "mini"
    buffer: int = 25


def plan_cycle(
    inputs: CycleInputs,
    runtime: DonationRuntimeConfig,
    cycle: int = CYCLE,
    min_time_send: int = MIN_TIME_SEND,
) -> CycleReport:
    mode, amount, tier = runtime.settings()
    external = external_hashrate(inputs.pool_total, runtime.local_samples())
    minimum = share_minimum_hashrate(inputs.difficulty, inputs.chain, external, inputs.buffer)
    spareable = inputs.controllable - minimum
    target = target_donation_hashrate(mode, inputs.controllable, spareable, amount, tier)
    seconds = needed_time(target, inputs.controllable, cycle)

    if inputs.share <= 0:
        decision = Decision.ALL_LOCAL
    elif mode in (DonationMode.AUTO, DonationMode.MANUAL_DONATION_LEVEL) and runtime.donor_24h_avg < target:
        decision = Decision.ALL_DONATION
    elif seconds <= min_time_send:
        decision = Decision.ALL_LOCAL
    elif seconds > cycle - min_time_send:
        decision = Decision.ALL_DONATION
    else:
        decision = Decision.SPLIT

    return CycleReport(
        hashrate_controllable=inputs.controllable,
        share_held=inputs.share > 0,
        pool_total_hashrate=inputs.pool_total,
        external_hashrate=external,
        share_minimum_hashrate=minimum,
        spareable_hashrate=spareable,
        target_donation_hashrate=target,
        needed_time=seconds,
        decision=decision.value,
    )


def donated_seconds(report: CycleReport, cycle: int = CYCLE) -> int:
    if report.decision == Decision.ALL_LOCAL.value:
        return 0
    if report.decision == Decision.ALL_DONATION.value:
        return cycle
    return report.needed_time


class CycleRunner:
    """Carries out one planned cycle by switching pools and waiting.

    ``switch(pool)`` points the hashing client (or proxy) at a pool and
    raises on failure. ``wait(seconds)`` returns True when the cycle must be
    abandoned.
    """

    def __init__(
        self,
        switch: Callable[[Pool], None],
        wait: Callable[[float], bool],
        console: Callable[[str], None],
        cycle: int = CYCLE,
    ) -> None:
        self.switch = switch
        self.wait = wait
        self.console = console
        self.cycle = cycle
        self.current_pool: Optional[Pool] = None
        self._switch_lock = threading.Lock()

    def point_at(self, pool: Pool) -> bool:
        with self._switch_lock:
            if self.current_pool == pool:
                return True
            try:
                self.switch(pool)
            except (RigwardenError, OSError) as e:
                logger.warning(f"pool switch to {pool} failed: {e}")
                self.console(f"Failure to update the hashing client config with HTTP API.\nError: {e}")
                return False
            self.current_pool = pool
            logger.info(f"mining on {pool}")
            return True

    def run(
        self,
        report: CycleReport,
        local_pool: Pool,
        donation_pool: Pool,
        runtime: DonationRuntimeConfig,
        current_hashrate: Callable[[], float],
    ) -> bool:
        """Run one cycle. Returns False if it was cancelled midway."""
        seconds = donated_seconds(report, self.cycle)
        if report.decision == Decision.ALL_LOCAL.value:
            if not report.share_held:
                self.console("There are no shares in p2pool. Sending all hashrate to p2pool!")
            self.point_at(local_pool)
            if self.wait(self.cycle):
                return False
        elif report.decision == Decision.ALL_DONATION.value:
            self.console("Sending all hashrate to XvB!")
            self.point_at(donation_pool)
            if self.wait(self.cycle):
                return False
        else:
            self.console(f"There is a share in p2pool and 24H avg XvB is achieved. Sending {seconds} seconds to XvB!")
            self.point_at(local_pool)
            if self.wait(self.cycle - seconds):
                return False
            self.point_at(donation_pool)
            if self.wait(seconds):
                return False

        hashrate = current_hashrate()
        donated_fraction = seconds / self.cycle
        runtime.push_cycle(hashrate * (1 - donated_fraction), hashrate * donated_fraction)
        return True
