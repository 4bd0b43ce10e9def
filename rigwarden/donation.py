"""The donation service: a supervised process without a child.

It keeps track of which donation endpoint to use, decides when the rig is
ready to split its hashrate and runs the scheduling cycles on a second
thread while it is.
"""
from __future__ import annotations
import threading
from typing import Callable, Optional

from .adapters.hash_client import HashClientWatchdog
from .adapters.hash_proxy import HashProxyWatchdog
from .adapters.pool_daemon import local_pool_port
from .adapters.xrig import XrigWatchdog
from .algorithm import CycleInputs, CycleRunner, donated_seconds, plan_cycle, round_type
from .latency import race_donation_pools
from .logging_setup import get_logger
from .models import CycleReport, ProcessName, ProcessSignal, ProcessState
from .pools import DEFAULT_RIG, Pool
from .state import SharedState
from .utils import now_seconds, sleep_end_loop

S = ProcessState
logger = get_logger(__name__)


def controllable_hashrate(shared: SharedState) -> float:
    """Hashrate the scheduler may move between pools."""
    if shared.is_alive(ProcessName.HASH_PROXY):
        return shared.snapshot(ProcessName.HASH_PROXY).hashrate_10m or 0.0
    hc = shared.snapshot(ProcessName.HASH_CLIENT)
    for value in (hc.hashrate_15m, hc.hashrate_1m, hc.hashrate_10s):
        if value:
            return value
    return 0.0


def cycle_inputs(shared: SharedState) -> CycleInputs:
    pd = shared.snapshot(ProcessName.POOL_DAEMON)
    pool_total = pd.hashrate_1h if pd.hashrate_1h and pd.hashrate_1h > 0 else (pd.hashrate_15m or 0.0)
    return CycleInputs(
        controllable=controllable_hashrate(shared),
        share=pd.shares or 0,
        pool_total=float(pool_total),
        difficulty=int(pd.sidechain_difficulty or 0),
        chain=shared.config.pool_daemon.chain,
        buffer=shared.config.pool_daemon.buffer,
    )


class DonationService:
    name = ProcessName.DONATION

    def __init__(
        self,
        shared: SharedState,
        hash_client: HashClientWatchdog,
        hash_proxy: HashProxyWatchdog,
        period: float = 1.0,
        race: Callable[..., Optional[Pool]] = race_donation_pools,
    ) -> None:
        self.shared = shared
        self.record = shared.record(self.name)
        self.hash_client = hash_client
        self.hash_proxy = hash_proxy
        self.period = period
        self.race = race
        self.selected_pool: Optional[Pool] = None
        self.last_report: Optional[CycleReport] = None
        self.time_donated = 0
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._start_lock = threading.Lock()
        self._last_race = 0.0
        self.thread: Optional[threading.Thread] = None
        self.scheduler: Optional[threading.Thread] = None
        self.runner = CycleRunner(self._switch, self._cycle_wait, self.record.output, self.cfg.cycle_sec)

    @property
    def cfg(self):
        return self.shared.config.donation

    @property
    def label(self) -> str:
        return self.name.label

    def is_running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def wake(self) -> None:
        self._wake.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)

    # ---- endpoint selection -----------------------------------------------

    def local_pool(self) -> Pool:
        return Pool.local(local_pool_port(self.shared.config.pool_daemon))

    def select_pool(self) -> None:
        rec = self.record
        self._last_race = now_seconds()
        if self.cfg.manual_pool_enabled:
            pool = Pool.donation_eu() if self.cfg.manual_pool_eu else Pool.donation_na()
            rec.output(f"XvB node {pool} has been chosen manually")
        else:
            pool = self.race(self.cfg.ping_rounds, self.cfg.ping_timeout_ms)
        if pool is None:
            self.selected_pool = self.local_pool()
            rec.output("No XvB node could be reached, mining on the local pool only")
            logger.warning("both donation endpoints are unreachable")
            rec.try_set_state(S.OFFLINE_POOLS_ALL, "donation endpoints down")
            self._point_local()
        else:
            self.selected_pool = pool
            rec.output(f"XvB node {pool} selected ({pool.endpoint()})")
            if rec.state == S.OFFLINE_POOLS_ALL:
                rec.try_set_state(S.SYNCING, "donation endpoint reachable")
        self.shared.update_snapshot(self.name, selected_pool=str(self.selected_pool))

    # ---- lifecycle ---------------------------------------------------------

    def start(self) -> bool:
        with self._start_lock:
            rec = self.record
            if rec.state not in (S.DEAD, S.FAILED, S.WAITING):
                return False
            rec.request_start()
            rec.mark_started(None)
            self.shared.reset_snapshot(self.name)
            self.last_report = None
            self.time_donated = 0
            self._stop.clear()
            self._wake.clear()
            rec.set_state(S.SYNCING, "started")
            self.select_pool()
            self.thread = threading.Thread(target=self._run, name="watchdog-donation", daemon=True)
            self.thread.start()
            return True

    def _run(self) -> None:
        logger.info(f"{self.label} | entering watchdog mode")
        while self._iterate():
            pass
        logger.info(f"{self.label} | watchdog thread exiting")

    def _iterate(self) -> bool:
        started = now_seconds()
        rec = self.record
        signal = rec.signal
        if signal in (ProcessSignal.STOP, ProcessSignal.RESTART):
            self._teardown(signal)
            return False
        try:
            failed = rec.take_update_nodes()
            if failed is not None:
                rec.output(f"{failed} is not responding, looking for another node")
                self.select_pool()
            elif rec.state == S.OFFLINE_POOLS_ALL and now_seconds() - self._last_race >= self.cfg.cycle_sec:
                self.select_pool()
            self._check_ready()
            self._publish()
        except Exception as e:
            logger.error(f"{self.label} | watchdog iteration error: {e}")
        sleep_end_loop(started, self.period, self._wake.wait)
        self._wake.clear()
        return True

    def ready(self) -> bool:
        sh = self.shared
        mining = sh.is_alive(ProcessName.HASH_CLIENT) or sh.is_alive(ProcessName.HASH_PROXY)
        return sh.is_alive(ProcessName.POOL_DAEMON) and mining and bool(sh.config.pool_daemon.address)

    def _check_ready(self) -> None:
        rec = self.record
        if rec.state == S.OFFLINE_POOLS_ALL:
            return
        if self.ready():
            if rec.state != S.ALIVE:
                rec.try_set_state(S.ALIVE, "pool daemon and miner alive")
            if self.scheduler is None or not self.scheduler.is_alive():
                self.scheduler = threading.Thread(target=self._schedule, name="donation-scheduler", daemon=True)
                self.scheduler.start()
        elif rec.state == S.ALIVE:
            rec.try_set_state(S.NOT_MINING, "pool daemon or miner went away")

    def _publish(self) -> None:
        rt = self.shared.donation
        pd = self.shared.snapshot(ProcessName.POOL_DAEMON)
        miner = self.active_miner()
        self.shared.update_snapshot(
            self.name,
            uptime_sec=self.record.uptime(),
            current_pool=miner.current_pool.endpoint() if miner.current_pool else None,
            round=round_type(pd.shares or 0, rt.donor_1h_avg, rt.donor_24h_avg),
            time_donated=self.time_donated,
            donor_1h_avg=rt.donor_1h_avg,
            donor_24h_avg=rt.donor_24h_avg,
            last_cycle=self.last_report,
        )

    def _teardown(self, signal: ProcessSignal) -> None:
        rec = self.record
        self._stop.set()
        if self.scheduler is not None:
            self.scheduler.join(timeout=self.cfg.cycle_sec)
            self.scheduler = None
        self._point_local()
        self.shared.reset_snapshot(self.name)
        what = "stopped" if signal == ProcessSignal.STOP else "restarted"
        rec.output(f"{self.label} {what}")
        logger.info(f"{self.label} | {what}")
        if signal == ProcessSignal.STOP:
            rec.set_state(S.DEAD, "stopped")
            rec.take_signal()
        else:
            rec.set_state(S.WAITING, "restarting")

    # ---- scheduling --------------------------------------------------------

    def active_miner(self) -> XrigWatchdog:
        if self.shared.is_alive(ProcessName.HASH_PROXY):
            return self.hash_proxy
        return self.hash_client

    def _switch(self, pool: Pool) -> None:
        address = self.shared.config.pool_daemon.address
        miner = self.active_miner()
        rig = "" if pool.is_donation else (miner.cfg.rig or DEFAULT_RIG)
        miner.switch_pool(pool, address, rig)
        miner.current_pool = pool

    def _point_local(self) -> None:
        if not (self.shared.is_alive(ProcessName.HASH_CLIENT) or self.shared.is_alive(ProcessName.HASH_PROXY)):
            return
        self.runner.current_pool = self.active_miner().current_pool
        self.runner.point_at(self.local_pool())

    def _cycle_wait(self, seconds: float) -> bool:
        """Sleep through a cycle phase; True once the service is stopping."""
        return self._stop.wait(max(0.0, seconds))

    def _schedule(self) -> None:
        logger.info("scheduler started")
        while not self._stop.is_set() and self.record.state == S.ALIVE:
            try:
                done = self._run_cycle()
            except Exception as e:
                logger.exception(f"cycle failed: {e}")
                self.record.output(f"Algorithm of HR distribution failed ({e}), retrying next cycle")
                done = not self._cycle_wait(self.cfg.cycle_sec)
            if not done:
                break
        logger.info("scheduler exiting")

    def _run_cycle(self) -> bool:
        report = plan_cycle(self.cycle_inputs(), self.shared.donation, self.cfg.cycle_sec, self.cfg.min_time_send)
        self.last_report = report
        self.time_donated = donated_seconds(report, self.cfg.cycle_sec)
        logger.info(f"cycle planned: {report.model_dump()}")
        self.record.output(
            f"Algorithm of HR distribution started for the next {self.cfg.cycle_sec} seconds "
            f"({report.decision}, {report.needed_time}s to XvB)"
        )
        if report.external_hashrate > 0:
            self.record.output(f"estimated external HR on P2pool: {report.external_hashrate / 1000:.3f}kH/s")
        self.runner.current_pool = self.active_miner().current_pool
        pool = self.selected_pool or self.local_pool()
        return self.runner.run(
            report, self.local_pool(), pool, self.shared.donation, lambda: controllable_hashrate(self.shared)
        )

    def cycle_inputs(self) -> CycleInputs:
        return cycle_inputs(self.shared)
