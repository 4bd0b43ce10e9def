import pytest

from rigwarden.algorithm import (
    CYCLE,
    MIN_TIME_SEND,
    CycleInputs,
    CycleRunner,
    Decision,
    DonationRuntimeConfig,
    auto_tier,
    donated_seconds,
    external_hashrate,
    needed_time,
    plan_cycle,
    round_type,
    share_minimum_hashrate,
    target_donation_hashrate,
)
from rigwarden.errors import ConfigUpdateError
from rigwarden.models import CycleReport, DonationMode, DonationRound, DonationTier
from rigwarden.pools import Pool

NANO_DIFFICULTY = 95_000_000


def nano(controllable, share=1, pool_total=0.0):
    return CycleInputs(
        controllable=controllable,
        share=share,
        pool_total=pool_total,
        difficulty=NANO_DIFFICULTY,
        chain="nano",
        buffer=25,
    )


def test_share_minimum_on_nano():
    # 95e6 // (2160 * 30) = 1466, plus the 25% buffer
    assert share_minimum_hashrate(NANO_DIFFICULTY, "nano", 0, 25) == pytest.approx(1832.5)


def test_share_minimum_subtracts_external_and_clamps():
    assert share_minimum_hashrate(NANO_DIFFICULTY, "nano", 832.5, 25) == pytest.approx(1000)
    assert share_minimum_hashrate(NANO_DIFFICULTY, "nano", 50_000, 25) == 0


def test_external_hashrate_uses_local_mean():
    assert external_hashrate(20_000, [4_000, 6_000]) == 15_000
    assert external_hashrate(1_000, [4_000]) == 0
    assert external_hashrate(1_000, []) == 1_000


@pytest.mark.parametrize(
    "spareable,tier",
    [
        (999.9, None),
        (1_000, DonationTier.DONOR),
        (10_000, DonationTier.DONOR_VIP),
        (103_167.5, DonationTier.DONOR_WHALE),
        (1_000_000, DonationTier.DONOR_MEGA),
    ],
)
def test_auto_tier_is_inclusive(spareable, tier):
    assert auto_tier(spareable) == tier


def test_target_per_mode():
    assert target_donation_hashrate(DonationMode.HERO, 10_000, 8_000) == 8_000
    assert target_donation_hashrate(DonationMode.MANUAL_DONATE_ABSOLUTE, 10_000, 8_000, 2_500) == 2_500
    assert target_donation_hashrate(DonationMode.MANUAL_KEEP_ABSOLUTE, 10_000, 8_000, 7_000) == 3_000
    assert target_donation_hashrate(DonationMode.MANUAL_KEEP_ABSOLUTE, 10_000, 8_000, 20_000) == 0
    assert target_donation_hashrate(
        DonationMode.MANUAL_DONATION_LEVEL, 10_000, 8_000, 0, DonationTier.DONOR_VIP
    ) == 10_000
    assert target_donation_hashrate(DonationMode.HERO, 1_000, -832.5) == 0


def test_needed_time_is_clamped():
    assert needed_time(100_000, 105_000) == 571
    assert needed_time(50_000, 10_000) == 600
    assert needed_time(1_000, 0) == 0


def test_controllable_below_share_minimum_stays_local():
    report = plan_cycle(nano(1_500), DonationRuntimeConfig())
    assert report.spareable_hashrate < 0
    assert report.target_donation_hashrate == 0
    assert report.needed_time == 0
    assert report.decision == Decision.ALL_LOCAL.value


def test_whale_tier_sends_everything_until_average_is_met():
    report = plan_cycle(nano(105_000), DonationRuntimeConfig())
    assert report.target_donation_hashrate == 100_000
    assert report.needed_time == 571
    assert report.decision == Decision.ALL_DONATION.value


def test_auto_splits_once_24h_average_reaches_target():
    runtime = DonationRuntimeConfig()
    runtime.push_cycle(5_000, 100_000)
    report = plan_cycle(nano(105_000), runtime)
    assert report.decision == Decision.SPLIT.value
    assert report.needed_time == 571


def test_no_share_sends_all_local_even_for_hero():
    runtime = DonationRuntimeConfig(mode=DonationMode.HERO)
    report = plan_cycle(nano(50_000, share=0), runtime)
    assert report.share_held is False
    assert report.decision == Decision.ALL_LOCAL.value


def test_hero_splits_the_cycle():
    runtime = DonationRuntimeConfig(mode=DonationMode.HERO)
    report = plan_cycle(nano(10_000), runtime)
    # (10000 - 1832.5) / 10000 * 600
    assert report.needed_time == 490
    assert report.decision == Decision.SPLIT.value


def test_tiny_donation_is_not_worth_a_switch():
    runtime = DonationRuntimeConfig(mode=DonationMode.MANUAL_DONATE_ABSOLUTE, manual_amount=50)
    report = plan_cycle(nano(10_000), runtime)
    assert report.needed_time == 3
    assert report.decision == Decision.ALL_LOCAL.value


def test_almost_whole_cycle_becomes_all_donation():
    runtime = DonationRuntimeConfig(mode=DonationMode.MANUAL_DONATE_ABSOLUTE, manual_amount=9_950)
    report = plan_cycle(nano(10_000), runtime)
    assert report.needed_time == 597
    assert report.decision == Decision.ALL_DONATION.value


def test_cycle_minus_minimum_send_still_splits():
    runtime = DonationRuntimeConfig(mode=DonationMode.MANUAL_DONATE_ABSOLUTE, manual_amount=9_900)
    report = plan_cycle(nano(10_000), runtime)
    assert report.needed_time == CYCLE - MIN_TIME_SEND
    assert report.decision == Decision.SPLIT.value


def test_one_second_past_the_split_limit_is_all_donation():
    runtime = DonationRuntimeConfig(mode=DonationMode.MANUAL_DONATE_ABSOLUTE, manual_amount=9_917)
    report = plan_cycle(nano(10_000), runtime)
    assert report.needed_time == 595
    assert report.decision == Decision.ALL_DONATION.value


def test_donated_seconds():
    assert donated_seconds(CycleReport(decision="all_local", needed_time=300)) == 0
    assert donated_seconds(CycleReport(decision="all_donation", needed_time=300)) == 600
    assert donated_seconds(CycleReport(decision="split", needed_time=300)) == 300


def test_round_type():
    assert round_type(0, 5_000, 5_000) is None
    assert round_type(1, 0, 0) == DonationRound.VIP
    # the 1h average gets a 20% margin, the 24h one does not
    assert round_type(1, 900, 1_000) == DonationRound.DONOR
    assert round_type(1, 10_000, 5_000) == DonationRound.DONOR
    assert round_type(1, 100_000, 100_000) == DonationRound.DONOR_WHALE


def test_sample_windows_are_bounded():
    runtime = DonationRuntimeConfig()
    for i in range(200):
        runtime.push_cycle(i, i)
    assert len(runtime.donated_1h) == 6
    assert len(runtime.local_1h) == 6
    assert len(runtime.donated_24h) == 144
    assert runtime.donor_1h_avg == pytest.approx(sum(range(194, 200)) / 6)


def test_update_rejects_negative_amount():
    runtime = DonationRuntimeConfig()
    with pytest.raises(ValueError):
        runtime.update(manual_amount=-1)
    runtime.update(mode=DonationMode.HERO, manual_amount=10, manual_tier=DonationTier.DONOR_MEGA)
    assert runtime.settings() == (DonationMode.HERO, 10.0, DonationTier.DONOR_MEGA)


class Recorder:
    def __init__(self, cancel_after=None, fail_on=None):
        self.switches = []
        self.waits = []
        self.console = []
        self.cancel_after = cancel_after
        self.fail_on = fail_on

    def switch(self, pool):
        if pool == self.fail_on:
            raise ConfigUpdateError("pools/0 does not exist")
        self.switches.append(pool)

    def wait(self, seconds):
        self.waits.append(seconds)
        return self.cancel_after is not None and len(self.waits) >= self.cancel_after


LOCAL = Pool.local(3333)
EU = Pool.donation_eu()


def runner_for(rec):
    return CycleRunner(rec.switch, rec.wait, rec.console.append, cycle=600)


def test_split_cycle_mines_locally_first():
    rec = Recorder()
    runtime = DonationRuntimeConfig()
    report = CycleReport(decision="split", needed_time=120, share_held=True)
    assert runner_for(rec).run(report, LOCAL, EU, runtime, lambda: 6_000)
    assert rec.switches == [LOCAL, EU]
    assert rec.waits == [480, 120]
    assert list(runtime.local_1h) == [pytest.approx(4_800)]
    assert list(runtime.donated_1h) == [pytest.approx(1_200)]


def test_all_local_without_share_says_so():
    rec = Recorder()
    report = CycleReport(decision="all_local", share_held=False)
    assert runner_for(rec).run(report, LOCAL, EU, DonationRuntimeConfig(), lambda: 1_000)
    assert rec.switches == [LOCAL]
    assert rec.waits == [600]
    assert any("no shares" in line for line in rec.console)


def test_cancelled_cycle_pushes_no_samples():
    rec = Recorder(cancel_after=1)
    runtime = DonationRuntimeConfig()
    report = CycleReport(decision="split", needed_time=120, share_held=True)
    assert runner_for(rec).run(report, LOCAL, EU, runtime, lambda: 6_000) is False
    assert rec.switches == [LOCAL]
    assert runtime.local_samples() == []


def test_failed_switch_is_reported_and_cycle_continues():
    rec = Recorder(fail_on=EU)
    runner = runner_for(rec)
    report = CycleReport(decision="all_donation", needed_time=600, share_held=True)
    assert runner.run(report, LOCAL, EU, DonationRuntimeConfig(), lambda: 1_000)
    assert runner.current_pool is None
    assert any("Failure to update" in line for line in rec.console)


def test_point_at_skips_current_pool():
    rec = Recorder()
    runner = runner_for(rec)
    runner.point_at(LOCAL)
    runner.point_at(LOCAL)
    assert rec.switches == [LOCAL]
