"""Tests for the reminder orchestrator."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from appointment_coordinator.errors import NotificationDeliveryError
from appointment_coordinator.reminder_orchestrator import ReminderOrchestrator
from appointment_coordinator.reminder_planner import ReminderPlanner
from appointment_coordinator.store import ReminderState

from conftest import HeldChannel, RecordingChannel

DAY_BEFORE = datetime(2025, 1, 9, 10, 0, tzinfo=timezone.utc)
HOUR_BEFORE = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def planner(stores, clock):
    _, reminder_store = stores
    return ReminderPlanner(reminder_store, clock, default_offsets_minutes=[24 * 60, 60])


@pytest.fixture
def orchestrator(planner, clock, channel):
    return ReminderOrchestrator(planner, clock, {"log": channel})


async def armed_plan(planner, orchestrator, appointment_id="A1"):
    plan = await planner.replace_plan(appointment_id, "2025-01-10", "10:00", ["log"])
    await orchestrator.arm(plan)
    return plan


class TestArm:
    """Tests for arming and firing reminders."""

    @pytest.mark.asyncio
    async def test_arm_registers_timer_per_pending_entry(self, planner, orchestrator, clock):
        await armed_plan(planner, orchestrator)
        assert clock.pending_timers == 2
        assert orchestrator.armed_count("A1") == 2

    @pytest.mark.asyncio
    async def test_arm_twice_does_not_duplicate(self, planner, orchestrator, clock):
        plan = await armed_plan(planner, orchestrator)
        assert await orchestrator.arm(plan) == 0
        assert clock.pending_timers == 2

    @pytest.mark.asyncio
    async def test_fired_reminder_is_sent(self, planner, orchestrator, clock, channel):
        plan = await armed_plan(planner, orchestrator)
        await clock.advance_to(DAY_BEFORE)

        assert len(channel.sent) == 1
        target, payload = channel.sent[0]
        assert target == "A1"
        assert payload["title"] == "Appointment Tomorrow"
        assert payload["label"] == "24_hour"
        assert "tomorrow" in payload["message"]

        entry = planner.get_entry(plan.entries[0].entry_id)
        assert entry.state == ReminderState.SENT
        assert entry.sent_at == DAY_BEFORE
        assert planner.get_entry(plan.entries[1].entry_id).state == ReminderState.PENDING

    @pytest.mark.asyncio
    async def test_channel_failure_recorded(self, planner, clock):
        channel = RecordingChannel(error=NotificationDeliveryError("SMS gateway down"))
        orchestrator = ReminderOrchestrator(planner, clock, {"log": channel})
        plan = await armed_plan(planner, orchestrator)

        await clock.advance_to(HOUR_BEFORE)

        entries = [planner.get_entry(e.entry_id) for e in plan.entries]
        assert [e.state for e in entries] == [ReminderState.FAILED, ReminderState.FAILED]
        assert entries[0].error == "SMS gateway down"
        # Not retried
        assert len(channel.sent) == 2
        assert clock.pending_timers == 0

    @pytest.mark.asyncio
    async def test_channel_returning_false_is_failure(self, planner, clock):
        orchestrator = ReminderOrchestrator(planner, clock, {"log": RecordingChannel(result=False)})
        await armed_plan(planner, orchestrator)
        await clock.advance_to(DAY_BEFORE)
        assert orchestrator.get_statistics().failed == 1

    @pytest.mark.asyncio
    async def test_unexpected_channel_error_is_failure(self, planner, clock):
        orchestrator = ReminderOrchestrator(planner, clock, {"log": RecordingChannel(error=KeyError("boom"))})
        plan = await armed_plan(planner, orchestrator)
        await clock.advance_to(DAY_BEFORE)
        assert planner.get_entry(plan.entries[0].entry_id).error.startswith("KeyError")

    @pytest.mark.asyncio
    async def test_unknown_channel_is_failure(self, planner, orchestrator, clock, channel):
        plan = await planner.replace_plan("A1", "2025-01-10", "10:00", ["pager"])
        await orchestrator.arm(plan)
        await clock.advance_to(DAY_BEFORE)
        assert planner.get_entry(plan.entries[0].entry_id).state == ReminderState.FAILED
        assert channel.sent == []


class TestCancelAll:
    """Tests for cancel_all."""

    @pytest.mark.asyncio
    async def test_cancel_without_timers_is_noop(self, orchestrator):
        assert await orchestrator.cancel_all("never-armed") == 0

    @pytest.mark.asyncio
    async def test_cancel_drops_timers_and_entries(self, planner, orchestrator, clock, channel):
        await armed_plan(planner, orchestrator)
        assert await orchestrator.cancel_all("A1") == 2
        assert clock.pending_timers == 0
        assert planner.entries("A1", ReminderState.PENDING) == []

        await clock.advance_to(HOUR_BEFORE)
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_cancel_after_fire_keeps_sent(self, planner, orchestrator, clock):
        plan = await armed_plan(planner, orchestrator)
        await clock.advance_to(DAY_BEFORE)
        await orchestrator.cancel_all("A1")

        assert planner.get_entry(plan.entries[0].entry_id).state == ReminderState.SENT
        assert planner.get_entry(plan.entries[1].entry_id).state == ReminderState.CANCELLED

    @pytest.mark.asyncio
    async def test_other_appointments_unaffected(self, planner, orchestrator, clock):
        await armed_plan(planner, orchestrator, "A1")
        await armed_plan(planner, orchestrator, "A2")
        await orchestrator.cancel_all("A1")
        assert orchestrator.armed_count("A2") == 2
        assert clock.pending_timers == 2


class TestStatistics:
    """Tests for get_statistics."""

    @pytest.mark.asyncio
    async def test_counts_across_plans(self, planner, orchestrator, clock):
        await armed_plan(planner, orchestrator, "A1")
        await armed_plan(planner, orchestrator, "A2")
        await clock.advance_to(DAY_BEFORE)
        await orchestrator.cancel_all("A2")

        stats = orchestrator.get_statistics()
        assert stats.sent == 2
        assert stats.pending == 1
        assert stats.cancelled == 1
        assert stats.failed == 0
        assert stats.total == 4


class TestRecover:
    """Tests for re-arming after a restart."""

    @pytest.mark.asyncio
    async def test_rearms_pending_entries(self, planner, clock, channel):
        await planner.replace_plan("A1", "2025-01-10", "10:00", ["log"])
        restarted = ReminderOrchestrator(planner, clock, {"log": channel})

        assert await restarted.recover(timedelta(hours=1)) == 2
        await clock.advance_to(HOUR_BEFORE)
        assert restarted.get_statistics().sent == 2

    @pytest.mark.asyncio
    async def test_long_overdue_entries_fail(self, planner, clock, channel):
        plan = await planner.replace_plan("A1", "2025-01-10", "10:00", ["log"])
        await clock.advance_to(DAY_BEFORE + timedelta(hours=3))
        restarted = ReminderOrchestrator(planner, clock, {"log": channel})

        assert await restarted.recover(timedelta(hours=1)) == 1
        missed = planner.get_entry(plan.entries[0].entry_id)
        assert missed.state == ReminderState.FAILED
        assert missed.error == "missed while offline"

    @pytest.mark.asyncio
    async def test_slightly_late_entries_fire_now(self, planner, clock, channel):
        plan = await planner.replace_plan("A1", "2025-01-10", "10:00", ["log"])
        await clock.advance_to(DAY_BEFORE + timedelta(minutes=10))
        restarted = ReminderOrchestrator(planner, clock, {"log": channel})

        await restarted.recover(timedelta(hours=1))
        await clock.advance(timedelta(seconds=1))
        assert planner.get_entry(plan.entries[0].entry_id).state == ReminderState.SENT


class TestSlowChannel:
    """Timers release the appointment lock while a channel is sending."""

    @pytest.mark.asyncio
    async def test_cancel_runs_while_channel_sends(self, planner, clock):
        channel = HeldChannel()
        orchestrator = ReminderOrchestrator(planner, clock, {"log": channel})
        plan = await armed_plan(planner, orchestrator)

        firing = asyncio.create_task(clock.advance_to(DAY_BEFORE))
        await asyncio.wait_for(channel.started.wait(), 1)
        assert await asyncio.wait_for(orchestrator.cancel_all("A1"), 1) == 2

        channel.release.set()
        await firing
        # Delivered before the cancel could stop it
        assert planner.get_entry(plan.entries[0].entry_id).state == ReminderState.SENT
        assert planner.get_entry(plan.entries[1].entry_id).state == ReminderState.CANCELLED

    @pytest.mark.asyncio
    async def test_resync_skips_entry_being_sent(self, planner, clock):
        channel = HeldChannel()
        orchestrator = ReminderOrchestrator(planner, clock, {"log": channel})
        plan = await armed_plan(planner, orchestrator)

        firing = asyncio.create_task(clock.advance_to(DAY_BEFORE))
        await asyncio.wait_for(channel.started.wait(), 1)
        assert await orchestrator.resync("A1") == 1
        assert await orchestrator.arm(plan) == 0
        assert clock.pending_timers == 1

        channel.release.set()
        await firing
        await clock.advance_to(DAY_BEFORE + timedelta(minutes=1))
        assert len(channel.sent) == 1

    @pytest.mark.asyncio
    async def test_failure_after_cancel_keeps_cancelled(self, planner, clock):
        channel = HeldChannel(error=NotificationDeliveryError("SMS gateway down"))
        orchestrator = ReminderOrchestrator(planner, clock, {"log": channel})
        plan = await armed_plan(planner, orchestrator)

        firing = asyncio.create_task(clock.advance_to(DAY_BEFORE))
        await asyncio.wait_for(channel.started.wait(), 1)
        await orchestrator.cancel_all("A1")

        channel.release.set()
        await firing
        entry = planner.get_entry(plan.entries[0].entry_id)
        assert entry.state == ReminderState.CANCELLED
        assert entry.error is None
