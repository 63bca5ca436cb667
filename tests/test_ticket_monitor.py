"""
Ticket monitor tests - Violator detection, reset windows, dedup and summary scheduling.
"""

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, Mock, patch

import pytest

from guildbot.services.ticket_monitor import (
    MAX_FIELDS_PER_EMBED,
    TicketMonitorService,
    build_violation_embeds,
    find_ticket_violators,
    is_last_day_of_month,
    member_ticket_count,
)

NOW = 1_700_000_000.0


def at_noon_utc(year: int, month: int, day: int) -> float:
    return datetime(year, month, day, 12, tzinfo=timezone.utc).timestamp()


class TestViolatorDetection:
    """Test ticket counting and violator selection."""

    def test_ticket_count_from_contribution(self, member_factory):
        assert member_ticket_count(member_factory("p1", "A", 450)) == 450

    def test_missing_contribution_counts_as_zero(self, member_factory):
        assert member_ticket_count(member_factory("p1", "A")) == 0
        assert member_ticket_count({"playerId": "p1"}) == 0

    def test_threshold_is_strict(self, member_factory):
        members = [
            member_factory("p1", "Full", 600),
            member_factory("p2", "Almost", 599),
            member_factory("p3", "Half", 300),
            member_factory("p4", "None", 0),
        ]

        violators = find_ticket_violators(members)

        assert [violator["id"] for violator in violators] == ["p2", "p3", "p4"]
        assert violators[0] == {"id": "p2", "name": "Almost", "tickets": 599}


class TestViolationEmbeds:
    """Test violation report rendering."""

    def test_sorted_ascending_with_total(self):
        violators = [
            {"id": "a", "name": "A", "tickets": 500},
            {"id": "b", "name": "B", "tickets": 100},
        ]

        embeds = build_violation_embeds("Test Guild", violators)

        assert len(embeds) == 1
        fields = embeds[0].fields
        assert fields[0].name == "1. B"
        assert fields[0].value == "100/600 tickets"
        assert fields[1].name == "2. A"
        assert fields[-1].name == "Total Missing Tickets"
        assert fields[-1].value == "600"
        assert "Test Guild" in embeds[0].title

    def test_large_report_split_across_embeds(self):
        violators = [{"id": str(i), "name": f"P{i}", "tickets": i} for i in range(30)]

        embeds = build_violation_embeds("Test Guild", violators)

        assert len(embeds) == 2
        assert len(embeds[0].fields) == MAX_FIELDS_PER_EMBED
        assert len(embeds[1].fields) == 30 - MAX_FIELDS_PER_EMBED + 1
        assert embeds[1].fields[0].name == "25. P24"
        assert embeds[1].fields[-1].name == "Total Missing Tickets"

    def test_last_day_of_month(self):
        assert is_last_day_of_month(date(2024, 2, 29))
        assert is_last_day_of_month(date(2023, 2, 28))
        assert not is_last_day_of_month(date(2024, 2, 28))
        assert not is_last_day_of_month(date(2024, 6, 15))


class TestTicketMonitorService:
    """Test the reconciliation loop."""

    @pytest.fixture
    def summary_service(self):
        service = Mock()
        service.generate_weekly_summary = AsyncMock(return_value=True)
        service.generate_monthly_summary = AsyncMock(return_value=True)
        return service

    @pytest.fixture
    def clock(self):
        clock = Mock(return_value=NOW)
        return clock

    @pytest.fixture
    def monitor(self, mock_bot, guild_registry, violation_store, game_data, summary_service, clock):
        return TicketMonitorService(
            mock_bot,
            guild_registry,
            violation_store,
            game_data,
            summary_service,
            clock=clock,
        )

    @pytest.fixture
    def guild_members(self, member_factory):
        return [
            member_factory("p1", "Full", 600),
            member_factory("p2", "Almost", 599),
            member_factory("p3", "Zero", 0),
        ]

    def registry_record(self, next_refresh: float, guild_id: str = "guild123") -> dict:
        return {
            "guild_id": guild_id,
            "channel_id": "987654321",
            "next_refresh_time": str(int(next_refresh)),
        }

    @pytest.mark.asyncio
    async def test_snapshot_inside_pre_reset_window(
        self, monitor, mock_bot, mock_text_channel, game_data, violation_store,
        guild_members, guild_response_factory,
    ):
        mock_bot.get_channel.return_value = mock_text_channel
        game_data.get_guild.return_value = guild_response_factory(guild_members)
        record = self.registry_record(NOW + 60)

        await monitor.process_guild(record, NOW)

        violation_store.record_violations.assert_awaited_once_with(
            "guild123", {"p2": 599, "p3": 0}
        )
        mock_text_channel.send.assert_awaited()
        assert f"guild123:{int(NOW + 60)}" in monitor.processed_refresh_times

    @pytest.mark.asyncio
    async def test_snapshot_taken_once_per_reset(
        self, monitor, game_data, violation_store, guild_members, guild_response_factory,
    ):
        game_data.get_guild.return_value = guild_response_factory(guild_members)
        record = self.registry_record(NOW + 90)

        await monitor.process_guild(record, NOW)
        await monitor.process_guild(record, NOW + 60)

        assert violation_store.record_violations.await_count == 1

    @pytest.mark.asyncio
    async def test_no_snapshot_outside_window(self, monitor, game_data):
        await monitor.process_guild(self.registry_record(NOW + 300), NOW)
        await monitor.process_guild(self.registry_record(NOW), NOW)

        game_data.get_guild.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_read_retried_next_tick(
        self, monitor, game_data, violation_store, guild_members, guild_response_factory,
    ):
        game_data.get_guild.side_effect = [
            RuntimeError("upstream down"),
            guild_response_factory(guild_members),
        ]
        record = self.registry_record(NOW + 90)

        await monitor.process_guild(record, NOW)
        assert not monitor.processed_refresh_times

        await monitor.process_guild(record, NOW + 60)
        assert violation_store.record_violations.await_count == 1
        assert monitor.processed_refresh_times

    @pytest.mark.asyncio
    async def test_no_violations_records_nothing(
        self, monitor, game_data, violation_store, member_factory, guild_response_factory,
    ):
        game_data.get_guild.return_value = guild_response_factory([member_factory("p1", "Full", 600)])

        await monitor.process_guild(self.registry_record(NOW + 60), NOW)

        violation_store.record_violations.assert_not_awaited()
        assert monitor.processed_refresh_times

    @pytest.mark.asyncio
    async def test_post_reset_stores_next_refresh_and_releases_marker(
        self, monitor, game_data, guild_registry, guild_members, guild_response_factory,
    ):
        refresh = NOW - 300
        monitor.processed_refresh_times.add(f"guild123:{int(refresh)}")
        game_data.get_guild.return_value = guild_response_factory(
            guild_members, next_refresh=str(int(refresh + 86400))
        )

        await monitor.process_guild(self.registry_record(refresh), NOW)

        guild_registry.register_channel.assert_awaited_once_with(
            "guild123", "987654321", str(int(refresh + 86400))
        )
        assert not monitor.processed_refresh_times

    @pytest.mark.asyncio
    async def test_stale_refresh_time_not_finalized_again(
        self, monitor, clock, game_data, guild_registry, summary_service,
        guild_members, guild_response_factory,
    ):
        sunday = at_noon_utc(2024, 6, 23)
        clock.return_value = sunday
        refresh = sunday - 600
        guild_registry.get_all_guilds.return_value = [self.registry_record(refresh)]
        game_data.get_guild.return_value = guild_response_factory(
            guild_members, next_refresh=str(int(refresh))
        )

        for _ in range(3):
            await monitor.check_guild_reset_times()

        guild_registry.register_channel.assert_not_awaited()
        summary_service.generate_weekly_summary.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_post_reset_waits_for_delay(self, monitor, game_data, guild_registry):
        await monitor.process_guild(self.registry_record(NOW - 299), NOW)

        guild_registry.register_channel.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tick_isolates_guild_failures(self, monitor, guild_registry):
        guild_registry.get_all_guilds.return_value = [
            self.registry_record(NOW + 60, "broken"),
            self.registry_record(NOW + 60, "healthy"),
        ]
        processed = []

        async def fake_process(guild, now):
            if guild["guild_id"] == "broken":
                raise RuntimeError("boom")
            processed.append(guild["guild_id"])

        with patch.object(monitor, "process_guild", side_effect=fake_process):
            await monitor.check_guild_reset_times()

        assert processed == ["healthy"]

    @pytest.mark.asyncio
    async def test_overlapping_tick_skipped(self, monitor, guild_registry):
        async with monitor._tick_lock:
            await monitor.check_guild_reset_times()

        guild_registry.get_all_guilds.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_once_forces_snapshot_and_summaries(
        self, mock_bot, guild_registry, violation_store, game_data, summary_service,
        clock, guild_members, guild_response_factory,
    ):
        monitor = TicketMonitorService(
            mock_bot, guild_registry, violation_store, game_data, summary_service,
            run_once=True, clock=clock,
        )
        game_data.get_guild.return_value = guild_response_factory(guild_members)

        await monitor.process_guild(self.registry_record(NOW + 86400), NOW)

        violation_store.record_violations.assert_awaited_once()
        summary_service.generate_weekly_summary.assert_awaited_once_with(
            "guild123", "987654321", "Test Guild"
        )
        summary_service.generate_monthly_summary.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "day, weekly, monthly",
        [
            ((2024, 6, 23), True, False),   # Sunday
            ((2024, 5, 31), False, True),   # Friday, month end
            ((2024, 6, 30), True, True),    # Sunday, month end
            ((2024, 6, 20), False, False),  # Thursday
        ],
    )
    async def test_summary_schedule(self, monitor, clock, summary_service, day, weekly, monthly):
        clock.return_value = at_noon_utc(*day)

        await monitor.check_and_generate_summaries("guild123", "987654321", "Test Guild")

        assert summary_service.generate_weekly_summary.await_count == int(weekly)
        assert summary_service.generate_monthly_summary.await_count == int(monthly)

    def test_stop_clears_dedup_state(self, monitor):
        monitor.processed_refresh_times.add("guild123:1")
        monitor.stop()

        assert not monitor.processed_refresh_times
        assert not monitor.is_running()
