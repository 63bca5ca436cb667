"""
Violation summary tests - Aggregation math, ranking, pagination and delivery.
"""

from unittest.mock import AsyncMock

import pytest

from guildbot.services.violation_summary import (
    PLAYERS_PER_PAGE,
    PlayerCounter,
    ViolationSummaryService,
    build_summary_embeds,
    calculate_average_tickets,
    calculate_missing_tickets,
    calculate_player_stats,
    collect_player_counters,
    member_names,
    paginate,
)


def violation_row(ticket_counts: dict, guild_id: str = "guild123") -> dict:
    return {"guild_id": guild_id, "date": None, "ticket_counts": ticket_counts}


class TestAggregation:
    """Test the pure statistics."""

    def test_collect_counters(self):
        rows = [
            violation_row({"p1": 500, "p2": 0}),
            violation_row({"p1": 400}),
        ]

        counters = collect_player_counters(rows)

        assert counters["p1"] == PlayerCounter(violations=2, ticket_sum=900)
        assert counters["p2"] == PlayerCounter(violations=1, ticket_sum=0)

    @pytest.mark.parametrize(
        "violations, ticket_sum, missing",
        [(3, 1500, 300), (2, 1200, 0), (1, 0, 600)],
    )
    def test_missing_tickets(self, violations, ticket_sum, missing):
        assert calculate_missing_tickets(PlayerCounter(violations, ticket_sum)) == missing

    def test_average_over_period(self):
        """350 missing tickets over 7 days averages 550 a day."""
        counter = PlayerCounter(violations=1, ticket_sum=250)

        assert calculate_average_tickets(counter, 7) == 550

    def test_average_over_thirty_days(self):
        counter = PlayerCounter(violations=5, ticket_sum=1500)

        assert calculate_missing_tickets(counter) == 1500
        assert calculate_average_tickets(counter, 30) == 550

    def test_missing_count_treated_as_zero(self):
        counters = collect_player_counters([violation_row({"p1": None}), violation_row({"p1": 100})])

        assert counters["p1"] == PlayerCounter(violations=2, ticket_sum=100)

    def test_average_over_violation_days_only(self):
        counter = PlayerCounter(violations=2, ticket_sum=700)

        assert calculate_average_tickets(counter, 7, violation_days_only=True) == 350

    def test_player_stats_filter_and_rank(self):
        rows = [
            violation_row({"p1": 500, "p2": 100, "gone": 0}),
            violation_row({"p1": 550}),
        ]
        names = {"p1": "Alice", "p2": "Bob", "p3": "Carol"}

        stats = calculate_player_stats(rows, 7, names)

        assert [summary.player_name for summary in stats] == ["Bob", "Alice"]
        assert stats[0].violation_count == 1
        assert stats[0].total_missing_tickets == 500
        assert stats[1].total_missing_tickets == 150

    def test_paginate(self):
        stats = list(range(25))

        pages = paginate(stats)

        assert [len(page) for page in pages] == [PLAYERS_PER_PAGE, PLAYERS_PER_PAGE, 5]

    def test_member_names(self, member_factory, guild_response_factory):
        response = guild_response_factory([member_factory("p1", "Alice"), {"playerName": "NoId"}])

        assert member_names(response) == {"p1": "Alice"}
        assert member_names(None) == {}


class TestSummaryEmbeds:
    """Test summary rendering."""

    def test_overview_and_pages(self):
        rows = [violation_row({f"p{i}": i * 10 for i in range(12)})]
        names = {f"p{i}": f"Player {i}" for i in range(12)}
        stats = calculate_player_stats(rows, 7, names)

        embeds = build_summary_embeds("Weekly", "Test Guild", 7, len(rows), stats)

        assert len(embeds) == 3
        assert embeds[0].title == "Weekly Ticket Violation Summary for Test Guild"
        assert "Period: Last 7 days" in embeds[0].description
        assert "Total Violations Recorded: 1" in embeds[0].description
        assert embeds[1].title == "Weekly Player Ticket Statistics - Test Guild"
        assert embeds[1].description == "Page 1 of 2"
        assert embeds[1].fields[0].name == "1. Player 0"
        assert embeds[2].fields[0].name == "11. Player 10"
        assert "**Avg. Daily Tickets:** 514.3" in embeds[1].fields[0].value

    def test_no_players_still_has_overview(self):
        embeds = build_summary_embeds("Monthly", "Test Guild", 30, 2, [])

        assert len(embeds) == 1
        assert embeds[0].fields[0].value == "Total Guild Missing Tickets: 0"


class TestViolationSummaryService:
    """Test report generation and delivery."""

    @pytest.fixture
    def service(self, mock_bot, violation_store, game_data, mock_text_channel):
        mock_bot.get_channel.return_value = mock_text_channel
        return ViolationSummaryService(mock_bot, violation_store, game_data)

    @pytest.mark.asyncio
    async def test_weekly_summary_posted(
        self, service, violation_store, game_data, mock_text_channel,
        member_factory, guild_response_factory,
    ):
        violation_store.get_weekly_violations.return_value = [violation_row({"p1": 300})]
        game_data.get_guild.return_value = guild_response_factory([member_factory("p1", "Alice")])

        assert await service.generate_weekly_summary("guild123", "987654321", "Test Guild") is True

        violation_store.get_weekly_violations.assert_awaited_once_with("guild123")
        game_data.get_guild.assert_awaited_once_with("guild123", True)
        assert mock_text_channel.send.await_count == 2

    @pytest.mark.asyncio
    async def test_no_rows_skips_report(self, service, violation_store, mock_text_channel):
        assert await service.generate_monthly_summary("guild123", "987654321", "Test Guild") is False

        mock_text_channel.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_period_rejects_invalid_days(self, service, violation_store):
        assert await service.generate_custom_period_summary("guild123", "1", "G", 0) is False
        assert await service.generate_custom_period_summary("guild123", "1", "G", 91) is False

        violation_store.get_custom_period_violations.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_custom_period_uses_days(
        self, service, violation_store, game_data, member_factory, guild_response_factory,
    ):
        violation_store.get_custom_period_violations.return_value = [violation_row({"p1": 300})]
        game_data.get_guild.return_value = guild_response_factory([member_factory("p1", "Alice")])

        assert await service.generate_custom_period_summary("guild123", "1", "G", 14) is True

        violation_store.get_custom_period_violations.assert_awaited_once_with("guild123", 14)

    @pytest.mark.asyncio
    async def test_errors_are_contained(self, service, violation_store):
        violation_store.get_weekly_violations.side_effect = RuntimeError("db down")

        assert await service.generate_weekly_summary("guild123", "1", "G") is False

    @pytest.mark.asyncio
    async def test_unavailable_channel(self, service, mock_bot, violation_store, game_data):
        mock_bot.get_channel.return_value = None
        mock_bot.fetch_channel = AsyncMock(return_value=None)
        violation_store.get_weekly_violations.return_value = [violation_row({"p1": 300})]

        assert await service.generate_weekly_summary("guild123", "1", "G") is False
        game_data.get_guild.assert_not_awaited()
