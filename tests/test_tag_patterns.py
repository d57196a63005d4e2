"""Tests for tag combination win-rate analysis."""

from datetime import datetime, timedelta

import pytest

from tag_patterns import TagPatternService, tag_pattern_service


@pytest.fixture
def service():
    return TagPatternService()


@pytest.fixture
def declining_trades(make_trades):
    """London + Setup:X trades: four historical wins, four recent losses."""
    rows = []
    for day in range(1, 5):
        rows.append((datetime(2024, 4, day, 10), 100.0, {'tags': ['London', 'Setup:X']}))
    for day in range(20, 24):
        rows.append((datetime(2024, 5, day, 10), -100.0, {'tags': ['London', 'Setup:X']}))
    return make_trades(rows)


class TestCombinations:

    def test_singles_then_pairs(self, service, sample_trades):
        combos = service.generate_tag_combinations(sample_trades)
        assert combos == [
            ['Setup:Breakout'], ['pair:EURUSD'], ['pair:GBPUSD'], ['Setup:Pullback'],
            ['Setup:Breakout', 'pair:EURUSD'], ['Setup:Breakout', 'pair:GBPUSD'], ['Setup:Pullback', 'pair:EURUSD'],
        ]

    def test_partials_and_excluded_tags_skipped(self, service, make_trades):
        trades = make_trades([('2024-03-04', 10.0, {'tags': ['Partials:Yes', 'Setup:A', 'Mood:Calm']})])
        assert service.generate_tag_combinations(trades, excluded_tags=['Mood:Calm']) == [['Setup:A']]

    def test_triples_need_more_than_fifty_trades(self, service, make_trades):
        rows = [(datetime(2024, 1, 1) + timedelta(days=i), 10.0, {'tags': ['A', 'B', 'C']}) for i in range(50)]
        assert ['A', 'B', 'C'] not in service.generate_tag_combinations(make_trades(rows))
        rows.append((datetime(2024, 3, 1), 10.0, {'tags': ['A', 'B', 'C']}))
        assert ['A', 'B', 'C'] in service.generate_tag_combinations(make_trades(rows))


class TestCombinationStats:

    def test_single_tag(self, service, sample_trades, reference_day):
        stats = service.get_tag_combination_stats(sample_trades, ['Setup:Breakout'], reference_day)
        assert stats['total_trades'] == 5
        assert stats['wins'] == 2
        assert stats['losses'] == 3
        assert stats['win_rate'] == pytest.approx(40.0)
        assert stats['total_pnl'] == 100.0
        assert stats['avg_pnl'] == 20.0
        assert stats['trend'] == 'stable'
        assert stats['historical_win_rate'] == 0.0

    def test_breakevens_excluded_from_win_rate(self, service, sample_trades, reference_day):
        stats = service.get_tag_combination_stats(sample_trades, ['Setup:Pullback'], reference_day)
        assert stats['total_trades'] == 3
        assert stats['win_rate'] == 100.0

    def test_declining_trend(self, service, declining_trades):
        stats = service.get_tag_combination_stats(declining_trades, ['Setup:X'], datetime(2024, 6, 1))
        assert stats['recent_win_rate'] == 0.0
        assert stats['historical_win_rate'] == 100.0
        assert stats['trend'] == 'declining'


class TestAnalyze:

    def test_top_combinations_ranked(self, service, sample_trades, reference_day):
        result = service.analyze_tag_patterns(sample_trades, reference_day)
        assert [c['tags'] for c in result['top_combinations']] == [
            ['Setup:Pullback'], ['pair:EURUSD'], ['Setup:Breakout', 'pair:EURUSD'], ['Setup:Breakout'],
        ]
        assert result['declining_combinations'] == []
        assert result['insights'] == []

    def test_close_win_rates_rank_by_volume(self, make_trades, service):
        rows = [('2024-03-01', 10.0, {'tags': ['A']})] * 3 + [('2024-03-01', -10.0, {'tags': ['A']})]
        rows += [('2024-03-02', 10.0, {'tags': ['B']})] * 6 + [('2024-03-02', -10.0, {'tags': ['B']})] * 2
        result = service.analyze_tag_patterns(make_trades(rows), datetime(2024, 3, 5))
        # A: 75% over 4 trades, B: 75% over 8 trades
        assert [c['tags'] for c in result['top_combinations']] == [['B'], ['A']]

    def test_declining_insights_and_session_alerts(self, declining_trades):
        result = tag_pattern_service.analyze_tag_patterns(declining_trades, datetime(2024, 6, 1))

        assert len(result['declining_combinations']) == 3
        alerts = result['market_condition_alerts']
        assert len(alerts) == 2
        assert alerts[0]['title'] == "London Session Performance Decline"

        declining = [i for i in result['insights'] if i['type'] == 'declining_pattern']
        assert len(declining) == 3
        assert declining[0]['severity'] == 'high'
        assert len(result['insights']) == 5

    def test_high_performance_insight(self, service, make_trades):
        rows = [(datetime(2024, 3, day), 100.0, {'tags': ['Setup:A']}) for day in range(1, 9)]
        rows.append((datetime(2024, 3, 9), -100.0, {'tags': ['Setup:A']}))
        result = service.analyze_tag_patterns(make_trades(rows), datetime(2024, 3, 10))
        insight = result['insights'][0]
        assert insight['type'] == 'high_performance'
        assert insight['tag_combination'] == ['Setup:A']
        assert insight['severity'] == 'high'
        assert insight['confidence'] == min(95, 50 + 9 * 2)

    def test_excluded_tags_setting(self, service, sample_trades, reference_day):
        result = service.analyze_tag_patterns(
            sample_trades, reference_day, {'excluded_tags_from_patterns': ['Setup:Pullback']}
        )
        assert ['Setup:Pullback'] not in [c['tags'] for c in result['top_combinations']]
