"""Tests for period scoring, trend detection and score history."""

from datetime import datetime

import pandas as pd
import pytest

from dynamic_risk import DynamicRiskSettings
from score_service import PERIODS, ScoreService, score_service


@pytest.fixture
def service():
    return ScoreService()


class TestPeriodSelection:

    def test_weekly_period_starts_sunday(self, service, sample_trades):
        trades = service.get_trades_for_period(sample_trades, 'weekly', datetime(2024, 3, 13))
        assert list(trades['id']) == ['t5', 't6', 't7', 't8']

    def test_daily_monthly_yearly(self, service, sample_trades):
        assert len(service.get_trades_for_period(sample_trades, 'daily', datetime(2024, 3, 5, 20, 0))) == 1
        assert len(service.get_trades_for_period(sample_trades, 'monthly', datetime(2024, 3, 31))) == 8
        assert len(service.get_trades_for_period(sample_trades, 'yearly', datetime(2024, 1, 1))) == 8

    def test_historical_window_follows_lookback(self, sample_trades, reference_day):
        service = ScoreService({'thresholds': {'lookback_period': 7}})
        assert list(service.get_historical_trades(sample_trades, reference_day)['id']) == ['t5', 't6', 't7', 't8']

    def test_is_current_period(self, service):
        now = datetime(2024, 3, 15, 12, 0)
        assert service.is_current_period(datetime(2024, 3, 11), 'weekly', now)
        assert not service.is_current_period(datetime(2024, 3, 8), 'weekly', now)
        assert service.is_current_period(datetime(2024, 3, 1), 'monthly', now)

    def test_unknown_period(self, service, sample_trades):
        with pytest.raises(ValueError):
            service.calculate_score(sample_trades, 'hourly', datetime(2024, 3, 15))


class TestSettings:

    def test_update_settings_replaces_sections(self, service):
        service.update_settings({'weights': {'consistency': 25, 'risk_management': 25,
                                             'performance': 25, 'discipline': 25}})
        assert service.settings['weights']['consistency'] == 25
        assert service.settings['thresholds']['min_trades_for_score'] == 3

    def test_get_settings_is_a_copy(self, service):
        copy = service.get_settings()
        copy['weights']['consistency'] = 0
        assert service.settings['weights']['consistency'] == 40


class TestCalculateScore:

    def test_monthly_score(self, service, sample_trades, reference_day):
        analysis = service.calculate_score(sample_trades, 'monthly', reference_day, now=reference_day)

        assert analysis['trade_count'] == 8
        assert set(analysis['current_score']) == {
            'consistency', 'risk_management', 'performance', 'discipline', 'overall'
        }
        weights = service.settings['weights']
        expected = sum(analysis['breakdown'][c]['score'] * weights[c] for c in weights) / 100
        assert analysis['current_score']['overall'] == pytest.approx(expected)
        assert analysis['trend'] == 'stable'
        # fewer than ten trades
        assert analysis['tag_pattern_analysis'] is None

    def test_empty_period_scores_zero(self, service, sample_trades):
        analysis = service.calculate_score(sample_trades, 'daily', datetime(2024, 3, 9))
        assert analysis['trade_count'] == 0
        assert analysis['current_score']['overall'] == 0.0

    def test_accepts_list_of_dicts(self, service):
        trades = [{'trade_date': '2024-03-13', 'amount': 100, 'session': 'London', 'risk_to_reward': 2}] * 3
        analysis = service.calculate_score(trades, 'weekly', datetime(2024, 3, 13))
        assert analysis['trade_count'] == 3

    def test_tag_analysis_runs_with_enough_trades(self, service, make_trades):
        rows = [(f'2024-03-{day:02d} 10:00', 100.0 if day % 3 else -50.0,
                 {'session': 'London', 'risk_to_reward': 2.0, 'tags': ['Setup:A']})
                for day in range(1, 13)]
        analysis = service.calculate_score(make_trades(rows), 'monthly', datetime(2024, 3, 12))
        assert analysis['tag_pattern_analysis'] is not None
        assert analysis['tag_pattern_analysis']['top_combinations'][0]['tags'] == ['Setup:A']

    def test_saved_tag_settings_reach_pattern_and_tag_analysis(self, make_trades):
        rows = [(f'2024-03-{day:02d} 10:00', 100.0 if day % 3 else -50.0,
                 {'session': 'London', 'risk_to_reward': 2.0, 'tags': ['Setup:A', 'Mood:Calm']})
                for day in range(1, 13)]
        service = ScoreService({'selected_tags': ['Setup:A'], 'excluded_tags_from_patterns': ['Mood:Calm']})

        analysis = service.calculate_score(make_trades(rows), 'monthly', datetime(2024, 3, 12))
        assert analysis['pattern']['common_tags'] == ['Setup:A']
        combos = [c['tags'] for c in analysis['tag_pattern_analysis']['top_combinations']]
        assert combos == [['Setup:A']]

    def test_dynamic_risk_settings_used(self, service, sample_trades, reference_day, risk_calendar):
        service.update_dynamic_risk_settings(DynamicRiskSettings.from_calendar(risk_calendar))
        analysis = service.calculate_score(sample_trades, 'monthly', reference_day)
        assert analysis['pattern']['avg_position_size'] == pytest.approx(1025 / 8)


class TestTrend:

    @pytest.fixture
    def improving_trades(self, make_trades):
        return make_trades([
            ('2024-03-04', -50.0), ('2024-03-05', -50.0),
            ('2024-03-11', 50.0), ('2024-03-12', 50.0),
        ])

    def test_improving(self, service, improving_trades):
        trend = service.calculate_trend(improving_trades, 'weekly', datetime(2024, 3, 12), now=datetime(2024, 3, 14))
        assert trend == 'improving'

    def test_declining(self, service, make_trades):
        trades = make_trades([
            ('2024-03-04', 50.0), ('2024-03-05', 50.0),
            ('2024-03-11', -50.0), ('2024-03-12', -50.0),
        ])
        trend = service.calculate_trend(trades, 'weekly', datetime(2024, 3, 12), now=datetime(2024, 3, 14))
        assert trend == 'declining'

    def test_past_period_is_stable(self, service, improving_trades):
        trend = service.calculate_trend(improving_trades, 'weekly', datetime(2024, 3, 12), now=datetime(2024, 4, 1))
        assert trend == 'stable'

    def test_needs_two_trades_each_side(self, service, improving_trades):
        trades = improving_trades.iloc[1:]
        trend = service.calculate_trend(trades, 'weekly', datetime(2024, 3, 12), now=datetime(2024, 3, 14))
        assert trend == 'stable'


class TestHistory:

    def test_weekly_history_oldest_first(self, service, sample_trades, reference_day):
        history = service.get_score_history(sample_trades, 'weekly', 3, reference_date=reference_day)
        assert [h['date'] for h in history] == [pd.Timestamp('2024-03-08 18:00'), pd.Timestamp('2024-03-15 18:00')]
        assert [h['trade_count'] for h in history] == [4, 4]
        assert 'overall' in history[0]['metrics']

    def test_monthly_history_needs_one_trade(self, service, make_trades, reference_day):
        trades = make_trades([
            ('2024-01-10', 100.0, {'risk_to_reward': 2.0, 'session': 'London'}),
            ('2024-02-12', -50.0, {'risk_to_reward': 2.0, 'session': 'London'}),
            ('2024-03-05', 80.0, {'risk_to_reward': 2.0, 'session': 'NY AM'}),
        ])
        history = service.get_score_history(trades, 'monthly', 4, reference_date=reference_day)
        assert [h['date'].month for h in history] == [1, 2, 3]
        assert [h['trade_count'] for h in history] == [1, 1, 1]
        assert all(h['period'] == 'monthly' for h in history)

    def test_weekly_history_skips_thin_weeks(self, service, make_trades, reference_day):
        trades = make_trades([('2024-03-05', 100.0), ('2024-03-12', 80.0), ('2024-03-13', -40.0)])
        assert service.get_score_history(trades, 'weekly', 4, reference_date=reference_day) == []

    def test_multi_period(self, service, sample_trades, reference_day):
        scores = service.calculate_multi_period_score(sample_trades, reference_day)
        assert list(scores) == PERIODS

    def test_summary(self, sample_trades, reference_day):
        summary = score_service.get_score_summary(sample_trades, reference_date=reference_day)
        assert set(summary) == {'current_weekly', 'trend', 'key_metric', 'recommendation'}
        assert summary['key_metric'].endswith('%')
        assert summary['recommendation']
