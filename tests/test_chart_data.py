"""Tests for performance chart series and figures."""

from datetime import datetime

import pandas as pd
import pytest

from chart_data import (
    build_cumulative_pnl_figure,
    build_daily_pnl_figure,
    build_score_history_figure,
    build_score_radar_figure,
    calculate_chart_data,
    calculate_drawdown_violation_value,
    calculate_session_stats,
    calculate_target_value,
    get_filtered_trades,
)
from trade_model import normalize_trades


class TestChartData:

    def test_month_has_one_row_per_day(self, sample_trades, reference_day):
        df = calculate_chart_data(sample_trades, reference_day, 'month')
        assert len(df) == 31
        assert df['trade_count'].sum() == 8
        assert df['cumulative_pnl'].iloc[-1] == 550.0

    def test_daily_flags(self, sample_trades, reference_day):
        df = calculate_chart_data(sample_trades, reference_day, 'month').set_index('date')
        assert df.loc['03/04', 'pnl'] == 200.0
        assert df.loc['03/04', 'is_win']
        assert df.loc['03/05', 'is_loss']
        assert df.loc['03/05', 'is_decreasing']
        assert df.loc['03/06', 'cumulative_pnl'] == 400.0
        assert df.loc['03/06', 'daily_change'] == 300.0
        assert df.loc['03/07', 'is_break_even']
        assert df.loc['03/07', 'trade_count'] == 1

    def test_year_and_all(self, sample_trades, reference_day):
        assert len(calculate_chart_data(sample_trades, reference_day, 'year')) == 366
        everything = calculate_chart_data(sample_trades, reference_day, 'all')
        assert everything['full_date'].iloc[0] == pd.Timestamp('2024-03-04')
        assert everything['full_date'].iloc[-1] == pd.Timestamp('2024-03-15')
        assert everything['date'].iloc[0] == '03/04/2024'

    def test_empty_month(self, reference_day):
        df = calculate_chart_data(normalize_trades([]), reference_day, 'month')
        assert len(df) == 31
        assert (df['cumulative_pnl'] == 0).all()

    def test_filtered_trades(self, sample_trades):
        assert len(get_filtered_trades(sample_trades, datetime(2024, 4, 1), 'month')) == 0
        assert len(get_filtered_trades(sample_trades, datetime(2024, 4, 1), 'year')) == 8
        assert len(get_filtered_trades(sample_trades, datetime(2020, 1, 1), 'all')) == 8


class TestSessionStats:

    def test_per_session(self, sample_trades, reference_day):
        df = calculate_session_stats(sample_trades, reference_day, 'month', 10000).set_index('session')
        assert list(df.index) == ['Asia', 'London', 'NY AM', 'NY PM']

        london = df.loc['London']
        assert london['total_trades'] == 4
        assert london['win_rate'] == 50.0
        assert london['total_pnl'] == 200.0
        assert london['average_pnl'] == 50.0
        assert london['pnl_percentage'] == pytest.approx(2.0)

        assert df.loc['NY AM', 'win_rate'] == 100.0
        assert df.loc['NY PM', 'breakevens'] == 1
        assert df.loc['NY PM', 'win_rate'] == 0.0
        assert df.loc['Asia', 'losers'] == 1


class TestReferenceLines:

    def test_target_value(self):
        assert calculate_target_value(5, 10000) == 500.0
        assert calculate_target_value(None, 10000) is None
        assert calculate_target_value(5, 0) is None

    def test_drawdown_violation_value(self):
        assert calculate_drawdown_violation_value(2, 10000) == -200.0


class TestFigures:

    def test_cumulative_figure(self, sample_trades, reference_day):
        df = calculate_chart_data(sample_trades, reference_day, 'month')
        fig = build_cumulative_pnl_figure(df, target_value=500.0)
        assert len(fig.data) == 1
        assert fig.data[0].fill == 'tozeroy'
        # zero line plus target line
        assert len(fig.layout.shapes) == 2

    def test_daily_figure(self, sample_trades, reference_day):
        df = calculate_chart_data(sample_trades, reference_day, 'month')
        fig = build_daily_pnl_figure(df, drawdown_limit=-200.0)
        assert fig.data[0].type == 'bar'
        assert len(fig.layout.shapes) == 1

    def test_radar_figure(self):
        score = {'consistency': 80, 'risk_management': 60, 'performance': 70, 'discipline': 50, 'overall': 68}
        fig = build_score_radar_figure(score, recommended=77.75)
        assert len(fig.data) == 2
        assert list(fig.data[0].r) == [80, 60, 70, 50, 80]

    def test_history_figure(self):
        assert len(build_score_history_figure([]).data) == 0
        history = [{'date': pd.Timestamp('2024-03-08'), 'metrics': {'overall': 60.0}},
                   {'date': pd.Timestamp('2024-03-15'), 'metrics': {'overall': 70.0}}]
        assert list(build_score_history_figure(history).data[0].y) == [60.0, 70.0]
