# score_service.py - Period scoring, trend and history on top of score_utils

import copy
import traceback
from datetime import datetime, timedelta

import pandas as pd

from score_utils import (
    COMPONENTS,
    DEFAULT_SCORE_SETTINGS,
    calculate_consistency_score,
    calculate_discipline_score,
    calculate_performance_score,
    calculate_risk_management_score,
    calculate_trading_pattern,
    generate_recommendations,
    merge_score_settings,
)
from stats_utils import week_start
from tag_patterns import tag_pattern_service
from trade_model import normalize_trades

PERIODS = ['daily', 'weekly', 'monthly', 'yearly']
TREND_THRESHOLD = 5
MIN_TRADES_FOR_TAG_ANALYSIS = 10

COMPONENT_LABELS = {
    'consistency': 'Consistency',
    'risk_management': 'Risk Management',
    'performance': 'Performance',
    'discipline': 'Discipline',
}


def _nan_to_zero(value):
    return 0.0 if pd.isna(value) else float(value)


def _same_period(dates, target, period):
    """Boolean mask of dates falling in target's day/week (Sunday start)/month/year."""
    target = pd.Timestamp(target)
    if period == 'daily':
        return dates.dt.normalize() == target.normalize()
    if period == 'weekly':
        start = week_start(target, 0)
        return (dates >= start) & (dates < start + timedelta(days=7))
    if period == 'monthly':
        return (dates.dt.year == target.year) & (dates.dt.month == target.month)
    if period == 'yearly':
        return dates.dt.year == target.year
    raise ValueError(f"Unknown period '{period}'")


def _step_back(date, period, steps=1):
    date = pd.Timestamp(date)
    if period == 'daily':
        return date - pd.DateOffset(days=steps)
    if period == 'weekly':
        return date - pd.DateOffset(weeks=steps)
    if period == 'monthly':
        return date - pd.DateOffset(months=steps)
    return date - pd.DateOffset(years=steps)


def _simple_score(trades):
    """Win rate blended with average return; used for trend detection only."""
    if trades.empty:
        return 0.0
    win_rate = (trades['trade_type'] == 'win').sum() / len(trades) * 100
    avg_return = float(trades['amount'].sum()) / len(trades)
    if avg_return > 0:
        return_score = min(100, avg_return * 10)
    else:
        return_score = max(0, 50 + avg_return * 10)
    return (win_rate + return_score) / 2


class ScoreService:
    """
    Scores a calendar's trades for a day, week, month or year.

    Usage:
        service = ScoreService(merge_score_settings(calendar['score_settings']))
        service.update_dynamic_risk_settings(DynamicRiskSettings.from_calendar(calendar))
        analysis = service.calculate_score(trades, 'weekly', date.today())
    """

    def __init__(self, settings=None):
        self.settings = merge_score_settings(settings) if settings else copy.deepcopy(DEFAULT_SCORE_SETTINGS)
        self.dynamic_risk_settings = None

    # ============================================
    # SETTINGS
    # ============================================
    def update_dynamic_risk_settings(self, dynamic_risk_settings=None):
        self.dynamic_risk_settings = dynamic_risk_settings

    def update_settings(self, new_settings):
        """Replace top-level settings sections (weights, thresholds, ...)."""
        self.settings = {**self.settings, **copy.deepcopy(new_settings)}

    def get_settings(self):
        return copy.deepcopy(self.settings)

    # ============================================
    # PERIOD SELECTION
    # ============================================
    def get_trades_for_period(self, trades, period, target_date):
        if trades.empty:
            return trades
        dates = pd.to_datetime(trades['trade_date'])
        return trades[_same_period(dates, target_date, period)]

    def get_historical_trades(self, trades, target_date):
        """Trades in the lookback window ending at target_date (both ends inclusive)."""
        if trades.empty:
            return trades
        target = pd.Timestamp(target_date)
        cutoff = target - timedelta(days=self.settings['thresholds']['lookback_period'])
        dates = pd.to_datetime(trades['trade_date'])
        return trades[(dates >= cutoff) & (dates <= target)]

    def is_current_period(self, target_date, period, now=None):
        now = pd.Timestamp(now if now is not None else datetime.now())
        return bool(_same_period(pd.Series([now]), target_date, period).iloc[0])

    # ============================================
    # SCORING
    # ============================================
    def calculate_score(self, all_trades, period='weekly', target_date=None, score_settings=None, now=None):
        """
        Full score analysis for one period.

        Args:
            all_trades: every trade of the calendar (frame or list of dicts)
            period: daily, weekly, monthly or yearly
            target_date: any date inside the period (defaults to now)
            score_settings: settings passed to tag pattern analysis
            now: reference "today" for trend detection

        Returns:
            dict with current_score, breakdown, pattern, recommendations,
            strengths, weaknesses, trend, tag_pattern_analysis
        """
        if period not in PERIODS:
            raise ValueError(f"Unknown period '{period}'")
        all_trades = normalize_trades(all_trades)
        target_date = pd.Timestamp(target_date if target_date is not None else datetime.now())
        score_settings = score_settings if score_settings is not None else self.settings

        period_trades = self.get_trades_for_period(all_trades, period, target_date)
        historical = self.get_historical_trades(all_trades, target_date)

        pattern = calculate_trading_pattern(
            target_date, historical,
            self.settings['thresholds']['lookback_period'],
            self.settings.get('selected_tags'),
            self.dynamic_risk_settings,
        )

        args = (period_trades, pattern, self.settings, all_trades, self.dynamic_risk_settings)
        breakdown = {
            'consistency': calculate_consistency_score(*args),
            'risk_management': calculate_risk_management_score(*args),
            'performance': calculate_performance_score(*args),
            'discipline': calculate_discipline_score(*args),
        }

        weights = self.settings['weights']
        overall = sum(breakdown[c]['score'] * weights[c] for c in COMPONENTS) / 100

        current_score = {c: _nan_to_zero(breakdown[c]['score']) for c in COMPONENTS}
        current_score['overall'] = _nan_to_zero(overall)

        trend = self.calculate_trend(all_trades, period, target_date, now)

        tag_analysis = None
        if len(all_trades) >= MIN_TRADES_FOR_TAG_ANALYSIS:
            tag_analysis = tag_pattern_service.analyze_tag_patterns(all_trades, target_date, score_settings)

        advice = generate_recommendations(breakdown, pattern, tag_analysis)

        return {
            'current_score': current_score,
            'breakdown': breakdown,
            'pattern': pattern,
            'recommendations': advice['recommendations'],
            'strengths': advice['strengths'],
            'weaknesses': advice['weaknesses'],
            'trend': trend,
            'tag_pattern_analysis': tag_analysis,
            'trade_count': len(period_trades),
        }

    def calculate_trend(self, all_trades, period, target_date, now=None):
        """improving / declining / stable versus the previous period; past periods are always stable."""
        try:
            if not self.is_current_period(target_date, period, now):
                return 'stable'

            current = self.get_trades_for_period(all_trades, period, target_date)
            previous = self.get_trades_for_period(all_trades, period, _step_back(target_date, period))
            if len(current) < 2 or len(previous) < 2:
                return 'stable'

            difference = _simple_score(current) - _simple_score(previous)
            if difference > TREND_THRESHOLD:
                return 'improving'
            if difference < -TREND_THRESHOLD:
                return 'declining'
            return 'stable'
        except Exception as e:
            print(f"Error calculating trend: {e}")
            print(traceback.format_exc())
            return 'stable'

    def get_score_history(self, all_trades, period, periods_back=12, score_settings=None,
                          reference_date=None):
        """Scores for the last periods_back periods that had enough trades, oldest first."""
        all_trades = normalize_trades(all_trades)
        reference = pd.Timestamp(reference_date if reference_date is not None else datetime.now())

        if period in ('monthly', 'yearly'):
            min_trades = 1
        else:
            min_trades = self.settings['thresholds']['min_trades_for_score']

        history = []
        for i in range(periods_back):
            target = _step_back(reference, period, i)
            period_trades = self.get_trades_for_period(all_trades, period, target)
            if len(period_trades) < min_trades:
                continue
            analysis = self.calculate_score(all_trades, period, target, score_settings, now=reference)
            history.append({
                'date': target,
                'period': period,
                'metrics': analysis['current_score'],
                'breakdown': analysis['breakdown'],
                'trade_count': len(period_trades),
            })

        history.reverse()
        return history

    def calculate_multi_period_score(self, all_trades, target_date=None, score_settings=None):
        all_trades = normalize_trades(all_trades)
        return {
            period: self.calculate_score(all_trades, period, target_date, score_settings)
            for period in PERIODS
        }

    def get_score_summary(self, all_trades, score_settings=None, reference_date=None):
        """Weekly score, its trend, the weakest component and the first recommendation."""
        analysis = self.calculate_score(all_trades, 'weekly', reference_date, score_settings, now=reference_date)
        scores = analysis['current_score']

        lowest = min(COMPONENTS, key=lambda c: scores[c])
        recommendation = (analysis['recommendations'][0] if analysis['recommendations']
                          else "Keep following your trading plan")

        return {
            'current_weekly': scores,
            'trend': analysis['trend'],
            'key_metric': f"{COMPONENT_LABELS[lowest]}: {scores[lowest]:.0f}%",
            'recommendation': recommendation,
        }


score_service = ScoreService()
