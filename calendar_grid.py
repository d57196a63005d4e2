# calendar_grid.py - Month grid, weekly and monthly summaries for the trade calendar page

import calendar as pycalendar
from datetime import date, timedelta

import pandas as pd

from dynamic_risk import (
    DynamicRiskSettings,
    calculate_effective_max_daily_drawdown,
    calculate_percentage_of_value_at_date,
)
from stats_utils import calculate_target_progress, calculate_streaks, week_start


def _day_key(trades):
    return pd.to_datetime(trades['trade_date']).dt.normalize()


def build_month_grid(trades, year, month):
    """
    Sunday-first weeks covering the month.

    Returns:
        list of weeks; each week is a list of 7 day dicts with date,
        in_month, pnl, trade_count, is_win, is_loss
    """
    first = date(year, month, 1)
    last = date(year, month, pycalendar.monthrange(year, month)[1])
    start = week_start(first, 0).date()
    end = week_start(last, 0).date() + timedelta(days=6)

    if trades.empty:
        daily = pd.Series(dtype=float)
        counts = pd.Series(dtype=int)
    else:
        keys = _day_key(trades)
        daily = trades.groupby(keys)['amount'].sum()
        counts = trades.groupby(keys).size()

    weeks = []
    day = start
    while day <= end:
        week = []
        for _ in range(7):
            ts = pd.Timestamp(day)
            pnl = float(daily.get(ts, 0.0))
            week.append({
                'date': day,
                'in_month': day.month == month,
                'pnl': pnl,
                'trade_count': int(counts.get(ts, 0)),
                'is_win': pnl > 0,
                'is_loss': pnl < 0,
            })
            day += timedelta(days=1)
        weeks.append(week)
    return weeks


def calculate_weekly_stats(trades, year, month, account_balance, weekly_target=None):
    """Per grid week: P&L of that week's in-month trades, win rate and growth vs value at week start."""
    rows = []
    for index, week in enumerate(build_month_grid(trades, year, month)):
        start = pd.Timestamp(week[0]['date'])
        end = start + timedelta(days=7)
        if trades.empty:
            week_trades = trades
        else:
            dates = pd.to_datetime(trades['trade_date'])
            week_trades = trades[(dates >= start) & (dates < end) & (dates.dt.month == month)]

        net = float(week_trades['amount'].sum()) if len(week_trades) else 0.0
        wins = int((week_trades['trade_type'] == 'win').sum()) if len(week_trades) else 0
        percentage = calculate_percentage_of_value_at_date(net, account_balance, trades, start)
        progress = 0.0
        if weekly_target and weekly_target > 0:
            progress = calculate_target_progress(week_trades, account_balance, weekly_target)

        rows.append({
            'week': index + 1,
            'week_start': start,
            'pnl': net,
            'trade_count': len(week_trades),
            'win_rate': wins / len(week_trades) * 100 if len(week_trades) else 0.0,
            'pnl_percentage': percentage,
            'target_progress': progress,
            'target_met': bool(weekly_target) and percentage >= weekly_target,
        })
    return pd.DataFrame(rows)


def calculate_monthly_stats(trades, year, month, account_balance, monthly_target=None):
    """Totals for the month plus best/worst day and growth vs the account value at month start."""
    month_start = pd.Timestamp(year=year, month=month, day=1)
    if trades.empty:
        month_trades = trades
    else:
        dates = pd.to_datetime(trades['trade_date'])
        month_trades = trades[(dates.dt.year == year) & (dates.dt.month == month)]

    n = len(month_trades)
    net = float(month_trades['amount'].sum()) if n else 0.0
    wins = month_trades[month_trades['trade_type'] == 'win']
    losses = month_trades[month_trades['trade_type'] == 'loss']
    total_win = float(wins['amount'].sum()) if len(wins) else 0.0
    total_loss = abs(float(losses['amount'].sum())) if len(losses) else 0.0

    if total_loss > 0:
        profit_factor = total_win / total_loss
    else:
        profit_factor = float('inf') if total_win > 0 else 0.0

    best_day = worst_day = 0.0
    best_day_date = worst_day_date = None
    trading_days = 0
    if n:
        daily = month_trades.groupby(_day_key(month_trades))['amount'].sum()
        trading_days = len(daily)
        best_day_date = daily.idxmax()
        worst_day_date = daily.idxmin()
        best_day = float(daily.max())
        worst_day = float(daily.min())

    growth = calculate_percentage_of_value_at_date(net, account_balance, trades, month_start)
    if trades.empty:
        value_at_start = account_balance
    else:
        before = trades[pd.to_datetime(trades['trade_date']) < month_start]
        value_at_start = account_balance + float(before['amount'].sum())

    progress = 0.0
    if monthly_target and monthly_target > 0:
        progress = calculate_target_progress(month_trades, account_balance, monthly_target)

    return {
        'total_pnl': net,
        'trade_count': n,
        'win_count': len(wins),
        'loss_count': len(losses),
        'win_rate': len(wins) / n * 100 if n else 0.0,
        'profit_factor': profit_factor,
        'avg_win': total_win / len(wins) if len(wins) else 0.0,
        'avg_loss': total_loss / len(losses) if len(losses) else 0.0,
        'best_day': best_day,
        'best_day_date': best_day_date,
        'worst_day': worst_day,
        'worst_day_date': worst_day_date,
        'trading_days': trading_days,
        'growth_percentage': growth,
        'account_value_at_start': value_at_start,
        'target_progress': progress,
        'target_met': bool(monthly_target) and growth >= monthly_target,
        'streaks': calculate_streaks(month_trades),
    }


def check_daily_drawdown_violation(day, day_pnl, calendar, trades):
    """True when a losing day exceeds the (possibly escalated) max daily drawdown."""
    if day_pnl >= 0 or not calendar.get('max_daily_drawdown'):
        return False
    settings = DynamicRiskSettings.from_calendar(calendar)
    limit = calculate_effective_max_daily_drawdown(float(calendar['max_daily_drawdown']), trades, settings)
    loss_pct = abs(calculate_percentage_of_value_at_date(day_pnl, settings.account_balance, trades,
                                                         pd.Timestamp(day).normalize()))
    return loss_pct > limit
