# stats_utils.py - Trade statistics and calendar summary numbers

from datetime import datetime, timedelta

import pandas as pd

from trade_model import normalize_trades

PROFIT_FACTOR_NO_LOSS = 999
PROFIT_FACTOR_CAP = 9999.9999
PERCENT_CAP = 999.99


# ============================================
# CORE RATIOS
# ============================================
def calculate_total_pnl(trades):
    if trades.empty:
        return 0.0
    return float(trades['amount'].sum())


def calculate_win_rate(trades):
    """Percentage of trades marked as wins (breakevens count in the denominator)."""
    if trades.empty:
        return 0.0
    wins = (trades['trade_type'] == 'win').sum()
    return float(wins) / len(trades) * 100


def calculate_profit_factor(trades, amounts=None):
    """
    Gross profit / gross loss.

    Args:
        trades: trade frame
        amounts: optional Series replacing trades['amount'] (normalized sizes)

    Returns:
        float: 999 when there are profits but no losses, 0 when there is neither
    """
    amt = trades['amount'] if amounts is None else pd.Series(amounts, dtype=float)
    if len(amt) == 0:
        return 0.0
    gross_profit = float(amt[amt > 0].sum())
    gross_loss = abs(float(amt[amt < 0].sum()))
    if gross_loss == 0:
        return float(PROFIT_FACTOR_NO_LOSS) if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def calculate_averages(trades):
    """Average winning amount and average absolute losing amount (by trade_type)."""
    if trades.empty:
        return {'avg_win': 0.0, 'avg_loss': 0.0}
    wins = trades.loc[trades['trade_type'] == 'win', 'amount']
    losses = trades.loc[trades['trade_type'] == 'loss', 'amount']
    avg_win = float(wins.mean()) if len(wins) else 0.0
    avg_loss = abs(float(losses.sum())) / len(losses) if len(losses) else 0.0
    return {'avg_win': avg_win, 'avg_loss': avg_loss}


def _running_drawdown(trades, starting_balance=0.0, peak_from_first_trade=False):
    """
    Walk trades in date order tracking peak balance and the deepest drop from it.

    With peak_from_first_trade the peak only ever holds post-trade balances,
    so the balance after the first trade is the first peak.
    """
    result = {
        'max_drawdown': 0.0,
        'drawdown_start_date': None,
        'drawdown_end_date': None,
        'drawdown_recovery_needed': 0.0,
        'drawdown_duration': 0,
    }
    if trades.empty:
        return result

    ordered = trades.sort_values('trade_date', kind='mergesort').reset_index(drop=True)

    balance = starting_balance
    peak = None if peak_from_first_trade else starting_balance
    current_start = None
    max_dd = 0.0

    for pos, row in ordered.iterrows():
        balance += row['amount']
        if peak is None or balance > peak:
            peak = balance
            current_start = None
        elif peak > 0:
            drawdown = (peak - balance) / peak * 100
            if drawdown > max_dd:
                max_dd = drawdown
                start = current_start if current_start is not None else pos
                result['drawdown_start_date'] = ordered.at[start, 'trade_date']
                result['drawdown_end_date'] = row['trade_date']
                result['drawdown_duration'] = pos - start + 1
            if current_start is None:
                current_start = pos

    result['max_drawdown'] = max_dd
    if 0 < max_dd < 100:
        result['drawdown_recovery_needed'] = max_dd / (100 - max_dd) * 100
    return result


def calculate_max_drawdown(trades):
    """
    Maximum peak-to-trough drop of cumulative P&L, as a percent of the peak.

    Returns:
        dict: max_drawdown, drawdown_start_date, drawdown_end_date,
              drawdown_recovery_needed, drawdown_duration (number of trades)
    """
    return _running_drawdown(trades, starting_balance=0.0)


def calculate_target_progress(trades, account_balance, target):
    """Progress towards a percent-of-balance target, clamped to 0..100."""
    if not target or target <= 0 or not account_balance:
        return 0.0
    target_amount = target / 100 * account_balance
    progress = calculate_total_pnl(trades) / target_amount * 100
    return min(max(progress, 0.0), 100.0)


def calculate_streaks(trades):
    """
    Win/loss streak bookkeeping in date order.

    Returns:
        dict: current_streak (positive wins, negative losses),
              longest_win_streak, longest_loss_streak
    """
    current = 0
    longest_win = 0
    longest_loss = 0
    if not trades.empty:
        ordered = trades.sort_values('trade_date', kind='mergesort')
        for trade_type in ordered['trade_type']:
            if trade_type == 'win':
                current = current + 1 if current > 0 else 1
                longest_win = max(longest_win, current)
            elif trade_type == 'loss':
                current = current - 1 if current < 0 else -1
                longest_loss = max(longest_loss, -current)
            else:
                current = 0
    return {
        'current_streak': current,
        'longest_win_streak': longest_win,
        'longest_loss_streak': longest_loss,
    }


# ============================================
# DATE / TAG FILTERS
# ============================================
def _dates(trades):
    return pd.to_datetime(trades['trade_date'])


def filter_trades_by_date_range(trades, start_date, end_date):
    """Trades between the start of start_date and the start of end_date (inclusive)."""
    start = pd.Timestamp(start_date).normalize()
    end = pd.Timestamp(end_date).normalize()
    d = _dates(trades)
    return trades[(d >= start) & (d <= end)]


def filter_trades_by_day(trades, date):
    target = pd.Timestamp(date).normalize()
    return trades[_dates(trades).dt.normalize() == target]


def week_start(date, week_starts_on=0):
    """Start of the week containing date. week_starts_on: 0 = Sunday, 1 = Monday."""
    ts = pd.Timestamp(date).normalize()
    # pandas weekday: Monday=0 .. Sunday=6
    js_day = (ts.weekday() + 1) % 7
    offset = (js_day - week_starts_on) % 7
    return ts - timedelta(days=offset)


def filter_trades_by_week(trades, date, week_starts_on=1):
    start = week_start(date, week_starts_on)
    end = start + timedelta(days=7)
    d = _dates(trades)
    return trades[(d >= start) & (d < end)]


def filter_trades_by_month(trades, date):
    ts = pd.Timestamp(date)
    d = _dates(trades)
    return trades[(d.dt.year == ts.year) & (d.dt.month == ts.month)]


def filter_trades_by_year(trades, date):
    ts = pd.Timestamp(date)
    return trades[_dates(trades).dt.year == ts.year]


def filter_trades_by_tags(trades, tags):
    """Trades carrying at least one of tags. An empty tag list keeps everything."""
    if not tags:
        return trades
    wanted = set(tags)
    mask = trades['tags'].apply(lambda t: bool(t) and any(tag in wanted for tag in t))
    return trades[mask]


# ============================================
# CALENDAR STATISTICS
# ============================================
def _pct(value, base):
    if not base or base <= 0:
        return 0.0
    return min(value / base * 100, PERCENT_CAP)


def calculate_calendar_stats(calendar, trades, today=None):
    """
    Compute every calculated column stored on a calendar row.

    Args:
        calendar: dict with account_balance and optional weekly/monthly/yearly targets
        trades: trade frame (or list of dicts) for the calendar
        today: reference date for period P&L (defaults to now)

    Returns:
        dict keyed by the calendar stat column names
    """
    trades = normalize_trades(trades)
    today = pd.Timestamp(today if today is not None else datetime.now()).normalize()
    account_balance = float(calendar.get('account_balance') or 0)

    total_trades = len(trades)
    amounts = trades['amount']
    win_count = int((amounts > 0).sum())
    loss_count = int((amounts < 0).sum())
    total_pnl = float(amounts.sum()) if total_trades else 0.0

    win_rate = win_count / total_trades * 100 if total_trades else 0.0
    avg_win = float(amounts[amounts > 0].mean()) if win_count else 0.0
    avg_loss = abs(float(amounts[amounts < 0].mean())) if loss_count else 0.0

    profit_factor = calculate_profit_factor(trades)
    if profit_factor != PROFIT_FACTOR_NO_LOSS:
        profit_factor = min(profit_factor, PROFIT_FACTOR_CAP)

    d = _dates(trades)
    weekly_pnl = float(amounts[d >= week_start(today, 1)].sum()) if total_trades else 0.0
    monthly_pnl = float(amounts[d >= today.replace(day=1)].sum()) if total_trades else 0.0
    yearly_pnl = float(amounts[d >= today.replace(month=1, day=1)].sum()) if total_trades else 0.0

    def target_amount(key):
        pct = calendar.get(key)
        if pct is None or pct <= 0:
            return None
        return pct / 100 * account_balance

    weekly_target = target_amount('weekly_target')
    monthly_target = target_amount('monthly_target')
    yearly_target = target_amount('yearly_target')

    drawdown = _running_drawdown(trades, starting_balance=account_balance, peak_from_first_trade=True)

    return {
        'total_trades': total_trades,
        'win_count': win_count,
        'loss_count': loss_count,
        'total_pnl': total_pnl,
        'win_rate': win_rate,
        'avg_win': avg_win,
        'avg_loss': avg_loss,
        'profit_factor': profit_factor,
        'current_balance': account_balance + total_pnl,
        'pnl_performance': _pct(total_pnl, account_balance),
        'weekly_pnl': weekly_pnl,
        'monthly_pnl': monthly_pnl,
        'yearly_pnl': yearly_pnl,
        'weekly_pnl_percentage': _pct(weekly_pnl, account_balance),
        'monthly_pnl_percentage': _pct(monthly_pnl, account_balance),
        'yearly_pnl_percentage': _pct(yearly_pnl, account_balance),
        'weekly_progress': _pct(weekly_pnl, weekly_target),
        'monthly_progress': _pct(monthly_pnl, monthly_target),
        'target_progress': _pct(yearly_pnl, yearly_target),
        'max_drawdown': min(drawdown['max_drawdown'], PERCENT_CAP),
        'drawdown_start_date': drawdown['drawdown_start_date'],
        'drawdown_end_date': drawdown['drawdown_end_date'],
        'drawdown_recovery_needed': drawdown['drawdown_recovery_needed'],
        'drawdown_duration': drawdown['drawdown_duration'],
    }
