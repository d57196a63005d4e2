# dynamic_risk.py - Risk escalation once an account is in profit, and size normalization
#
# A calendar can raise its per-trade risk (e.g. 1% -> 2%) once cumulative P&L
# reaches a profit threshold (percent of starting balance). Scores compare
# trade sizes, so amounts taken at the raised risk are scaled back to the
# base risk before they are compared.

import math
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import pandas as pd


@dataclass
class DynamicRiskSettings:
    """Risk settings copied from a calendar row"""
    account_balance: float
    risk_per_trade: Optional[float] = None
    dynamic_risk_enabled: bool = False
    increased_risk_percentage: Optional[float] = None
    profit_threshold_percentage: Optional[float] = None

    @classmethod
    def from_calendar(cls, calendar):
        return cls(
            account_balance=float(calendar.get('account_balance') or 0),
            risk_per_trade=calendar.get('risk_per_trade'),
            dynamic_risk_enabled=bool(calendar.get('dynamic_risk_enabled')),
            increased_risk_percentage=calendar.get('increased_risk_percentage'),
            profit_threshold_percentage=calendar.get('profit_threshold_percentage'),
        )

    @property
    def escalation_configured(self):
        return bool(
            self.dynamic_risk_enabled
            and self.increased_risk_percentage
            and self.profit_threshold_percentage
            and self.account_balance > 0
        )


def calculate_cumulative_pnl_to_date(target_date, all_trades):
    """Sum of P&L for trades on days strictly before target_date's day."""
    if all_trades.empty:
        return 0.0
    day_start = pd.Timestamp(target_date).normalize()
    days = pd.to_datetime(all_trades['trade_date']).dt.normalize()
    return float(all_trades.loc[days < day_start, 'amount'].sum())


def calculate_effective_risk_percentage(target_date, all_trades, settings):
    if not settings.risk_per_trade:
        return 0.0
    if not settings.escalation_configured:
        return float(settings.risk_per_trade)

    cumulative_pnl = calculate_cumulative_pnl_to_date(target_date, all_trades)
    profit_pct = cumulative_pnl / settings.account_balance * 100
    if profit_pct >= settings.profit_threshold_percentage:
        return float(settings.increased_risk_percentage)
    return float(settings.risk_per_trade)


def calculate_current_effective_risk_percentage(all_trades, settings):
    """Effective risk after the latest trade day (latest day + 1 includes every trade)."""
    if all_trades.empty:
        return float(settings.risk_per_trade or 0)
    latest = pd.to_datetime(all_trades['trade_date']).max()
    return calculate_effective_risk_percentage(latest + timedelta(days=1), all_trades, settings)


def calculate_current_total_value(account_balance, all_trades):
    total = float(all_trades['amount'].sum()) if not all_trades.empty else 0.0
    return account_balance + total


def calculate_percentage_of_current_value(amount, account_balance, all_trades):
    current = calculate_current_total_value(account_balance, all_trades)
    return amount / current * 100 if current > 0 else 0.0


def calculate_percentage_of_value_at_date(amount, account_balance, all_trades, exclude_after_date):
    """Percent of the account value made up only of trades before exclude_after_date."""
    if all_trades.empty:
        relevant = all_trades
    else:
        cutoff = pd.Timestamp(exclude_after_date)
        relevant = all_trades[pd.to_datetime(all_trades['trade_date']) < cutoff]
    baseline = calculate_current_total_value(account_balance, relevant)
    return amount / baseline * 100 if baseline > 0 else 0.0


def calculate_risk_amount(effective_risk_percentage, account_balance, cumulative_pnl=0.0):
    return (account_balance + cumulative_pnl) * effective_risk_percentage / 100


def calculate_trade_amount(trade_type, risk_to_reward, target_date, all_trades, settings):
    """Dollar P&L implied by a risk multiple: wins earn risk * R:R, losses lose the risk."""
    if trade_type == 'breakeven':
        return 0
    effective_risk = calculate_effective_risk_percentage(target_date, all_trades, settings)
    cumulative_pnl = calculate_cumulative_pnl_to_date(target_date, all_trades)
    risk_amount = calculate_risk_amount(effective_risk, settings.account_balance, cumulative_pnl)
    if trade_type == 'win':
        return _round_half_up(risk_amount * risk_to_reward)
    return -_round_half_up(risk_amount)


def _round_half_up(value):
    return int(math.floor(value + 0.5))


def normalize_trade_amount(trade, all_trades, settings):
    """
    Absolute trade size rescaled to the base risk percentage.

    Trades without a risk/reward, with partials taken, or breakevens keep
    their absolute amount.
    """
    amount = abs(float(trade['amount']))
    rr = trade.get('risk_to_reward')
    if rr is None or pd.isna(rr) or rr == 0 or trade.get('partials_taken') or trade['trade_type'] == 'breakeven':
        return amount

    effective_risk = calculate_effective_risk_percentage(trade['trade_date'], all_trades, settings)
    if effective_risk == 0:
        return amount
    base_risk = settings.risk_per_trade or 1
    return amount * base_risk / effective_risk


def normalized_amounts(trades, all_trades, settings):
    """normalize_trade_amount for every row, aligned to trades' index."""
    if trades.empty:
        return pd.Series(dtype=float)
    return trades.apply(lambda row: normalize_trade_amount(row, all_trades, settings), axis=1).astype(float)


def is_dynamic_risk_active(all_trades, settings):
    if not settings.escalation_configured:
        return False
    current = calculate_current_effective_risk_percentage(all_trades, settings)
    return current == settings.increased_risk_percentage


def calculate_effective_max_daily_drawdown(max_daily_drawdown, all_trades, settings):
    """Scale the daily loss limit by the same ratio the risk was raised."""
    if not is_dynamic_risk_active(all_trades, settings):
        return max_daily_drawdown
    ratio = settings.increased_risk_percentage / (settings.risk_per_trade or 1)
    return max_daily_drawdown * ratio


def get_dynamic_risk_status(all_trades, settings):
    total_pnl = float(all_trades['amount'].sum()) if not all_trades.empty else 0.0
    profit_pct = total_pnl / settings.account_balance * 100 if settings.account_balance > 0 else 0.0
    return {
        'is_active': is_dynamic_risk_active(all_trades, settings),
        'current_risk_percentage': calculate_current_effective_risk_percentage(all_trades, settings),
        'base_risk_percentage': float(settings.risk_per_trade or 0),
        'profit_percentage': profit_pct,
        'threshold_met': profit_pct >= (settings.profit_threshold_percentage or 0),
    }
