# score_utils.py - Trading discipline score components
#
# A baseline "trading pattern" is derived from the lookback window and the
# trades of the scored period are compared against it on four dimensions.
# Each component returns {'score': 0..100, 'factors': {...}}.

import copy
import math
from datetime import timedelta
from typing import Dict, List, Optional

import pandas as pd

from dynamic_risk import DynamicRiskSettings, normalized_amounts
from stats_utils import calculate_profit_factor, calculate_win_rate

DEFAULT_SCORE_SETTINGS = {
    'weights': {
        'consistency': 40,
        'risk_management': 25,
        'performance': 20,
        'discipline': 15,
    },
    'thresholds': {
        'min_trades_for_score': 3,
        'lookback_period': 30,
        'consistency_tolerance': 15,
    },
    'targets': {
        'win_rate': 60,
        'profit_factor': 1.5,
        'max_drawdown': 5,
        'avg_risk_reward': 2.0,
    },
    'selected_tags': [],
    'excluded_tags_from_patterns': [],
}

COMPONENTS = ['consistency', 'risk_management', 'performance', 'discipline']
NEUTRAL = 50.0
GOOD_SCORE = 70


def merge_score_settings(overrides=None):
    """Deep-merge stored calendar settings over the defaults."""
    merged = copy.deepcopy(DEFAULT_SCORE_SETTINGS)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key].update(value)
        else:
            merged[key] = value
    return merged


def _clean(value, default=NEUTRAL):
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return default
    return float(value)


def _js_weekday(dates):
    # Sunday = 0 .. Saturday = 6
    return (pd.to_datetime(dates).dt.dayofweek + 1) % 7


def _has_rr(trades):
    rr = trades['risk_to_reward']
    return rr.notna() & (rr > 0)


def _sizes(trades, all_trades, dynamic_risk_settings):
    """Absolute (or risk-normalized) trade sizes."""
    if dynamic_risk_settings is not None and all_trades is not None:
        return normalized_amounts(trades, all_trades, dynamic_risk_settings)
    return trades['amount'].abs().astype(float)


def _signed_or_normalized(trades, all_trades, dynamic_risk_settings):
    if dynamic_risk_settings is not None and all_trades is not None:
        return normalized_amounts(trades, all_trades, dynamic_risk_settings)
    return trades['amount'].astype(float)


def _peak_drawdown(amounts, min_peak=None):
    """Max drawdown of a running P&L. min_peak=1 divides by max(peak, 1); otherwise skip until peak > 0."""
    max_dd = 0.0
    peak = 0.0
    running = 0.0
    for amount in amounts:
        running += amount
        if running > peak:
            peak = running
        if min_peak is not None:
            drawdown = (peak - running) / max(peak, min_peak) * 100
        else:
            drawdown = (peak - running) / peak * 100 if peak > 0 else 0.0
        if drawdown > max_dd:
            max_dd = drawdown
    return max_dd


def _mean(values):
    return float(sum(values)) / len(values) if len(values) else 0.0


def _std(values, mean):
    if not len(values):
        return 0.0
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


# ============================================
# RECOMMENDED SCORE
# ============================================
def calculate_recommended_score(settings):
    """Target overall score implied by the user's targets, clamped to 50..90."""
    targets = settings['targets']
    weights = settings['weights']

    consistency_target = 75
    risk_target = min(85,
                      targets['win_rate'] / 60 * 75 +
                      min(10, targets['avg_risk_reward'] / 2.0 * 10))
    performance_target = min(80,
                             min(60, targets['profit_factor'] / 1.5 * 60) +
                             min(20, targets['win_rate'] / 60 * 20))
    discipline_target = 70

    recommended = (
        consistency_target * weights['consistency'] +
        risk_target * weights['risk_management'] +
        performance_target * weights['performance'] +
        discipline_target * weights['discipline']
    ) / 100
    return max(50, min(90, recommended))


# ============================================
# TRADING PATTERN (BASELINE)
# ============================================
def empty_pattern():
    return {
        'preferred_sessions': [],
        'common_tags': [],
        'avg_trades_per_day': 0.0,
        'avg_trades_per_week': 0.0,
        'avg_position_size': 0.0,
        'avg_risk_reward': 0.0,
        'win_rate': 0.0,
        'profit_factor': 0.0,
        'max_drawdown': 0.0,
        'trading_days': [],
    }


def calculate_trading_pattern(target_date, trades, lookback_days=30,
                              selected_tags: Optional[List[str]] = None,
                              dynamic_risk_settings: Optional[DynamicRiskSettings] = None) -> Dict:
    """
    Behavioural baseline from trades on or after target_date - lookback_days.

    Args:
        target_date: end of the baseline window
        trades: trade frame (the lookback candidates; also the history used for risk normalization)
        lookback_days: window length, also the divisor for trades per day
        selected_tags: when non-empty, only these tags count towards common_tags
        dynamic_risk_settings: normalize sizes to the base risk when given

    Returns:
        dict with preferred_sessions (top 2), common_tags (top 5), avg_trades_per_day,
        avg_trades_per_week, avg_position_size, avg_risk_reward, win_rate,
        profit_factor, max_drawdown and trading_days (weekday numbers, Sunday = 0)
    """
    if trades.empty:
        return empty_pattern()

    cutoff = pd.Timestamp(target_date) - timedelta(days=lookback_days)
    recent = trades[pd.to_datetime(trades['trade_date']) >= cutoff]

    session_counts = recent['session'].dropna()
    session_counts = session_counts[session_counts != ''].value_counts()
    preferred_sessions = list(session_counts.index[:2])

    tag_counts = {}
    for tags in recent['tags']:
        for tag in tags or []:
            if not selected_tags or tag in selected_tags:
                tag_counts[tag] = tag_counts.get(tag, 0) + 1
    common_tags = [t for t, _ in sorted(tag_counts.items(), key=lambda kv: -kv[1])[:5]]

    avg_trades_per_day = len(recent) / lookback_days if lookback_days else 0.0
    avg_trades_per_week = avg_trades_per_day * 7

    if recent.empty:
        avg_position_size = 0.0
    elif dynamic_risk_settings is not None:
        avg_position_size = _mean(list(normalized_amounts(recent, trades, dynamic_risk_settings)))
    else:
        avg_position_size = abs(float(recent['amount'].sum())) / len(recent)

    rr = recent.loc[_has_rr(recent), 'risk_to_reward']
    avg_risk_reward = float(rr.mean()) if len(rr) else 0.0

    win_rate = calculate_win_rate(recent)
    amounts = _signed_or_normalized(recent, trades if dynamic_risk_settings is not None else None,
                                    dynamic_risk_settings)
    profit_factor = calculate_profit_factor(recent, amounts if dynamic_risk_settings is not None else None)
    max_drawdown = _peak_drawdown(list(amounts), min_peak=1)

    trading_days = []
    if not recent.empty:
        day_counts = _js_weekday(recent['trade_date']).value_counts()
        trading_days = sorted(int(day) for day, count in day_counts.items()
                              if count >= avg_trades_per_day * 0.5)

    return {
        'preferred_sessions': preferred_sessions,
        'common_tags': common_tags,
        'avg_trades_per_day': avg_trades_per_day,
        'avg_trades_per_week': avg_trades_per_week,
        'avg_position_size': avg_position_size,
        'avg_risk_reward': avg_risk_reward,
        'win_rate': win_rate,
        'profit_factor': profit_factor,
        'max_drawdown': max_drawdown,
        'trading_days': trading_days,
    }


# ============================================
# SCORE COMPONENTS
# ============================================
def _below_minimum(trades, settings, factor_names):
    if len(trades) < settings['thresholds']['min_trades_for_score']:
        return {'score': 0.0, 'factors': {name: 0.0 for name in factor_names}}
    return None


def _finish(factors):
    factors = {k: _clean(v) for k, v in factors.items()}
    score = sum(factors.values()) / len(factors)
    return {'score': _clean(score, 0.0), 'factors': factors}


def _session_mask(trades):
    return trades['session'].notna() & (trades['session'] != '')


def _tag_mask(trades):
    return trades['tags'].apply(lambda t: bool(t))


def calculate_consistency_score(trades, pattern, settings, all_trades=None, dynamic_risk_settings=None):
    """Adherence to preferred sessions, common tags, usual weekdays and usual size."""
    names = ['session_consistency', 'tag_consistency', 'timing_consistency', 'size_consistency']
    early = _below_minimum(trades, settings, names)
    if early:
        return early

    with_session = trades[_session_mask(trades)]
    if len(with_session) and pattern['preferred_sessions']:
        matched = with_session['session'].isin(pattern['preferred_sessions']).sum()
        session_consistency = matched / len(with_session) * 100
    else:
        session_consistency = NEUTRAL

    with_tags = trades[_tag_mask(trades)]
    if len(with_tags) and pattern['common_tags']:
        common = set(pattern['common_tags'])
        matched = with_tags['tags'].apply(lambda t: any(tag in common for tag in t)).sum()
        tag_consistency = matched / len(with_tags) * 100
    else:
        tag_consistency = NEUTRAL

    if len(trades) and pattern['trading_days']:
        on_usual_days = _js_weekday(trades['trade_date']).isin(pattern['trading_days']).sum()
        timing_consistency = on_usual_days / len(trades) * 100
    else:
        timing_consistency = NEUTRAL

    if dynamic_risk_settings is not None and all_trades is not None:
        avg_size = _mean(list(normalized_amounts(trades, all_trades, dynamic_risk_settings)))
    else:
        avg_size = abs(float(trades['amount'].sum())) / len(trades)
    if pattern['avg_position_size'] > 0:
        deviation = abs(avg_size - pattern['avg_position_size']) / pattern['avg_position_size']
    else:
        deviation = 0.0
    size_consistency = max(0.0, 100 - deviation * 100)

    return _finish({
        'session_consistency': session_consistency,
        'tag_consistency': tag_consistency,
        'timing_consistency': timing_consistency,
        'size_consistency': size_consistency,
    })


def calculate_risk_management_score(trades, pattern, settings, all_trades=None, dynamic_risk_settings=None):
    """Risk/reward vs target, sizing spread, drawdown vs target, and win/loss size ratio."""
    names = ['risk_reward_ratio', 'position_sizing', 'max_drawdown_adherence', 'stop_loss_usage']
    early = _below_minimum(trades, settings, names)
    if early:
        return early
    targets = settings['targets']

    rr = trades.loc[_has_rr(trades), 'risk_to_reward']
    avg_rr = float(rr.mean()) if len(rr) else 0.0
    if targets['avg_risk_reward'] > 0:
        rr_deviation = abs(avg_rr - targets['avg_risk_reward']) / targets['avg_risk_reward']
    else:
        rr_deviation = 0.0
    risk_reward_ratio = max(0.0, 100 - rr_deviation * 100) if avg_rr > 0 else NEUTRAL

    sizes = list(_sizes(trades, all_trades, dynamic_risk_settings))
    avg_size = _mean(sizes)
    position_sizing = max(0.0, 100 - _std(sizes, avg_size) / avg_size * 100) if avg_size > 0 else NEUTRAL

    amounts = list(_signed_or_normalized(trades, all_trades, dynamic_risk_settings))
    max_dd = _peak_drawdown(amounts)
    if max_dd <= targets['max_drawdown']:
        max_drawdown_adherence = 100.0
    else:
        max_drawdown_adherence = max(0.0, 100 - (max_dd - targets['max_drawdown']) * 10)

    normalized = dynamic_risk_settings is not None and all_trades is not None
    losses = trades[trades['trade_type'] == 'loss']
    wins = trades[trades['trade_type'] == 'win']
    if len(losses):
        loss_values = normalized_amounts(losses, all_trades, dynamic_risk_settings) if normalized else losses['amount']
        avg_loss = abs(float(loss_values.sum())) / len(losses)
    else:
        avg_loss = 0.0
    if len(wins):
        win_values = normalized_amounts(wins, all_trades, dynamic_risk_settings) if normalized else wins['amount']
        avg_win = float(win_values.sum()) / len(wins)
    else:
        avg_win = 0.0
    stop_loss_usage = min(100.0, avg_win / avg_loss * 50) if avg_win > 0 and avg_loss > 0 else NEUTRAL

    return _finish({
        'risk_reward_ratio': risk_reward_ratio,
        'position_sizing': position_sizing,
        'max_drawdown_adherence': max_drawdown_adherence,
        'stop_loss_usage': stop_loss_usage,
    })


def calculate_performance_score(trades, pattern, settings, all_trades=None, dynamic_risk_settings=None):
    """How closely the period's results track the baseline's win rate, profit factor and drawdown."""
    names = ['win_rate_consistency', 'profit_factor_stability', 'returns_consistency', 'volatility_control']
    early = _below_minimum(trades, settings, names)
    if early:
        return early

    normalized = dynamic_risk_settings is not None and all_trades is not None
    amounts = _signed_or_normalized(trades, all_trades, dynamic_risk_settings)

    current_win_rate = calculate_win_rate(trades)
    current_pf = calculate_profit_factor(trades, amounts if normalized else None)

    if pattern['win_rate'] > 0:
        deviation = abs(current_win_rate - pattern['win_rate']) / pattern['win_rate']
        win_rate_consistency = max(0.0, 100 - deviation * 100)
    else:
        win_rate_consistency = NEUTRAL

    if pattern['profit_factor'] > 0:
        deviation = abs(current_pf - pattern['profit_factor']) / pattern['profit_factor']
        profit_factor_stability = max(0.0, 100 - deviation * 100)
    else:
        profit_factor_stability = NEUTRAL

    returns = list(amounts)
    avg_return = _mean(returns)
    if abs(avg_return) > 0:
        returns_consistency = max(0.0, 100 - _std(returns, avg_return) / abs(avg_return) * 50)
    else:
        returns_consistency = NEUTRAL

    max_dd = _peak_drawdown(returns)
    if pattern['max_drawdown'] > 0 and max_dd <= pattern['max_drawdown'] * 1.2:
        volatility_control = 100.0
    elif pattern['max_drawdown'] > 0:
        volatility_control = max(0.0, 100 - (max_dd - pattern['max_drawdown']) * 5)
    else:
        volatility_control = NEUTRAL

    return _finish({
        'win_rate_consistency': win_rate_consistency,
        'profit_factor_stability': profit_factor_stability,
        'returns_consistency': returns_consistency,
        'volatility_control': volatility_control,
    })


def calculate_discipline_score(trades, pattern, settings, all_trades=None, dynamic_risk_settings=None):
    """Plan adherence, size stability, trade frequency and journal completeness."""
    names = ['trading_plan_adherence', 'emotional_control', 'overtrading', 'rule_following']
    early = _below_minimum(trades, settings, names)
    if early:
        return early

    session_mask = _session_mask(trades)
    with_session = int(session_mask.sum())
    if with_session and pattern['preferred_sessions']:
        matched = (session_mask & trades['session'].isin(pattern['preferred_sessions'])).sum()
        session_adherence = matched / with_session * 100
    else:
        session_adherence = NEUTRAL

    tag_mask = _tag_mask(trades)
    with_tags = int(tag_mask.sum())
    if with_tags and pattern['common_tags']:
        common = set(pattern['common_tags'])
        matched = trades['tags'].apply(lambda t: any(tag in common for tag in t)).sum()
        tag_adherence = matched / with_tags * 100
    else:
        tag_adherence = NEUTRAL

    trading_plan_adherence = (session_adherence + tag_adherence) / 2

    sizes = list(_sizes(trades, all_trades, dynamic_risk_settings))
    avg_size = _mean(sizes)
    coeff_var = _std(sizes, avg_size) / avg_size if avg_size > 0 else 0.0
    emotional_control = max(0.0, 100 - coeff_var * 200)

    current_frequency = len(trades) / 30
    expected = pattern['avg_trades_per_day']
    ratio = current_frequency / expected if expected > 0 else current_frequency / 0.1
    overtrading = 100.0 if ratio <= 1.5 else max(0.0, 100 - (ratio - 1.5) * 50)

    complete = session_mask & tag_mask & (_has_rr(trades) | (trades['trade_type'] == 'breakeven'))
    rule_following = complete.sum() / len(trades) * 100

    return _finish({
        'trading_plan_adherence': trading_plan_adherence,
        'emotional_control': emotional_control,
        'overtrading': overtrading,
        'rule_following': rule_following,
    })


# ============================================
# RECOMMENDATIONS
# ============================================
def generate_recommendations(breakdown, pattern, tag_pattern_analysis=None):
    """
    Turn weak components (< 70) into advice.

    Returns:
        dict with recommendations, strengths, weaknesses (lists of str)
    """
    recommendations = []
    strengths = []
    weaknesses = []

    consistency = breakdown['consistency']
    if consistency['score'] < GOOD_SCORE:
        if consistency['factors']['session_consistency'] < GOOD_SCORE:
            recommendations.append("Focus on trading during your most profitable sessions")
            weaknesses.append("Inconsistent session timing")
        if consistency['factors']['tag_consistency'] < GOOD_SCORE:
            recommendations.append("Stick to your proven trading strategies and setups")
            weaknesses.append("Deviating from successful patterns")
    else:
        strengths.append("Consistent trading approach")

    risk = breakdown['risk_management']
    if risk['score'] < GOOD_SCORE:
        if risk['factors']['max_drawdown_adherence'] < GOOD_SCORE:
            recommendations.append("Reduce position sizes to control drawdown")
            weaknesses.append("Excessive drawdown risk")
        if risk['factors']['risk_reward_ratio'] < GOOD_SCORE:
            recommendations.append("Improve risk/reward ratios on your trades")
            weaknesses.append("Poor risk/reward management")
    else:
        strengths.append("Strong risk management")

    performance = breakdown['performance']
    if performance['score'] < GOOD_SCORE:
        if performance['factors']['win_rate_consistency'] < GOOD_SCORE:
            recommendations.append("Focus on quality setups to maintain win rate")
            weaknesses.append("Declining win rate")
    else:
        strengths.append("Consistent performance")

    discipline = breakdown['discipline']
    if discipline['score'] < GOOD_SCORE:
        if discipline['factors']['overtrading'] < GOOD_SCORE:
            recommendations.append("Reduce trading frequency and focus on quality")
            weaknesses.append("Overtrading detected")
        if discipline['factors']['emotional_control'] < GOOD_SCORE:
            recommendations.append("Work on emotional control and position sizing")
            weaknesses.append("Emotional trading patterns")
    else:
        strengths.append("Good trading discipline")

    if tag_pattern_analysis and tag_pattern_analysis.get('insights'):
        for insight in tag_pattern_analysis['insights'][:2]:
            combo = ' + '.join(insight['tag_combination'])
            if insight['type'] == 'high_performance':
                recommendations.append(f'Focus on "{combo}" pattern ({insight["win_rate"]:.1f}% win rate)')
                strengths.append(f"Strong performance with {combo} combination")
            elif insight['type'] == 'declining_pattern':
                recommendations.append(f'Review "{combo}" strategy - performance declining')
                weaknesses.append(f"Declining performance in {combo} trades")

    return {'recommendations': recommendations, 'strengths': strengths, 'weaknesses': weaknesses}
