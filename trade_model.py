# trade_model.py - Trade/calendar record shapes and shared helpers

import math
import re
import uuid
from datetime import datetime

import numpy as np
import pandas as pd

# ============================================
# CONSTANTS
# ============================================
TRADE_TYPES = ['win', 'loss', 'breakeven']
SESSIONS = ['Asia', 'London', 'NY AM', 'NY PM']

TRADE_COLUMNS = [
    'id', 'calendar_id', 'user_id', 'name', 'amount', 'trade_type', 'trade_date',
    'entry_price', 'exit_price', 'stop_loss', 'take_profit', 'risk_to_reward',
    'partials_taken', 'session', 'notes', 'tags', 'is_pinned',
    'created_at', 'updated_at'
]

NUMERIC_TRADE_COLUMNS = ['amount', 'entry_price', 'exit_price', 'stop_loss', 'take_profit', 'risk_to_reward']

CALENDAR_SETTING_COLUMNS = [
    'name', 'account_balance', 'max_daily_drawdown', 'weekly_target', 'monthly_target',
    'yearly_target', 'risk_per_trade', 'dynamic_risk_enabled', 'increased_risk_percentage',
    'profit_threshold_percentage', 'required_tag_groups', 'tags', 'score_settings'
]

CALENDAR_STAT_COLUMNS = [
    'win_rate', 'profit_factor', 'max_drawdown', 'target_progress', 'pnl_performance',
    'total_trades', 'win_count', 'loss_count', 'total_pnl', 'drawdown_start_date',
    'drawdown_end_date', 'drawdown_recovery_needed', 'drawdown_duration', 'avg_win',
    'avg_loss', 'current_balance', 'weekly_pnl', 'monthly_pnl', 'yearly_pnl',
    'weekly_pnl_percentage', 'monthly_pnl_percentage', 'yearly_pnl_percentage',
    'weekly_progress', 'monthly_progress'
]


# ============================================
# TRADE NORMALIZATION
# ============================================
def new_trade_id():
    return str(uuid.uuid4())


def trade_type_from_amount(amount):
    """Classify a trade by the sign of its P&L."""
    if amount > 0:
        return 'win'
    if amount < 0:
        return 'loss'
    return 'breakeven'


def _clean_tags(value):
    if value is None:
        return []
    if isinstance(value, float) and math.isnan(value):
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(',') if t.strip()]
    if isinstance(value, np.ndarray):
        value = value.tolist()
    return [str(t).strip() for t in value if str(t).strip()]


def _clean_flag(value):
    if value is None:
        return False
    if isinstance(value, float) and math.isnan(value):
        return False
    return bool(value)


def normalize_trades(trades):
    """
    Turn a list of trade dicts (or a DataFrame) into the canonical trade frame.

    Missing columns are added, numbers coerced to float, dates to datetime,
    tags to lists, and a missing trade_type is derived from the amount sign.
    """
    if isinstance(trades, pd.DataFrame):
        df = trades.copy()
    else:
        df = pd.DataFrame(list(trades or []))

    for col in TRADE_COLUMNS:
        if col not in df.columns:
            df[col] = None

    if df.empty:
        df = df.astype({'amount': float})
        df['trade_date'] = pd.to_datetime(df['trade_date'])
        return df[TRADE_COLUMNS + [c for c in df.columns if c not in TRADE_COLUMNS]]

    for col in NUMERIC_TRADE_COLUMNS:
        df[col] = pd.to_numeric(df[col], errors='coerce')
    df['amount'] = df['amount'].fillna(0.0).astype(float)

    df['trade_date'] = pd.to_datetime(df['trade_date'], errors='coerce')
    df['tags'] = df['tags'].apply(_clean_tags)
    df['partials_taken'] = df['partials_taken'].apply(_clean_flag)
    df['is_pinned'] = df['is_pinned'].apply(_clean_flag)

    missing_type = ~df['trade_type'].isin(TRADE_TYPES)
    if missing_type.any():
        df.loc[missing_type, 'trade_type'] = df.loc[missing_type, 'amount'].apply(trade_type_from_amount)

    missing_id = df['id'].isna()
    if missing_id.any():
        df.loc[missing_id, 'id'] = [new_trade_id() for _ in range(missing_id.sum())]

    return df[TRADE_COLUMNS + [c for c in df.columns if c not in TRADE_COLUMNS]]


def sort_trades(df):
    """Chronological order, stable for same-day trades."""
    if df.empty:
        return df
    return df.sort_values('trade_date', kind='mergesort').reset_index(drop=True)


# ============================================
# TAG HELPERS
# ============================================
def is_grouped_tag(tag):
    return ':' in tag


def get_tag_group(tag):
    if not is_grouped_tag(tag):
        return ''
    return tag.split(':')[0]


def get_tag_name(tag):
    if not is_grouped_tag(tag):
        return tag
    parts = tag.split(':')
    return parts[1] if len(parts) > 1 else parts[0]


def get_unique_tag_groups(tags):
    return sorted({get_tag_group(t) for t in tags if is_grouped_tag(t)})


def extract_tags_from_trades(trades):
    """Sorted unique tags used across a trade frame."""
    found = set()
    for tags in trades['tags'] if len(trades) else []:
        found.update(t.strip() for t in tags or [] if t and t.strip())
    return sorted(found)


def _group_name_change(old_tag, new_tag):
    old_group = get_tag_group(old_tag)
    new_group = get_tag_group(new_tag) if new_tag else ''
    if old_group and new_group and old_group != new_group:
        return old_group, new_group
    return None


def update_tags_with_group_name_change(tags, old_tag, new_tag):
    """
    Replace old_tag with new_tag in a tag list.

    An empty new_tag removes old_tag. When the group prefix changes
    ("Setup:A" -> "Entry:A") every tag of the old group moves to the new group.
    """
    new_tag = (new_tag or '').strip()
    tags = list(tags or [])
    change = _group_name_change(old_tag, new_tag)

    if change:
        old_group, new_group = change
        updated = []
        for tag in tags:
            if tag == old_tag:
                if new_tag:
                    updated.append(new_tag)
            elif is_grouped_tag(tag) and get_tag_group(tag) == old_group:
                updated.append(f"{new_group}:{get_tag_name(tag)}")
            else:
                updated.append(tag)
        return updated

    if old_tag in tags:
        idx = tags.index(old_tag)
        if new_tag:
            tags[idx] = new_tag
        else:
            del tags[idx]
    return tags


def update_required_tag_groups(groups, old_tag, new_tag):
    """Follow a group rename in a calendar's required tag groups."""
    groups = list(groups or [])
    change = _group_name_change(old_tag, (new_tag or '').strip())
    if not change:
        return groups
    old_group, new_group = change
    return [new_group if g == old_group else g for g in groups]


def normalize_pair_tags(tags, pair=None):
    """Lower-case the pair group ("Pair:EURUSD" -> "pair:EURUSD") and append a pair value if given."""
    out = []
    for tag in tags or []:
        match = re.match(r'^pair:(.+)$', tag, flags=re.IGNORECASE)
        out.append(f"pair:{match.group(1)}" if match else tag)

    if pair:
        pair_tag = f"pair:{pair}"
        if not any(t.lower() == pair_tag.lower() for t in out):
            out.append(pair_tag)
    return out


# ============================================
# CURRENCY FORMATTING
# ============================================
def format_currency(value):
    """Format as US dollars with two decimals: 1234.5 -> '$1,234.50', -3 -> '-$3.00'."""
    if value is None or (isinstance(value, float) and math.isnan(value)):
        value = 0.0
    sign = '-' if round(value, 2) < 0 else ''
    return f"{sign}${abs(value):,.2f}"


def parse_currency(text):
    """Parse a money string back to float. Accepts $, commas, % and (negative) notation."""
    if text is None:
        return 0.0
    if isinstance(text, (int, float)):
        return 0.0 if (isinstance(text, float) and math.isnan(text)) else float(text)
    s = str(text).strip().replace('$', '').replace(',', '').replace('%', '').replace(' ', '')
    if '(' in s:
        s = '-' + s.replace('(', '').replace(')', '').lstrip('-')
    if s in ['', '-', '+']:
        return 0.0
    return float(s)


def format_pnl(value):
    """Signed two-decimal P&L string as used in exports: 12.5 -> '+12.50'."""
    return f"+{value:.2f}" if value > 0 else f"{value:.2f}"


def to_datetime(value):
    """Accept date, datetime, Timestamp or ISO string; return a naive Timestamp."""
    if value is None:
        return pd.Timestamp(datetime.now())
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts
