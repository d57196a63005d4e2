# db_layer.py - PostgreSQL abstraction layer for the trading journal

import os
import traceback
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal

import numpy as np
import pandas as pd
import psycopg2
import streamlit as st
from psycopg2.extras import Json, RealDictCursor, execute_values

from stats_utils import calculate_calendar_stats
from trade_model import (
    CALENDAR_SETTING_COLUMNS,
    CALENDAR_STAT_COLUMNS,
    extract_tags_from_trades,
    new_trade_id,
    normalize_pair_tags,
    normalize_trades,
    update_required_tag_groups,
    update_tags_with_group_name_change,
)

TRASH_RETENTION_DAYS = 30
ERROR_LOG = '/tmp/db_layer_error.log'

TRADE_WRITE_COLUMNS = [
    'name', 'amount', 'trade_type', 'trade_date', 'entry_price', 'exit_price',
    'stop_loss', 'take_profit', 'risk_to_reward', 'partials_taken', 'session',
    'notes', 'tags', 'is_pinned'
]


# ============================================
# CONNECTION CONFIGURATION
# ============================================
def get_db_config():
    """
    Load database configuration from environment or defaults.
    Priority:
      1. Streamlit secrets (for Streamlit Cloud)
      2. Environment variables
      3. Local defaults (for development)
    """
    if hasattr(st, 'secrets') and 'database' in st.secrets:
        return {'dsn': st.secrets['database']['url']}

    if os.getenv('DATABASE_URL'):
        return {'dsn': os.getenv('DATABASE_URL')}

    return {
        'host': os.getenv('DB_HOST', 'localhost'),
        'port': int(os.getenv('DB_PORT', 5432)),
        'database': os.getenv('DB_NAME', 'trading_journal'),
        'user': os.getenv('DB_USER', os.getenv('USER', 'postgres')),
        'password': os.getenv('DB_PASSWORD', '')
    }


@contextmanager
def get_db_connection():
    """
    Context manager for database connections.
    Ensures connections are properly closed.
    """
    config = get_db_config()
    conn = None
    try:
        if 'dsn' in config:
            conn = psycopg2.connect(config['dsn'])
        else:
            conn = psycopg2.connect(**config)
        yield conn
    except psycopg2.OperationalError as e:
        print(f"Database connection error: {e}")
        raise
    finally:
        if conn:
            conn.close()


# ============================================
# HELPERS
# ============================================
def _log_error(context):
    error_msg = f"ERROR in {context}:\n{traceback.format_exc()}"
    print(error_msg)
    with open(ERROR_LOG, 'a') as f:
        f.write(f"\n{'='*60}\n{error_msg}\n")


def clean_value(val):
    """NaN/NaT -> None, numpy scalars -> python, Timestamps -> datetime, dicts -> Json."""
    if isinstance(val, (list, tuple)):
        return [clean_value(v) for v in val]
    if isinstance(val, np.ndarray):
        return [clean_value(v) for v in val.tolist()]
    if isinstance(val, dict):
        return Json(val)
    if val is None or val is pd.NaT:
        return None
    if isinstance(val, Decimal):
        return float(val)
    if isinstance(val, pd.Timestamp):
        return None if pd.isna(val) else val.to_pydatetime()
    if isinstance(val, np.generic):
        val = val.item()
    if isinstance(val, float) and np.isnan(val):
        return None
    return val


def _frame_from_cursor(cur, context):
    """Fetch all rows into a DataFrame, converting NUMERIC (Decimal) columns to float."""
    try:
        columns = [desc[0] for desc in cur.description]
    except (IndexError, TypeError):
        _log_error(f"{context} (cur.description = {cur.description})")
        raise
    rows = cur.fetchall()
    df = pd.DataFrame(rows, columns=columns)

    if not df.empty:
        for col in df.columns:
            sample = df[col].dropna()
            if len(sample) > 0 and isinstance(sample.iloc[0], Decimal):
                df[col] = pd.to_numeric(df[col], errors='coerce')
    return df


def _decimals_to_float(row):
    return {k: float(v) if isinstance(v, Decimal) else v for k, v in row.items()}


def clear_caches():
    load_calendars.clear()
    load_calendar.clear()
    load_trash.clear()
    load_trades.clear()


# ============================================
# USERS
# ============================================
def get_or_create_user(email, display_name=None, provider='local'):
    """Return the users.id for email, creating the row on first use."""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM users WHERE email = %s", (email,))
            result = cur.fetchone()
            if result:
                cur.execute("UPDATE users SET last_login = NOW() WHERE id = %s", (result[0],))
                user_id = result[0]
            else:
                cur.execute("""
                    INSERT INTO users (email, display_name, provider, is_active, last_login)
                    VALUES (%s, %s, %s, TRUE, NOW())
                    RETURNING id
                """, (email, display_name or email.split('@')[0], provider))
                user_id = cur.fetchone()[0]
            conn.commit()
            return user_id


# ============================================
# CALENDAR READS
# ============================================
@st.cache_data(ttl=30, show_spinner=False)  # Cache for 30 seconds
def load_calendars(user_id, include_deleted=False):
    """
    Load a user's calendars, newest first.

    Args:
        user_id: owner
        include_deleted: also return calendars sitting in the trash

    Returns:
        pandas.DataFrame
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                query = "SELECT * FROM calendars WHERE user_id = %s"
                if not include_deleted:
                    query += " AND deleted_at IS NULL"
                query += " ORDER BY created_at DESC"
                cur.execute(query, (user_id,))
                return _frame_from_cursor(cur, 'load_calendars')
    except Exception:
        _log_error(f"load_calendars (user {user_id})")
        raise


@st.cache_data(ttl=30, show_spinner=False)
def load_calendar(calendar_id):
    """Single calendar row as a dict."""
    with get_db_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT * FROM calendars WHERE id = %s", (calendar_id,))
            row = cur.fetchone()
            if not row:
                raise ValueError(f"Calendar '{calendar_id}' not found")
            return _decimals_to_float(dict(row))


@st.cache_data(ttl=30, show_spinner=False)
def load_trash(user_id):
    """Calendars in the trash with days left before automatic deletion."""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT * FROM calendars
                WHERE user_id = %s AND deleted_at IS NOT NULL
                ORDER BY deleted_at DESC
            """, (user_id,))
            df = _frame_from_cursor(cur, 'load_trash')

    if not df.empty:
        remaining = pd.to_datetime(df['auto_delete_at']) - pd.Timestamp(datetime.now())
        df['days_remaining'] = remaining.dt.days.clip(lower=0)
    return df


# ============================================
# CALENDAR WRITES
# ============================================
def create_calendar(user_id, data):
    """
    Insert a calendar.

    Args:
        user_id: owner
        data: dict of CALENDAR_SETTING_COLUMNS values

    Returns:
        id of the new calendar
    """
    columns = [c for c in CALENDAR_SETTING_COLUMNS if c in data]
    for extra in ('duplicated_calendar', 'source_calendar_id'):
        if extra in data:
            columns.append(extra)

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            placeholders = ', '.join(['%s'] * (len(columns) + 1))
            cur.execute(
                f"INSERT INTO calendars (user_id, {', '.join(columns)}) VALUES ({placeholders}) RETURNING id",
                [user_id] + [clean_value(data[c]) for c in columns]
            )
            calendar_id = cur.fetchone()[0]
            conn.commit()

    clear_caches()
    return calendar_id


def update_calendar(calendar_id, updates):
    """Update calendar settings. Unknown keys are rejected."""
    unknown = set(updates) - set(CALENDAR_SETTING_COLUMNS)
    if unknown:
        raise ValueError(f"Cannot update calendar fields: {', '.join(sorted(unknown))}")
    if not updates:
        return True

    columns = list(updates)
    assignments = ', '.join(f"{c} = %s" for c in columns)
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE calendars SET {assignments}, updated_at = NOW() WHERE id = %s",
                [clean_value(updates[c]) for c in columns] + [calendar_id]
            )
            if cur.rowcount == 0:
                raise ValueError(f"Calendar '{calendar_id}' not found")
            conn.commit()

    clear_caches()
    if {'account_balance', 'weekly_target', 'monthly_target', 'yearly_target'} & set(columns):
        refresh_calendar_stats(calendar_id)
    return True


def move_calendar_to_trash(calendar_id, user_id):
    """Soft delete: hidden from the calendar list, purged after TRASH_RETENTION_DAYS."""
    now = datetime.now()
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                UPDATE calendars
                SET deleted_at = %s, deleted_by = %s, auto_delete_at = %s
                WHERE id = %s AND user_id = %s AND deleted_at IS NULL
            """, (now, user_id, now + timedelta(days=TRASH_RETENTION_DAYS), calendar_id, user_id))
            if cur.rowcount == 0:
                raise ValueError(f"Calendar '{calendar_id}' not found")
            conn.commit()

    clear_caches()
    return True


def restore_calendar(calendar_id):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                UPDATE calendars
                SET deleted_at = NULL, deleted_by = NULL, auto_delete_at = NULL
                WHERE id = %s AND deleted_at IS NOT NULL
            """, (calendar_id,))
            if cur.rowcount == 0:
                raise ValueError(f"Calendar '{calendar_id}' not found in trash")
            conn.commit()

    clear_caches()
    return True


def permanently_delete_calendar(calendar_id):
    """Delete a calendar and (via ON DELETE CASCADE) its trades."""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM calendars WHERE id = %s", (calendar_id,))
            if cur.rowcount == 0:
                raise ValueError(f"Calendar '{calendar_id}' not found")
            conn.commit()

    clear_caches()
    return True


def cleanup_expired_calendars():
    """Purge trashed calendars whose auto_delete_at has passed. Returns the deleted ids."""
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                DELETE FROM calendars
                WHERE deleted_at IS NOT NULL AND auto_delete_at < NOW()
                RETURNING id
            """)
            deleted = [row[0] for row in cur.fetchall()]
            conn.commit()

    if deleted:
        print(f"🗑️ Removed {len(deleted)} expired calendar(s) from trash")
        clear_caches()
    return deleted


def duplicate_calendar(user_id, source_calendar_id, new_name, include_content=False):
    """
    Copy a calendar's settings (and optionally its trades) into a new calendar.

    Returns:
        id of the new calendar
    """
    source = load_calendar(source_calendar_id)
    data = {c: source.get(c) for c in CALENDAR_SETTING_COLUMNS if c in source}
    data['name'] = new_name
    data['duplicated_calendar'] = True
    data['source_calendar_id'] = source_calendar_id
    new_id = create_calendar(user_id, data)

    if include_content:
        trades = load_trades(source_calendar_id)
        if not trades.empty:
            records = trades.drop(columns=['id', 'calendar_id', 'user_id', 'created_at', 'updated_at'])
            import_trades(new_id, records.to_dict('records'))
    else:
        refresh_calendar_stats(new_id)
    return new_id


# ============================================
# TRADE READS
# ============================================
@st.cache_data(ttl=30, show_spinner=False)
def load_trades(calendar_id):
    """
    Load every trade of a calendar in date order.

    Returns:
        pandas.DataFrame with TRADE_COLUMNS
    """
    try:
        return _query_trades(calendar_id)
    except Exception:
        _log_error(f"load_trades (calendar {calendar_id})")
        raise


def _query_trades(calendar_id):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                SELECT * FROM trades
                WHERE calendar_id = %s
                ORDER BY trade_date, created_at
            """, (calendar_id,))
            df = _frame_from_cursor(cur, 'load_trades')
    return normalize_trades(df)


def get_trade(calendar_id, trade_id):
    with get_db_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("SELECT * FROM trades WHERE calendar_id = %s AND id = %s", (calendar_id, trade_id))
            row = cur.fetchone()
            if not row:
                raise ValueError(f"Trade '{trade_id}' not found")
            return _decimals_to_float(dict(row))


# ============================================
# TRADE WRITES
# ============================================
def _calendar_owner(cur, calendar_id):
    cur.execute("SELECT user_id FROM calendars WHERE id = %s", (calendar_id,))
    result = cur.fetchone()
    if not result:
        raise ValueError(f"Calendar '{calendar_id}' not found")
    return result[0]


def _trade_values(trade):
    values = []
    for col in TRADE_WRITE_COLUMNS:
        val = trade.get(col)
        if col == 'tags':
            val = normalize_pair_tags(list(val) if val is not None else [])
        elif col in ('partials_taken', 'is_pinned'):
            val = bool(val) if val is not None and not (isinstance(val, float) and np.isnan(val)) else False
        values.append(clean_value(val))
    return values


def add_trade(calendar_id, trade):
    """Insert a trade and refresh the calendar statistics. Returns the trade id."""
    trade_id = trade.get('id') or new_trade_id()
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            user_id = _calendar_owner(cur, calendar_id)
            columns = ['id', 'calendar_id', 'user_id'] + TRADE_WRITE_COLUMNS
            placeholders = ', '.join(['%s'] * len(columns))
            cur.execute(
                f"INSERT INTO trades ({', '.join(columns)}) VALUES ({placeholders})",
                [trade_id, calendar_id, user_id] + _trade_values(trade)
            )
            conn.commit()

    refresh_calendar_stats(calendar_id)
    return trade_id


def update_trade(calendar_id, trade_id, updates):
    """Update trade fields (TRADE_WRITE_COLUMNS only) and refresh calendar statistics."""
    unknown = set(updates) - set(TRADE_WRITE_COLUMNS)
    if unknown:
        raise ValueError(f"Cannot update trade fields: {', '.join(sorted(unknown))}")
    if not updates:
        return True

    columns = list(updates)
    values = []
    for col in columns:
        val = updates[col]
        if col == 'tags':
            val = normalize_pair_tags(list(val or []))
        values.append(clean_value(val))

    assignments = ', '.join(f"{c} = %s" for c in columns)
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE trades SET {assignments}, updated_at = NOW() WHERE calendar_id = %s AND id = %s",
                values + [calendar_id, trade_id]
            )
            if cur.rowcount == 0:
                raise ValueError(f"Trade '{trade_id}' not found")
            conn.commit()

    refresh_calendar_stats(calendar_id)
    return True


def delete_trade(calendar_id, trade_id):
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM trades WHERE calendar_id = %s AND id = %s", (calendar_id, trade_id))
            if cur.rowcount == 0:
                raise ValueError(f"Trade '{trade_id}' not found")
            conn.commit()

    refresh_calendar_stats(calendar_id)
    return True


def clear_month_trades(calendar_id, year, month):
    """Delete every trade of the given month. Returns the number of trades removed."""
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute("""
                DELETE FROM trades
                WHERE calendar_id = %s AND trade_date >= %s AND trade_date < %s
            """, (calendar_id, start, end))
            deleted = cur.rowcount
            conn.commit()

    refresh_calendar_stats(calendar_id)
    return deleted


def import_trades(calendar_id, trades):
    """
    Bulk insert trades (e.g. from a spreadsheet import).

    Args:
        calendar_id: target calendar
        trades: list of trade dicts

    Returns:
        int: number of trades inserted
    """
    if not trades:
        return 0

    with get_db_connection() as conn:
        with conn.cursor() as cur:
            user_id = _calendar_owner(cur, calendar_id)
            rows = [
                tuple([new_trade_id(), calendar_id, user_id] + _trade_values(trade))
                for trade in trades
            ]
            columns = ['id', 'calendar_id', 'user_id'] + TRADE_WRITE_COLUMNS
            execute_values(cur, f"INSERT INTO trades ({', '.join(columns)}) VALUES %s", rows)
            conn.commit()

    print(f"✅ Imported {len(rows)} trades into calendar {calendar_id}")
    refresh_calendar_stats(calendar_id)
    return len(rows)


# ============================================
# TAG MANAGEMENT
# ============================================
def update_tag(calendar_id, old_tag, new_tag):
    """
    Rename or delete a tag across a calendar.

    Rewrites the tags of every trade, the required tag groups and the
    score settings tag lists. An empty new_tag deletes the tag; a new group
    prefix renames the whole group.

    Returns:
        int: number of trades changed
    """
    if not old_tag:
        raise ValueError("Tag to update is required")
    new_tag = (new_tag or '').strip()
    if old_tag == new_tag:
        return 0

    try:
        with get_db_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("SELECT required_tag_groups, score_settings FROM calendars WHERE id = %s",
                            (calendar_id,))
                calendar = cur.fetchone()
                if not calendar:
                    raise ValueError(f"Calendar '{calendar_id}' not found")

                cur.execute("SELECT id, tags FROM trades WHERE calendar_id = %s", (calendar_id,))
                changed = []
                for row in cur.fetchall():
                    tags = list(row['tags'] or [])
                    updated = update_tags_with_group_name_change(tags, old_tag, new_tag)
                    if updated != tags:
                        changed.append((str(row['id']), updated))

                if changed:
                    execute_values(cur, """
                        UPDATE trades AS t SET tags = v.tags, updated_at = NOW()
                        FROM (VALUES %s) AS v(id, tags)
                        WHERE t.id = v.id
                    """, changed, template="(%s::uuid, %s::text[])")

                score_settings = calendar.get('score_settings')
                if score_settings:
                    score_settings = dict(score_settings)
                    for key in ('selected_tags', 'excluded_tags_from_patterns'):
                        if isinstance(score_settings.get(key), list):
                            score_settings[key] = update_tags_with_group_name_change(
                                score_settings[key], old_tag, new_tag)

                cur.execute("""
                    UPDATE calendars SET required_tag_groups = %s, score_settings = %s, updated_at = NOW()
                    WHERE id = %s
                """, (
                    update_required_tag_groups(calendar.get('required_tag_groups'), old_tag, new_tag),
                    clean_value(score_settings),
                    calendar_id,
                ))
                conn.commit()
    except Exception:
        _log_error(f"update_tag ({old_tag!r} -> {new_tag!r})")
        raise

    print(f"✅ Tag '{old_tag}' → '{new_tag or '(deleted)'}' updated on {len(changed)} trades")
    refresh_calendar_stats(calendar_id)
    return len(changed)


# ============================================
# CALENDAR STATISTICS
# ============================================
def refresh_calendar_stats(calendar_id, today=None):
    """
    Recompute the calculated calendar columns from its trades and store them.

    Returns:
        dict of CALENDAR_STAT_COLUMNS values
    """
    with get_db_connection() as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute("""
                SELECT account_balance, weekly_target, monthly_target, yearly_target
                FROM calendars WHERE id = %s
            """, (calendar_id,))
            calendar = cur.fetchone()
            if not calendar:
                raise ValueError(f"Calendar '{calendar_id}' not found")
            calendar = _decimals_to_float(dict(calendar))

    trades = _query_trades(calendar_id)
    stats = calculate_calendar_stats(calendar, trades, today=today)

    # calendars.tags mirrors the tags in use on its trades
    assignments = ', '.join(f"{c} = %s" for c in CALENDAR_STAT_COLUMNS)
    with get_db_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"UPDATE calendars SET {assignments}, tags = %s, updated_at = NOW() WHERE id = %s",
                [clean_value(stats[c]) for c in CALENDAR_STAT_COLUMNS]
                + [extract_tags_from_trades(trades), calendar_id]
            )
            conn.commit()

    clear_caches()
    return stats


def get_calendar_stats(calendar):
    """Stored statistics of a calendar row, with missing values as 0."""
    stats = {}
    for col in CALENDAR_STAT_COLUMNS:
        val = calendar.get(col)
        if col in ('drawdown_start_date', 'drawdown_end_date'):
            stats[col] = val
        else:
            stats[col] = 0 if val is None or (isinstance(val, float) and np.isnan(val)) else val
    stats['account_balance'] = calendar.get('account_balance') or 0
    return stats


# ============================================
# TEST CONNECTION
# ============================================
def test_connection():
    """
    Test database connection.
    Returns True if successful, False otherwise.
    """
    try:
        with get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                return True
    except Exception as e:
        print(f"Connection test failed: {e}")
        return False
