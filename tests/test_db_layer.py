"""Tests for the PostgreSQL layer against a scripted fake connection."""

from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal

import numpy as np
import pandas as pd
import pytest
from psycopg2.extras import Json

import db_layer


class FakeCursor:

    def __init__(self, conn, cursor_factory=None):
        self.conn = conn
        self.cursor_factory = cursor_factory

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((' '.join(sql.split()), params))

    def fetchone(self):
        return self.conn.fetchone_results.pop(0)

    def fetchall(self):
        return self.conn.fetchall_results.pop(0)

    @property
    def rowcount(self):
        return self.conn.rowcount

    @property
    def description(self):
        return self.conn.description


class FakeConnection:

    def __init__(self):
        self.executed = []
        self.fetchone_results = []
        self.fetchall_results = []
        self.rowcount = 1
        self.description = None
        self.commits = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self, cursor_factory)

    def commit(self):
        self.commits += 1

    def close(self):
        pass


@pytest.fixture
def fake_db(monkeypatch):
    conn = FakeConnection()

    @contextmanager
    def fake_connection():
        yield conn

    monkeypatch.setattr(db_layer, 'get_db_connection', fake_connection)
    return conn


@pytest.fixture
def refreshed(monkeypatch):
    calls = []
    monkeypatch.setattr(db_layer, 'refresh_calendar_stats', lambda calendar_id, today=None: calls.append(calendar_id))
    return calls


class TestConfig:

    def test_database_url(self, monkeypatch):
        monkeypatch.setattr(db_layer.st, 'secrets', {})
        monkeypatch.setenv('DATABASE_URL', 'postgresql://journal@db/journal')
        assert db_layer.get_db_config() == {'dsn': 'postgresql://journal@db/journal'}

    def test_local_defaults(self, monkeypatch):
        monkeypatch.setattr(db_layer.st, 'secrets', {})
        monkeypatch.delenv('DATABASE_URL', raising=False)
        monkeypatch.setenv('DB_HOST', 'pg.local')
        monkeypatch.setenv('DB_PORT', '6543')
        monkeypatch.delenv('DB_NAME', raising=False)
        config = db_layer.get_db_config()
        assert config['host'] == 'pg.local'
        assert config['port'] == 6543
        assert config['database'] == 'trading_journal'

    def test_streamlit_secrets_win(self, monkeypatch):
        monkeypatch.setattr(db_layer.st, 'secrets', {'database': {'url': 'postgresql://cloud/journal'}})
        monkeypatch.setenv('DATABASE_URL', 'postgresql://ignored')
        assert db_layer.get_db_config() == {'dsn': 'postgresql://cloud/journal'}


class TestCleanValue:

    def test_scalars(self):
        assert db_layer.clean_value(np.int64(3)) == 3
        assert isinstance(db_layer.clean_value(np.int64(3)), int)
        assert db_layer.clean_value(float('nan')) is None
        assert db_layer.clean_value(pd.NaT) is None
        assert db_layer.clean_value(Decimal('1.50')) == 1.5
        assert db_layer.clean_value(pd.Timestamp('2024-03-04 10:00')) == datetime(2024, 3, 4, 10, 0)

    def test_containers(self):
        assert db_layer.clean_value(np.array(['a', 'b'])) == ['a', 'b']
        assert db_layer.clean_value([np.float64(1.5), None]) == [1.5, None]
        assert isinstance(db_layer.clean_value({'weights': {}}), Json)


class TestUsers:

    def test_existing_user(self, fake_db):
        fake_db.fetchone_results = [('user-1',)]
        assert db_layer.get_or_create_user('trader@example.com') == 'user-1'
        assert fake_db.executed[1][0].startswith('UPDATE users SET last_login')
        assert fake_db.commits == 1

    def test_new_user(self, fake_db):
        fake_db.fetchone_results = [None, ('user-2',)]
        assert db_layer.get_or_create_user('trader@example.com') == 'user-2'
        sql, params = fake_db.executed[1]
        assert sql.startswith('INSERT INTO users')
        assert params == ('trader@example.com', 'trader', 'local')


class TestCalendars:

    def test_load_calendars_converts_numeric(self, fake_db):
        fake_db.description = [('id',), ('name',), ('account_balance',)]
        fake_db.fetchall_results = [[('c1', 'Prop', Decimal('10000.00'))]]
        df = db_layer.load_calendars('user-1')
        assert df['account_balance'].dtype == float
        assert 'deleted_at IS NULL' in fake_db.executed[0][0]

    def test_load_calendar_not_found(self, fake_db):
        fake_db.fetchone_results = [None]
        with pytest.raises(ValueError, match="not found"):
            db_layer.load_calendar('missing')

    def test_create_calendar(self, fake_db, sample_calendar):
        fake_db.fetchone_results = [('cal-9',)]
        data = {k: v for k, v in sample_calendar.items() if k != 'id'}
        assert db_layer.create_calendar('user-1', data) == 'cal-9'
        sql, params = fake_db.executed[0]
        assert sql.startswith('INSERT INTO calendars (user_id, name, account_balance')
        assert params[:3] == ['user-1', 'Prop Account', 10000.0]

    def test_update_rejects_unknown_fields(self, fake_db):
        with pytest.raises(ValueError, match="Cannot update calendar fields: win_rate"):
            db_layer.update_calendar('cal-1', {'win_rate': 99})
        assert fake_db.executed == []

    def test_update_refreshes_stats_on_balance_change(self, fake_db, refreshed):
        db_layer.update_calendar('cal-1', {'name': 'Renamed'})
        assert refreshed == []
        db_layer.update_calendar('cal-1', {'account_balance': 25000})
        assert refreshed == ['cal-1']

    def test_update_missing_calendar(self, fake_db):
        fake_db.rowcount = 0
        with pytest.raises(ValueError, match="not found"):
            db_layer.update_calendar('cal-1', {'name': 'Renamed'})

    def test_move_to_trash_sets_auto_delete(self, fake_db):
        db_layer.move_calendar_to_trash('cal-1', 'user-1')
        params = fake_db.executed[0][1]
        deleted_at, deleted_by, auto_delete_at = params[:3]
        assert deleted_by == 'user-1'
        assert auto_delete_at - deleted_at == timedelta(days=db_layer.TRASH_RETENTION_DAYS)

    def test_restore_requires_trashed_calendar(self, fake_db):
        fake_db.rowcount = 0
        with pytest.raises(ValueError, match="not found in trash"):
            db_layer.restore_calendar('cal-1')

    def test_cleanup_expired(self, fake_db):
        fake_db.fetchall_results = [[('cal-1',), ('cal-2',)]]
        assert db_layer.cleanup_expired_calendars() == ['cal-1', 'cal-2']
        assert 'auto_delete_at < NOW()' in fake_db.executed[0][0]

    def test_duplicate_settings_only(self, fake_db, refreshed, sample_calendar):
        fake_db.fetchone_results = [dict(sample_calendar, win_rate=Decimal('55.00')), ('cal-2',)]
        assert db_layer.duplicate_calendar('user-1', 'cal-1', 'Copy') == 'cal-2'
        sql, params = fake_db.executed[1]
        assert sql.startswith('INSERT INTO calendars')
        assert 'win_rate' not in sql
        assert params[1] == 'Copy'
        assert params[-2:] == [True, 'cal-1']
        assert refreshed == ['cal-2']

    def test_permanent_delete_missing(self, fake_db):
        fake_db.rowcount = 0
        with pytest.raises(ValueError):
            db_layer.permanently_delete_calendar('cal-1')

    def test_trash_days_remaining(self, fake_db):
        fake_db.description = [('id',), ('name',), ('auto_delete_at',)]
        fake_db.fetchall_results = [[('cal-1', 'Old', datetime.now() + timedelta(days=10, hours=1))]]
        df = db_layer.load_trash('user-1')
        assert df.iloc[0]['days_remaining'] == 10


class TestTrades:

    def test_add_trade(self, fake_db, refreshed):
        fake_db.fetchone_results = [('user-1',)]
        trade_id = db_layer.add_trade('cal-1', {
            'id': 'trade-1',
            'amount': 125.0,
            'trade_type': 'win',
            'trade_date': datetime(2024, 3, 4, 9, 30),
            'tags': ['Pair:EURUSD'],
        })
        assert trade_id == 'trade-1'
        sql, params = fake_db.executed[1]
        assert sql.startswith('INSERT INTO trades')
        assert params[:3] == ['trade-1', 'cal-1', 'user-1']
        values = dict(zip(db_layer.TRADE_WRITE_COLUMNS, params[3:]))
        assert values['tags'] == ['pair:EURUSD']
        assert values['partials_taken'] is False
        assert refreshed == ['cal-1']

    def test_add_trade_unknown_calendar(self, fake_db, refreshed):
        fake_db.fetchone_results = [None]
        with pytest.raises(ValueError, match="Calendar 'cal-x' not found"):
            db_layer.add_trade('cal-x', {'amount': 1, 'trade_type': 'win', 'trade_date': datetime.now()})
        assert refreshed == []

    def test_get_trade(self, fake_db):
        fake_db.fetchone_results = [{'id': 'trade-1', 'amount': Decimal('-40.00')}, None]
        assert db_layer.get_trade('cal-1', 'trade-1') == {'id': 'trade-1', 'amount': -40.0}
        with pytest.raises(ValueError, match="Trade 'trade-2' not found"):
            db_layer.get_trade('cal-1', 'trade-2')

    def test_update_trade_rejects_unknown_fields(self, fake_db):
        with pytest.raises(ValueError):
            db_layer.update_trade('cal-1', 'trade-1', {'calendar_id': 'other'})

    def test_delete_missing_trade(self, fake_db, refreshed):
        fake_db.rowcount = 0
        with pytest.raises(ValueError, match="Trade 'trade-1' not found"):
            db_layer.delete_trade('cal-1', 'trade-1')

    def test_clear_december(self, fake_db, refreshed):
        fake_db.rowcount = 4
        assert db_layer.clear_month_trades('cal-1', 2024, 12) == 4
        params = fake_db.executed[0][1]
        assert params == ('cal-1', datetime(2024, 12, 1), datetime(2025, 1, 1))
        assert refreshed == ['cal-1']

    def test_bulk_import(self, fake_db, refreshed, monkeypatch):
        inserted = []
        monkeypatch.setattr(db_layer, 'execute_values', lambda cur, sql, rows: inserted.extend(rows))
        fake_db.fetchone_results = [('user-1',)]
        count = db_layer.import_trades('cal-1', [
            {'amount': 10.0, 'trade_type': 'win', 'trade_date': datetime(2024, 3, 4), 'tags': []},
            {'amount': -5.0, 'trade_type': 'loss', 'trade_date': datetime(2024, 3, 5), 'tags': ['A']},
        ])
        assert count == 2
        assert len(inserted) == 2
        assert inserted[0][1:3] == ('cal-1', 'user-1')
        assert refreshed == ['cal-1']

    def test_bulk_import_nothing(self, fake_db):
        assert db_layer.import_trades('cal-1', []) == 0
        assert fake_db.executed == []

    def test_load_trades_normalizes(self, fake_db):
        fake_db.description = [('id',), ('amount',), ('trade_type',), ('trade_date',), ('tags',)]
        fake_db.fetchall_results = [[('t1', Decimal('12.50'), 'win', datetime(2024, 3, 4), ['A'])]]
        df = db_layer.load_trades('cal-1')
        assert df.iloc[0]['amount'] == 12.5
        assert df.iloc[0]['tags'] == ['A']
        assert 'session' in df.columns


class TestTagManagement:

    @pytest.fixture
    def bulk_updates(self, monkeypatch):
        rows = []
        monkeypatch.setattr(db_layer, 'execute_values',
                            lambda cur, sql, values, template=None: rows.extend(values))
        return rows

    def test_group_rename(self, fake_db, refreshed, bulk_updates):
        fake_db.fetchone_results = [{
            'required_tag_groups': ['Setup', 'Mood'],
            'score_settings': {'selected_tags': ['Setup:Breakout'], 'excluded_tags_from_patterns': ['Mood:Calm']},
        }]
        fake_db.fetchall_results = [[
            {'id': 't1', 'tags': ['Setup:Breakout', 'pair:EURUSD']},
            {'id': 't2', 'tags': ['Setup:Pullback']},
            {'id': 't3', 'tags': ['Mood:Calm']},
        ]]

        assert db_layer.update_tag('cal-1', 'Setup:Breakout', 'Entry:Breakout') == 2

        assert bulk_updates == [('t1', ['Entry:Breakout', 'pair:EURUSD']), ('t2', ['Entry:Pullback'])]
        sql, params = fake_db.executed[-1]
        assert sql.startswith('UPDATE calendars SET required_tag_groups = %s, score_settings = %s')
        assert params[0] == ['Entry', 'Mood']
        assert params[1].adapted == {'selected_tags': ['Entry:Breakout'], 'excluded_tags_from_patterns': ['Mood:Calm']}
        assert params[2] == 'cal-1'
        assert fake_db.commits == 1
        assert refreshed == ['cal-1']

    def test_delete_tag(self, fake_db, refreshed, bulk_updates):
        fake_db.fetchone_results = [{'required_tag_groups': None, 'score_settings': None}]
        fake_db.fetchall_results = [[{'id': 't1', 'tags': ['Mood:Calm', 'Setup:A']}, {'id': 't2', 'tags': None}]]

        assert db_layer.update_tag('cal-1', 'Mood:Calm', '') == 1

        assert bulk_updates == [('t1', ['Setup:A'])]
        params = fake_db.executed[-1][1]
        assert params[:2] == ([], None)

    def test_unused_tag_changes_no_trades(self, fake_db, refreshed, bulk_updates):
        fake_db.fetchone_results = [{'required_tag_groups': [], 'score_settings': None}]
        fake_db.fetchall_results = [[{'id': 't1', 'tags': ['Setup:A']}]]
        assert db_layer.update_tag('cal-1', 'Mood:Calm', 'Mood:Tense') == 0
        assert bulk_updates == []

    def test_same_tag_is_a_no_op(self, fake_db, refreshed):
        assert db_layer.update_tag('cal-1', 'Setup:A', 'Setup:A') == 0
        assert fake_db.executed == []
        assert refreshed == []

    def test_unknown_calendar(self, fake_db, refreshed):
        fake_db.fetchone_results = [None]
        with pytest.raises(ValueError, match="Calendar 'cal-x' not found"):
            db_layer.update_tag('cal-x', 'Setup:A', 'Setup:B')
        assert refreshed == []


class TestStats:

    def test_refresh_writes_every_stat_column(self, fake_db, monkeypatch, sample_trades, reference_day):
        fake_db.fetchone_results = [{
            'account_balance': Decimal('10000.00'),
            'weekly_target': Decimal('2.00'),
            'monthly_target': None,
            'yearly_target': None,
        }]
        monkeypatch.setattr(db_layer, '_query_trades', lambda calendar_id: sample_trades)

        stats = db_layer.refresh_calendar_stats('cal-1', today=reference_day)

        assert stats['total_pnl'] == 550.0
        assert stats['weekly_progress'] == pytest.approx(75.0)
        sql, params = fake_db.executed[-1]
        assert sql.startswith('UPDATE calendars SET win_rate = %s')
        assert 'tags = %s' in sql
        assert len(params) == len(db_layer.CALENDAR_STAT_COLUMNS) + 2
        assert params[-2] == ['Setup:Breakout', 'Setup:Pullback', 'pair:EURUSD', 'pair:GBPUSD']
        assert params[-1] == 'cal-1'

    def test_get_calendar_stats_fills_missing(self):
        stats = db_layer.get_calendar_stats({'account_balance': 5000.0, 'win_rate': float('nan'), 'total_pnl': 12.0})
        assert stats['win_rate'] == 0
        assert stats['total_pnl'] == 12.0
        assert stats['max_drawdown'] == 0
        assert stats['drawdown_start_date'] is None
        assert stats['account_balance'] == 5000.0
