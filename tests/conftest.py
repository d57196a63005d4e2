"""Pytest configuration and shared fixtures."""

from datetime import datetime

import pandas as pd
import pytest
import streamlit as st

from trade_model import normalize_trades


@pytest.fixture(autouse=True)
def clear_streamlit_cache():
    st.cache_data.clear()
    yield
    st.cache_data.clear()


@pytest.fixture
def make_trades():
    """Build a normalized trade frame from (date, amount, **fields) tuples."""
    def _make(rows):
        records = []
        for i, row in enumerate(rows):
            trade_date, amount = row[0], row[1]
            fields = row[2] if len(row) > 2 else {}
            record = {
                'id': f"t{i + 1}",
                'trade_date': pd.Timestamp(trade_date),
                'amount': amount,
                'tags': [],
            }
            record.update(fields)
            records.append(record)
        return normalize_trades(records)
    return _make


@pytest.fixture
def sample_trades(make_trades):
    """Eight trades across two weeks of March 2024 (Friday 2024-03-15 is the reference day)."""
    return make_trades([
        ('2024-03-04 09:30', 200.0, {'trade_type': 'win', 'session': 'London', 'risk_to_reward': 2.0,
                                     'tags': ['Setup:Breakout', 'pair:EURUSD']}),
        ('2024-03-05 10:00', -100.0, {'trade_type': 'loss', 'session': 'London', 'risk_to_reward': 2.0,
                                      'tags': ['Setup:Breakout', 'pair:GBPUSD'], 'name': 'GBPUSD fade',
                                      'notes': 'Entered before the retest, stopped out'}),
        ('2024-03-06 14:00', 300.0, {'trade_type': 'win', 'session': 'NY AM', 'risk_to_reward': 3.0,
                                     'tags': ['Setup:Pullback', 'pair:EURUSD']}),
        ('2024-03-07 15:00', 0.0, {'trade_type': 'breakeven', 'session': 'NY PM', 'risk_to_reward': 1.0,
                                   'tags': ['Setup:Pullback']}),
        ('2024-03-11 09:00', -100.0, {'trade_type': 'loss', 'session': 'London', 'risk_to_reward': 2.0,
                                      'tags': ['Setup:Breakout']}),
        ('2024-03-12 09:15', 200.0, {'trade_type': 'win', 'session': 'London', 'risk_to_reward': 2.0,
                                     'tags': ['Setup:Breakout', 'pair:EURUSD']}),
        ('2024-03-13 13:30', 150.0, {'trade_type': 'win', 'session': 'NY AM', 'risk_to_reward': 1.5,
                                     'tags': ['Setup:Pullback']}),
        ('2024-03-15 08:00', -100.0, {'trade_type': 'loss', 'session': 'Asia', 'risk_to_reward': 2.0,
                                      'tags': ['Setup:Breakout', 'pair:EURUSD']}),
    ])


@pytest.fixture
def sample_calendar():
    return {
        'id': 'cal-1',
        'name': 'Prop Account',
        'account_balance': 10000.0,
        'max_daily_drawdown': 2.0,
        'weekly_target': 2.0,
        'monthly_target': 5.0,
        'yearly_target': 40.0,
        'risk_per_trade': None,
        'dynamic_risk_enabled': False,
        'increased_risk_percentage': None,
        'profit_threshold_percentage': None,
        'required_tag_groups': [],
    }


@pytest.fixture
def risk_calendar(sample_calendar):
    """1% base risk raised to 2% once the account is 5% up."""
    cal = dict(sample_calendar)
    cal.update({
        'risk_per_trade': 1.0,
        'dynamic_risk_enabled': True,
        'increased_risk_percentage': 2.0,
        'profit_threshold_percentage': 5.0,
    })
    return cal


@pytest.fixture
def reference_day():
    return datetime(2024, 3, 15, 18, 0)
