# chart_data.py - Performance chart series and plotly figures

from datetime import datetime

import pandas as pd
import plotly.graph_objects as go

from trade_model import SESSIONS

TIME_PERIODS = ['month', 'year', 'all']


# ============================================
# DATA SERIES
# ============================================
def get_filtered_trades(trades, selected_date, period):
    """Trades in selected_date's month, its year, or all of them."""
    if trades.empty or period == 'all':
        return trades
    ts = pd.Timestamp(selected_date)
    dates = pd.to_datetime(trades['trade_date'])
    if period == 'month':
        return trades[(dates.dt.year == ts.year) & (dates.dt.month == ts.month)]
    if period == 'year':
        return trades[dates.dt.year == ts.year]
    return trades


def _period_bounds(filtered, selected_date, period):
    ts = pd.Timestamp(selected_date).normalize()
    if period == 'month':
        start = ts.replace(day=1)
        return start, start + pd.offsets.MonthEnd(0)
    if period == 'year':
        return ts.replace(month=1, day=1), ts.replace(month=12, day=31)
    if filtered.empty:
        today = pd.Timestamp(datetime.now()).normalize()
        return today, today
    dates = pd.to_datetime(filtered['trade_date']).dt.normalize()
    return dates.min(), dates.max()


def calculate_chart_data(trades, selected_date, period='month'):
    """
    One row per calendar day of the period with daily and cumulative P&L.

    Returns:
        DataFrame with columns: date (label), full_date, pnl, cumulative_pnl,
        daily_change, is_increasing, is_decreasing, is_win, is_loss,
        is_break_even, trade_count
    """
    filtered = get_filtered_trades(trades, selected_date, period)
    start, end = _period_bounds(filtered, selected_date, period)
    days = pd.date_range(start, end, freq='D')

    if filtered.empty:
        daily = pd.Series(0.0, index=days)
        counts = pd.Series(0, index=days)
    else:
        day_key = pd.to_datetime(filtered['trade_date']).dt.normalize()
        daily = filtered.groupby(day_key)['amount'].sum().reindex(days, fill_value=0.0)
        counts = filtered.groupby(day_key).size().reindex(days, fill_value=0)

    cumulative = daily.cumsum()
    previous = cumulative.shift(1, fill_value=0.0)
    label_format = '%m/%d' if period == 'month' else '%m/%d/%Y'

    return pd.DataFrame({
        'date': days.strftime(label_format),
        'full_date': days,
        'pnl': daily.values,
        'cumulative_pnl': cumulative.values,
        'daily_change': (cumulative - previous).values,
        'is_increasing': (cumulative > previous).values,
        'is_decreasing': (cumulative < previous).values,
        'is_win': (daily > 0).values,
        'is_loss': (daily < 0).values,
        'is_break_even': (daily == 0).values,
        'trade_count': counts.values,
    })


def calculate_session_stats(trades, selected_date, period, account_balance):
    """Per-session totals; win rate leaves breakevens out of the denominator."""
    filtered = get_filtered_trades(trades, selected_date, period)
    rows = []
    for session in SESSIONS:
        session_trades = filtered[filtered['session'] == session]
        total = len(session_trades)
        winners = int((session_trades['trade_type'] == 'win').sum())
        losers = int((session_trades['trade_type'] == 'loss').sum())
        breakevens = int((session_trades['trade_type'] == 'breakeven').sum())
        decisive = winners + losers
        total_pnl = float(session_trades['amount'].sum()) if total else 0.0
        rows.append({
            'session': session,
            'total_trades': total,
            'winners': winners,
            'losers': losers,
            'breakevens': breakevens,
            'win_rate': winners / decisive * 100 if decisive else 0.0,
            'total_pnl': total_pnl,
            'average_pnl': total_pnl / total if total else 0.0,
            'pnl_percentage': total_pnl / account_balance * 100 if account_balance > 0 else 0.0,
        })
    return pd.DataFrame(rows)


def calculate_target_value(monthly_target, account_balance):
    if monthly_target is None or account_balance <= 0:
        return None
    return monthly_target / 100 * account_balance


def calculate_drawdown_violation_value(max_daily_drawdown, account_balance):
    return -(max_daily_drawdown / 100) * account_balance


# ============================================
# FIGURES
# ============================================
def build_cumulative_pnl_figure(chart_df, target_value=None, title='Cumulative P&L'):
    fig = go.Figure()
    fig.add_trace(go.Scatter(
        x=chart_df['full_date'],
        y=chart_df['cumulative_pnl'],
        mode='lines',
        fill='tozeroy',
        line=dict(color='#667eea', width=3),
        fillcolor='rgba(102, 126, 234, 0.2)',
        name='Cumulative P&L'
    ))
    fig.add_hline(y=0, line_dash="dash", line_color="gray", opacity=0.5)
    if target_value is not None:
        fig.add_hline(y=target_value, line_dash="dot", line_color="green",
                      annotation_text="Target", annotation_position="top left")

    fig.update_layout(
        title=title,
        xaxis_title='Date',
        yaxis_title='P&L ($)',
        hovermode='x unified',
        height=400,
        showlegend=False
    )
    return fig


def build_daily_pnl_figure(chart_df, drawdown_limit=None, title='Daily P&L'):
    colors = ['#2ca02c' if v > 0 else '#d62728' if v < 0 else '#999999' for v in chart_df['pnl']]
    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=chart_df['full_date'],
        y=chart_df['pnl'],
        marker_color=colors,
        name='Daily P&L'
    ))
    if drawdown_limit is not None:
        fig.add_hline(y=drawdown_limit, line_dash="dash", line_color="red",
                      annotation_text="Max daily drawdown", annotation_position="bottom left")

    fig.update_layout(
        title=title,
        xaxis_title='Date',
        yaxis_title='P&L ($)',
        height=350,
        margin=dict(l=20, r=20, t=50, b=20),
        showlegend=False
    )
    return fig


def build_score_radar_figure(current_score, recommended=None):
    """Radar of the four component scores, optionally against the recommended level."""
    labels = ['Consistency', 'Risk Management', 'Performance', 'Discipline']
    keys = ['consistency', 'risk_management', 'performance', 'discipline']
    values = [current_score.get(k, 0) for k in keys]

    fig = go.Figure()
    fig.add_trace(go.Scatterpolar(
        r=values + values[:1],
        theta=labels + labels[:1],
        fill='toself',
        name='Score'
    ))
    if recommended is not None:
        fig.add_trace(go.Scatterpolar(
            r=[recommended] * (len(labels) + 1),
            theta=labels + labels[:1],
            mode='lines',
            line=dict(dash='dash', color='gray'),
            name='Recommended'
        ))

    fig.update_layout(
        polar=dict(radialaxis=dict(visible=True, range=[0, 100])),
        height=380,
        margin=dict(l=40, r=40, t=40, b=40),
        showlegend=True
    )
    return fig


def build_score_history_figure(history):
    """Overall score per period from ScoreService.get_score_history."""
    fig = go.Figure()
    if history:
        fig.add_trace(go.Scatter(
            x=[h['date'] for h in history],
            y=[h['metrics']['overall'] for h in history],
            mode='lines+markers',
            line=dict(color='#667eea', width=2),
            name='Overall'
        ))
    fig.update_layout(
        title='Score History',
        yaxis=dict(range=[0, 100]),
        height=300,
        margin=dict(l=20, r=20, t=50, b=20)
    )
    return fig
