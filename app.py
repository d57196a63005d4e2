import streamlit as st
import pandas as pd
import os
from datetime import datetime, date

import db_layer as db
from calendar_grid import build_month_grid, calculate_monthly_stats, calculate_weekly_stats, check_daily_drawdown_violation
from chart_data import (
    TIME_PERIODS,
    build_cumulative_pnl_figure,
    build_daily_pnl_figure,
    build_score_history_figure,
    build_score_radar_figure,
    calculate_chart_data,
    calculate_drawdown_violation_value,
    calculate_session_stats,
    calculate_target_value,
)
from dynamic_risk import DynamicRiskSettings, calculate_effective_max_daily_drawdown, get_dynamic_risk_status
from score_service import COMPONENT_LABELS, PERIODS, ScoreService
from score_utils import calculate_recommended_score, merge_score_settings
from stats_utils import calculate_streaks, filter_trades_by_day
from trade_export_import import export_trades, import_trades
from trade_model import SESSIONS, TRADE_TYPES, extract_tags_from_trades, format_currency, get_unique_tag_groups
from validation import edit_form_from_trade, prepare_trade_for_save, validate_calendar, validate_trade

# --- CONFIGURATION ---
st.set_page_config(page_title="TRADING JOURNAL", layout="wide", page_icon="📅")
APP_VERSION = "1.0"

USER_EMAIL = os.getenv('JOURNAL_USER_EMAIL', 'trader@localhost')
WEEKDAY_HEADERS = ['Sun', 'Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat']


# ==============================================================================
# 1. SESSION BOOTSTRAP
# ==============================================================================
if 'user_id' not in st.session_state:
    try:
        st.session_state.user_id = db.get_or_create_user(USER_EMAIL)
        db.cleanup_expired_calendars()
    except Exception as e:
        st.error(f"❌ Cannot connect to database: {e}")
        st.stop()

USER_ID = st.session_state.user_id

if 'page' not in st.session_state:
    st.session_state.page = "Calendars"
if 'view_month' not in st.session_state:
    today = date.today()
    st.session_state.view_month = (today.year, today.month)


def _initial_number(initial, key, default=0.0):
    value = initial.get(key)
    return default if value is None or pd.isna(value) else float(value)


def calendar_form(prefix, initial=None):
    """Calendar settings inputs. Returns the form dict (not yet validated)."""
    initial = initial or {}
    c1, c2, c3 = st.columns(3)
    form = {
        'name': c1.text_input("Name", initial.get('name', ''), key=f"{prefix}_name"),
        'account_balance': c2.number_input("Account Balance ($)", min_value=0.0,
                                           value=_initial_number(initial, 'account_balance', 10000.0) or 10000.0,
                                           step=100.0, key=f"{prefix}_bal"),
        'max_daily_drawdown': c3.number_input("Max Daily Drawdown (%)", min_value=0.0, max_value=100.0,
                                              value=_initial_number(initial, 'max_daily_drawdown', 2.0) or 2.0,
                                              step=0.5, key=f"{prefix}_dd"),
    }
    t1, t2, t3 = st.columns(3)
    form['weekly_target'] = t1.number_input("Weekly Target (%)", min_value=0.0,
                                            value=_initial_number(initial, 'weekly_target'), key=f"{prefix}_wt")
    form['monthly_target'] = t2.number_input("Monthly Target (%)", min_value=0.0,
                                             value=_initial_number(initial, 'monthly_target'), key=f"{prefix}_mt")
    form['yearly_target'] = t3.number_input("Yearly Target (%)", min_value=0.0,
                                            value=_initial_number(initial, 'yearly_target'), key=f"{prefix}_yt")

    r1, r2, r3, r4 = st.columns(4)
    risk = r1.number_input("Risk per Trade (%)", min_value=0.0, max_value=100.0,
                           value=_initial_number(initial, 'risk_per_trade'), step=0.25, key=f"{prefix}_risk")
    form['risk_per_trade'] = risk if risk > 0 else None
    form['dynamic_risk_enabled'] = r2.checkbox("Dynamic Risk", _initial_number(initial, 'dynamic_risk_enabled') > 0,
                                               key=f"{prefix}_dyn")
    inc = r3.number_input("Increased Risk (%)", min_value=0.0, max_value=100.0,
                          value=_initial_number(initial, 'increased_risk_percentage'), key=f"{prefix}_inc")
    thr = r4.number_input("Profit Threshold (%)", min_value=0.0,
                          value=_initial_number(initial, 'profit_threshold_percentage'), key=f"{prefix}_thr")
    form['increased_risk_percentage'] = inc if inc > 0 else None
    form['profit_threshold_percentage'] = thr if thr > 0 else None

    groups = st.text_input("Required Tag Groups (comma separated)",
                           ', '.join(list(initial.get('required_tag_groups') or [])), key=f"{prefix}_groups")
    form['required_tag_groups'] = [g.strip() for g in groups.split(',') if g.strip()]

    for key in ('weekly_target', 'monthly_target', 'yearly_target'):
        if not form[key]:
            form[key] = None
    return form


# ==============================================================================
# 2. SIDEBAR NAVIGATION
# ==============================================================================
st.sidebar.title("📅 Trading Journal")
st.sidebar.markdown("---")

try:
    df_calendars = db.load_calendars(USER_ID)
except Exception as e:
    st.error(f"❌ Failed to load calendars: {e}")
    st.stop()

calendar_id = None
calendar = None
if not df_calendars.empty:
    names = dict(zip(df_calendars['id'].astype(str), df_calendars['name']))
    ids = list(names)
    default_idx = ids.index(st.session_state.get('calendar_id')) if st.session_state.get('calendar_id') in ids else 0
    calendar_id = st.sidebar.selectbox("🔥 Active Calendar", ids, index=default_idx, format_func=lambda i: names[i])
    st.session_state.calendar_id = calendar_id
    try:
        calendar = db.load_calendar(calendar_id)
    except Exception as e:
        st.sidebar.error(f"Failed to load calendar: {e}")

st.sidebar.markdown("---")

with st.sidebar:
    st.markdown("### 🧭 Navigation")

    def nav_button(label, icon=""):
        icon_text = f"{icon} " if icon else ""
        if st.button(f"{icon_text}{label}", key=f"nav_{label}", use_container_width=True):
            st.session_state.page = label
            st.rerun()

    nav_button("Calendars", "🗂️")
    nav_button("Trade Calendar", "📅")
    nav_button("Performance", "📈")
    nav_button("Score", "🎯")
    nav_button("Import / Export", "📤")
    nav_button("Trash", "🗑️")

page = st.session_state.page

st.sidebar.markdown("---")
st.sidebar.caption(f"📂 **Active:** {calendar['name'] if calendar else 'None'} • v{APP_VERSION}")


def require_calendar():
    if calendar is None:
        st.info("Create a calendar on the Calendars page first.")
        st.stop()


def load_calendar_trades():
    try:
        return db.load_trades(calendar_id)
    except Exception as e:
        st.error(f"❌ Failed to load trades: {e}")
        st.stop()


# ==============================================================================
# PAGE 1: CALENDARS
# ==============================================================================
if page == "Calendars":
    st.title("🗂️ CALENDARS")

    tab_list, tab_new, tab_tags = st.tabs(["My Calendars", "➕ New Calendar", "🏷️ Tags"])

    with tab_list:
        if df_calendars.empty:
            st.info("No calendars yet.")
        for _, row in df_calendars.iterrows():
            cal = row.to_dict()
            stats = db.get_calendar_stats(cal)
            with st.expander(f"**{cal['name']}** • {format_currency(stats['current_balance'] or cal['account_balance'])}",
                             expanded=False):
                m1, m2, m3, m4 = st.columns(4)
                m1.metric("Total P&L", format_currency(stats['total_pnl']), f"{stats['pnl_performance']:.2f}%")
                m2.metric("Win Rate", f"{stats['win_rate']:.1f}%", f"{int(stats['total_trades'])} trades")
                m3.metric("Profit Factor", f"{stats['profit_factor']:.2f}")
                m4.metric("Max Drawdown", f"{stats['max_drawdown']:.2f}%")

                with st.form(f"edit_{cal['id']}"):
                    form = calendar_form(f"edit_{cal['id']}", cal)
                    if st.form_submit_button("💾 Save Changes"):
                        errors = validate_calendar(form)
                        if errors:
                            for err in errors:
                                st.error(err)
                        else:
                            try:
                                db.update_calendar(cal['id'], form)
                                st.success("✅ Calendar updated")
                                st.rerun()
                            except Exception as e:
                                st.error(f"❌ Update failed: {e}")

                d1, d2, d3 = st.columns([2, 1, 1])
                new_name = d1.text_input("Duplicate as", f"{cal['name']} (Copy)", key=f"dup_name_{cal['id']}")
                with_trades = d2.checkbox("Include trades", key=f"dup_trades_{cal['id']}")
                if d3.button("📑 Duplicate", key=f"dup_{cal['id']}"):
                    try:
                        db.duplicate_calendar(USER_ID, cal['id'], new_name, include_content=with_trades)
                        st.success(f"✅ Created '{new_name}'")
                        st.rerun()
                    except Exception as e:
                        st.error(f"❌ Duplicate failed: {e}")

                if st.button("🗑️ Move to Trash", key=f"trash_{cal['id']}"):
                    try:
                        db.move_calendar_to_trash(cal['id'], USER_ID)
                        st.success("Moved to trash")
                        st.rerun()
                    except Exception as e:
                        st.error(f"❌ Failed: {e}")

    with tab_new:
        with st.form("new_calendar"):
            form = calendar_form("new")
            if st.form_submit_button("➕ Create Calendar"):
                errors = validate_calendar(form)
                if errors:
                    for err in errors:
                        st.error(err)
                else:
                    try:
                        new_id = db.create_calendar(USER_ID, form)
                        st.session_state.calendar_id = str(new_id)
                        st.success(f"✅ Calendar '{form['name']}' created")
                        st.rerun()
                    except Exception as e:
                        st.error(f"❌ Create failed: {e}")

    with tab_tags:
        if calendar is None:
            st.info("Create a calendar first.")
        else:
            tag_list = extract_tags_from_trades(load_calendar_trades())
            st.caption(f"Tags used in **{calendar['name']}**. Renaming the group part "
                       f"(e.g. Setup:A → Entry:A) renames every tag of that group.")
            if not tag_list:
                st.info("No tags yet.")
            else:
                with st.form("manage_tags"):
                    old_tag = st.selectbox("Tag", tag_list)
                    new_tag = st.text_input("New name")
                    delete = st.checkbox("Delete this tag from every trade")
                    if st.form_submit_button("💾 Apply"):
                        if not delete and not new_tag.strip():
                            st.error("Enter a new tag name or tick delete")
                        else:
                            try:
                                count = db.update_tag(calendar_id, old_tag, '' if delete else new_tag)
                                st.success(f"✅ Updated {count} trades")
                                st.rerun()
                            except Exception as e:
                                st.error(f"❌ Tag update failed: {e}")


# ==============================================================================
# PAGE 2: TRADE CALENDAR
# ==============================================================================
elif page == "Trade Calendar":
    require_calendar()
    df_trades = load_calendar_trades()
    year, month = st.session_state.view_month
    balance = float(calendar['account_balance'])

    st.title(f"📅 {calendar['name']}")

    n1, n2, n3 = st.columns([1, 3, 1])
    if n1.button("◀ Prev"):
        st.session_state.view_month = (year - 1, 12) if month == 1 else (year, month - 1)
        st.rerun()
    n2.markdown(f"### {datetime(year, month, 1).strftime('%B %Y')}")
    if n3.button("Next ▶"):
        st.session_state.view_month = (year + 1, 1) if month == 12 else (year, month + 1)
        st.rerun()

    # --- MONTH SUMMARY ---
    m_stats = calculate_monthly_stats(df_trades, year, month, balance, calendar.get('monthly_target'))
    s1, s2, s3, s4, s5 = st.columns(5)
    s1.metric("Month P&L", format_currency(m_stats['total_pnl']), f"{m_stats['growth_percentage']:.1f}%")
    s2.metric("Win Rate", f"{m_stats['win_rate']:.1f}%", f"{m_stats['trade_count']} trades")
    s3.metric("Best Day", format_currency(m_stats['best_day']) if m_stats['best_day'] > 0 else "No trades")
    s4.metric("Worst Day", format_currency(m_stats['worst_day']) if m_stats['worst_day'] < 0 else "No losses")
    s5.metric("Target Progress", f"{m_stats['target_progress']:.0f}%")

    # --- GRID ---
    grid = build_month_grid(df_trades, year, month)
    weekly = calculate_weekly_stats(df_trades, year, month, balance, calendar.get('weekly_target'))

    header = st.columns(8)
    for col, label in zip(header, WEEKDAY_HEADERS + ['Week']):
        col.markdown(f"**{label}**")

    for w_idx, week in enumerate(grid):
        cols = st.columns(8)
        for col, day in zip(cols, week):
            if not day['in_month']:
                col.markdown(" ")
                continue
            label = f"{day['date'].day}"
            if day['trade_count']:
                icon = "🟢" if day['is_win'] else "🔴" if day['is_loss'] else "⚪"
                label += f"\n\n{icon} {format_currency(day['pnl'])}"
                if check_daily_drawdown_violation(day['date'], day['pnl'], calendar, df_trades):
                    label += " ⚠️"
            if col.button(label, key=f"day_{day['date']}", use_container_width=True):
                st.session_state.selected_day = day['date']
        wk = weekly.iloc[w_idx]
        cols[7].markdown(f"**{format_currency(wk['pnl'])}**  \n{wk['pnl_percentage']:.1f}% • {wk['trade_count']} trades")

    st.markdown("---")

    # --- DAY DETAIL ---
    selected_day = st.session_state.get('selected_day', date.today())
    st.subheader(f"🗓️ {selected_day.strftime('%A, %B %d, %Y')}")
    day_trades = filter_trades_by_day(df_trades, selected_day)

    if day_trades.empty:
        st.caption("No trades on this day.")
    else:
        show = day_trades[['name', 'trade_type', 'amount', 'risk_to_reward', 'session', 'tags', 'notes']].copy()
        show['tags'] = show['tags'].apply(lambda t: ', '.join(t))
        st.dataframe(show, hide_index=True, use_container_width=True)

        trade_ids = list(day_trades['id'].astype(str))
        sel = st.selectbox("Select trade", trade_ids,
                           format_func=lambda i: f"{day_trades.loc[day_trades['id'].astype(str) == i, 'name'].iloc[0] or 'Trade'} ({i[:8]})")
        e1, e2 = st.columns(2)
        if e1.button("📌 Toggle Pin"):
            current = bool(day_trades.loc[day_trades['id'].astype(str) == sel, 'is_pinned'].iloc[0])
            try:
                db.update_trade(calendar_id, sel, {'is_pinned': not current})
                st.rerun()
            except Exception as e:
                st.error(f"❌ Update failed: {e}")
        if e2.button("🗑️ Delete Trade", type="primary"):
            try:
                db.delete_trade(calendar_id, sel)
                st.success("Trade deleted")
                st.rerun()
            except Exception as e:
                st.error(f"❌ Delete failed: {e}")

        with st.expander("✏️ Edit Trade"):
            current = day_trades[day_trades['id'].astype(str) == sel].iloc[0]
            with st.form(f"edit_trade_{sel}"):
                c1, c2, c3 = st.columns(3)
                ed_name = c1.text_input("Name", current['name'] if isinstance(current['name'], str) else "")
                ed_type = c2.selectbox("Type", TRADE_TYPES, index=TRADE_TYPES.index(current['trade_type']))
                ed_session = c3.selectbox("Session", SESSIONS,
                                          index=SESSIONS.index(current['session']) if current['session'] in SESSIONS else 0)
                c4, c5, c6 = st.columns(3)
                ed_amount = c4.number_input("Amount ($)", min_value=0.0, value=abs(_initial_number(current, 'amount')), step=10.0)
                ed_rr = c5.number_input("Risk to Reward", min_value=0.0, step=0.1,
                                        value=_initial_number(current, 'risk_to_reward'))
                ed_partials = c6.checkbox("Partials Taken", bool(current['partials_taken']))
                ed_tags = st.text_input("Tags (comma separated)", ', '.join(current['tags']))
                ed_notes = st.text_area("Notes", current['notes'] if isinstance(current['notes'], str) else "")

                if st.form_submit_button("💾 Update Trade"):
                    form = edit_form_from_trade(
                        current,
                        name=ed_name,
                        trade_type=ed_type,
                        session=ed_session,
                        amount=ed_amount,
                        risk_to_reward=ed_rr,
                        partials_taken=ed_partials,
                        tags=[t.strip() for t in ed_tags.split(',') if t.strip()],
                        notes=ed_notes,
                    )
                    errors = validate_trade(form, list(calendar.get('required_tag_groups') or []), calendar)
                    if errors:
                        for err in errors:
                            st.error(err)
                    else:
                        try:
                            others = df_trades[df_trades['id'].astype(str) != sel]
                            trade = prepare_trade_for_save(form, others, calendar)
                            trade.pop('id')
                            db.update_trade(calendar_id, sel, trade)
                            st.success("✅ Trade updated")
                            st.rerun()
                        except Exception as e:
                            st.error(f"❌ Update failed: {e}")

    # --- ADD TRADE ---
    with st.expander("➕ Add Trade", expanded=day_trades.empty):
        existing_tags = sorted({t for tags in df_trades['tags'] for t in tags}) if not df_trades.empty else []
        required_groups = list(calendar.get('required_tag_groups') or [])
        if required_groups:
            st.caption(f"Required tag groups: {', '.join(required_groups)}")
        if existing_tags:
            st.caption(f"Tag groups in use: {', '.join(get_unique_tag_groups(existing_tags)) or 'none'}")

        with st.form("add_trade"):
            c1, c2, c3 = st.columns(3)
            t_name = c1.text_input("Name")
            t_type = c2.selectbox("Type", TRADE_TYPES)
            t_session = c3.selectbox("Session", SESSIONS)
            c4, c5, c6 = st.columns(3)
            t_amount = c4.number_input("Amount ($)", min_value=0.0, step=10.0,
                                       help="Ignored when risk per trade is set and partials were not taken")
            t_rr = c5.number_input("Risk to Reward", min_value=0.0, step=0.1, value=2.0)
            t_partials = c6.checkbox("Partials Taken")
            p1, p2 = st.columns(2)
            t_entry = p1.number_input("Entry Price", min_value=0.0, format="%.5f")
            t_exit = p2.number_input("Exit Price", min_value=0.0, format="%.5f")
            t_tags = st.multiselect("Tags", existing_tags)
            t_new_tags = st.text_input("New tags (comma separated, Group:Value for grouped tags)")
            t_notes = st.text_area("Notes")

            if st.form_submit_button("💾 Save Trade"):
                form = {
                    'name': t_name,
                    'trade_type': t_type,
                    'session': t_session,
                    'amount': t_amount,
                    'risk_to_reward': t_rr,
                    'partials_taken': t_partials,
                    'entry_price': t_entry or None,
                    'exit_price': t_exit or None,
                    'tags': t_tags + [t.strip() for t in t_new_tags.split(',') if t.strip()],
                    'notes': t_notes,
                    'trade_date': datetime.combine(selected_day, datetime.now().time()),
                }
                errors = validate_trade(form, required_groups, calendar)
                if errors:
                    for err in errors:
                        st.error(err)
                else:
                    try:
                        trade = prepare_trade_for_save(form, df_trades, calendar)
                        db.add_trade(calendar_id, trade)
                        st.success(f"✅ Trade saved: {format_currency(trade['amount'])}")
                        st.rerun()
                    except Exception as e:
                        st.error(f"❌ Save failed: {e}")

    with st.expander("🧹 Clear Month"):
        st.warning(f"Deletes every trade in {datetime(year, month, 1).strftime('%B %Y')}.")
        if st.checkbox("I understand", key="confirm_clear"):
            if st.button("Clear Month", type="primary"):
                try:
                    removed = db.clear_month_trades(calendar_id, year, month)
                    st.success(f"Removed {removed} trades")
                    st.rerun()
                except Exception as e:
                    st.error(f"❌ Clear failed: {e}")


# ==============================================================================
# PAGE 3: PERFORMANCE
# ==============================================================================
elif page == "Performance":
    require_calendar()
    df_trades = load_calendar_trades()
    stats = db.get_calendar_stats(calendar)
    balance = float(calendar['account_balance'])

    st.title("📈 PERFORMANCE")

    m1, m2, m3, m4, m5 = st.columns(5)
    m1.metric("Balance", format_currency(stats['current_balance'] or balance), f"{stats['pnl_performance']:.2f}%")
    m2.metric("Win Rate", f"{stats['win_rate']:.1f}%", f"{int(stats['win_count'])}W / {int(stats['loss_count'])}L")
    m3.metric("Profit Factor", f"{stats['profit_factor']:.2f}")
    m4.metric("Avg Win / Loss", f"{format_currency(stats['avg_win'])} / {format_currency(stats['avg_loss'])}")
    m5.metric("Max Drawdown", f"{stats['max_drawdown']:.2f}%",
              f"{stats['drawdown_recovery_needed']:.1f}% to recover", delta_color="off")

    p1, p2, p3 = st.columns(3)
    p1.metric("This Week", format_currency(stats['weekly_pnl']), f"{stats['weekly_progress']:.0f}% of target")
    p2.metric("This Month", format_currency(stats['monthly_pnl']), f"{stats['monthly_progress']:.0f}% of target")
    p3.metric("This Year", format_currency(stats['yearly_pnl']), f"{stats['target_progress']:.0f}% of target")

    streaks = calculate_streaks(df_trades)
    st.caption(f"Current streak: {streaks['current_streak']} • Longest win streak: {streaks['longest_win_streak']} "
               f"• Longest loss streak: {streaks['longest_loss_streak']}")

    st.markdown("---")
    c1, c2 = st.columns([1, 3])
    period = c1.radio("Period", TIME_PERIODS, horizontal=True)
    sel_date = c2.date_input("Reference date", date.today())

    chart_df = calculate_chart_data(df_trades, sel_date, period)
    target_value = calculate_target_value(calendar.get('monthly_target'), balance) if period == 'month' else None
    st.plotly_chart(build_cumulative_pnl_figure(chart_df, target_value), use_container_width=True)

    settings = DynamicRiskSettings.from_calendar(calendar)
    max_dd = calculate_effective_max_daily_drawdown(float(calendar['max_daily_drawdown']), df_trades, settings)
    st.plotly_chart(build_daily_pnl_figure(chart_df, calculate_drawdown_violation_value(max_dd, balance)),
                    use_container_width=True)

    st.subheader("🕐 Sessions")
    session_df = calculate_session_stats(df_trades, sel_date, period, balance)
    st.dataframe(session_df.style.format({
        'win_rate': '{:.1f}%', 'total_pnl': '${:,.2f}', 'average_pnl': '${:,.2f}', 'pnl_percentage': '{:.2f}%'
    }), hide_index=True, use_container_width=True)

    if settings.escalation_configured:
        st.subheader("⚡ Dynamic Risk")
        status = get_dynamic_risk_status(df_trades, settings)
        d1, d2, d3 = st.columns(3)
        d1.metric("Status", "ACTIVE" if status['is_active'] else "Base risk")
        d2.metric("Current Risk", f"{status['current_risk_percentage']:.2f}%",
                  f"base {status['base_risk_percentage']:.2f}%", delta_color="off")
        d3.metric("Profit", f"{status['profit_percentage']:.2f}%",
                  f"threshold {settings.profit_threshold_percentage}%", delta_color="off")


# ==============================================================================
# PAGE 4: SCORE
# ==============================================================================
elif page == "Score":
    require_calendar()
    df_trades = load_calendar_trades()
    settings = merge_score_settings(calendar.get('score_settings'))

    st.title("🎯 TRADING SCORE")

    service = ScoreService(settings)
    service.update_dynamic_risk_settings(DynamicRiskSettings.from_calendar(calendar))

    c1, c2 = st.columns([1, 2])
    period = c1.selectbox("Period", PERIODS, index=1, format_func=str.capitalize)
    target_date = c2.date_input("Date", date.today())

    try:
        analysis = service.calculate_score(df_trades, period, target_date, settings)
    except Exception as e:
        st.error(f"❌ Score calculation failed: {e}")
        st.stop()

    score = analysis['current_score']
    recommended = calculate_recommended_score(settings)
    trend_icon = {'improving': '📈', 'declining': '📉', 'stable': '➡️'}[analysis['trend']]

    o1, o2, o3 = st.columns(3)
    o1.metric("Overall Score", f"{score['overall']:.0f}", f"{trend_icon} {analysis['trend']}", delta_color="off")
    o2.metric("Recommended", f"{recommended:.0f}")
    o3.metric("Trades in Period", analysis['trade_count'])

    if analysis['trade_count'] < settings['thresholds']['min_trades_for_score']:
        st.info(f"At least {settings['thresholds']['min_trades_for_score']} trades are needed for a score.")

    g1, g2 = st.columns([1, 1])
    g1.plotly_chart(build_score_radar_figure(score, recommended), use_container_width=True)
    with g2:
        for key, label in COMPONENT_LABELS.items():
            comp = analysis['breakdown'][key]
            st.markdown(f"**{label}: {comp['score']:.0f}** (weight {settings['weights'][key]}%)")
            st.progress(min(max(comp['score'] / 100, 0.0), 1.0))
            with st.expander("Factors"):
                for factor, value in comp['factors'].items():
                    st.write(f"{factor.replace('_', ' ').title()}: {value:.0f}")

    a1, a2, a3 = st.columns(3)
    with a1:
        st.subheader("💡 Recommendations")
        for rec in analysis['recommendations'] or ["Keep following your trading plan"]:
            st.write(f"• {rec}")
    with a2:
        st.subheader("💪 Strengths")
        for s in analysis['strengths']:
            st.write(f"• {s}")
    with a3:
        st.subheader("⚠️ Weaknesses")
        for w in analysis['weaknesses']:
            st.write(f"• {w}")

    tag_analysis = analysis['tag_pattern_analysis']
    if tag_analysis and tag_analysis['top_combinations']:
        st.subheader("🏷️ Tag Patterns")
        top = pd.DataFrame(tag_analysis['top_combinations'])
        top['tags'] = top['tags'].apply(lambda t: ' + '.join(t))
        st.dataframe(top[['tags', 'win_rate', 'total_trades', 'total_pnl', 'trend']], hide_index=True,
                     use_container_width=True)
        for insight in tag_analysis['insights']:
            st.info(f"**{insight['title']}** - {insight['description']}")

    st.subheader("📊 History")
    history = service.get_score_history(df_trades, period, 12, settings, reference_date=target_date)
    st.plotly_chart(build_score_history_figure(history), use_container_width=True)

    with st.expander("⚙️ Score Settings"):
        with st.form("score_settings"):
            w = settings['weights']
            w1, w2, w3, w4 = st.columns(4)
            weights = {
                'consistency': w1.number_input("Consistency", 0, 100, int(w['consistency'])),
                'risk_management': w2.number_input("Risk Mgmt", 0, 100, int(w['risk_management'])),
                'performance': w3.number_input("Performance", 0, 100, int(w['performance'])),
                'discipline': w4.number_input("Discipline", 0, 100, int(w['discipline'])),
            }
            t = settings['targets']
            t1, t2, t3, t4 = st.columns(4)
            targets = {
                'win_rate': t1.number_input("Target Win Rate", 0.0, 100.0, float(t['win_rate'])),
                'profit_factor': t2.number_input("Target Profit Factor", 0.0, 20.0, float(t['profit_factor'])),
                'max_drawdown': t3.number_input("Target Max DD", 0.0, 100.0, float(t['max_drawdown'])),
                'avg_risk_reward': t4.number_input("Target R:R", 0.0, 20.0, float(t['avg_risk_reward'])),
            }
            th = settings['thresholds']
            h1, h2 = st.columns(2)
            thresholds = dict(th)
            thresholds['min_trades_for_score'] = h1.number_input("Min Trades", 1, 100, int(th['min_trades_for_score']))
            thresholds['lookback_period'] = h2.number_input("Lookback (days)", 7, 365, int(th['lookback_period']))

            tag_options = sorted(set(extract_tags_from_trades(df_trades))
                                 | set(settings['selected_tags'] or []) | set(settings['excluded_tags_from_patterns'] or []))
            selected_tags = st.multiselect("Tags counted in the trading pattern (empty = all)", tag_options,
                                           default=settings['selected_tags'] or [])
            excluded_tags = st.multiselect("Tags excluded from pattern analysis", tag_options,
                                           default=settings['excluded_tags_from_patterns'] or [])

            if st.form_submit_button("💾 Save Settings"):
                if sum(weights.values()) != 100:
                    st.error("Weights must add up to 100")
                else:
                    new_settings = {**settings, 'weights': weights, 'targets': targets, 'thresholds': thresholds,
                                    'selected_tags': selected_tags, 'excluded_tags_from_patterns': excluded_tags}
                    try:
                        db.update_calendar(calendar_id, {'score_settings': new_settings})
                        st.success("✅ Settings saved")
                        st.rerun()
                    except Exception as e:
                        st.error(f"❌ Save failed: {e}")


# ==============================================================================
# PAGE 5: IMPORT / EXPORT
# ==============================================================================
elif page == "Import / Export":
    require_calendar()
    df_trades = load_calendar_trades()

    st.title("📤 IMPORT / EXPORT")
    tab_exp, tab_imp = st.tabs(["Export", "Import"])

    with tab_exp:
        fmt = st.radio("Format", ['xlsx', 'csv'], horizontal=True)
        result = export_trades(df_trades, float(calendar['account_balance']), fmt)
        if result is None:
            st.info("No trades to export.")
        else:
            data, file_name = result
            st.download_button(f"⬇️ Download {file_name}", data, file_name=file_name)

    with tab_imp:
        uploaded = st.file_uploader("Upload trades (.xlsx or .csv)", type=['xlsx', 'csv'])
        if uploaded is not None:
            try:
                parsed = import_trades(uploaded.getvalue(), uploaded.name)
            except ValueError as e:
                st.error(str(e))
                parsed = []

            if parsed:
                preview = pd.DataFrame(parsed)
                st.dataframe(preview.drop(columns=['id']), hide_index=True, use_container_width=True)
                if st.button(f"✅ Import {len(parsed)} trades", type="primary"):
                    try:
                        count = db.import_trades(calendar_id, parsed)
                        st.success(f"Imported {count} trades")
                    except Exception as e:
                        st.error(f"❌ Import failed: {e}")


# ==============================================================================
# PAGE 6: TRASH
# ==============================================================================
elif page == "Trash":
    st.title("🗑️ TRASH")
    st.caption(f"Calendars are permanently deleted {db.TRASH_RETENTION_DAYS} days after being moved to trash.")

    try:
        df_trash = db.load_trash(USER_ID)
    except Exception as e:
        st.error(f"❌ Failed to load trash: {e}")
        st.stop()

    if df_trash.empty:
        st.info("Trash is empty.")
    for _, row in df_trash.iterrows():
        c1, c2, c3 = st.columns([3, 1, 1])
        c1.markdown(f"**{row['name']}** • {int(row['days_remaining'])} days left")
        if c2.button("♻️ Restore", key=f"restore_{row['id']}"):
            try:
                db.restore_calendar(row['id'])
                st.rerun()
            except Exception as e:
                st.error(f"❌ Restore failed: {e}")
        if c3.button("❌ Delete Forever", key=f"purge_{row['id']}"):
            try:
                db.permanently_delete_calendar(row['id'])
                st.rerun()
            except Exception as e:
                st.error(f"❌ Delete failed: {e}")
