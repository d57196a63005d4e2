# validation.py - Calendar and trade form checks, final trade amount

from datetime import datetime

import pandas as pd

from dynamic_risk import DynamicRiskSettings, calculate_trade_amount
from trade_model import SESSIONS, TRADE_TYPES, normalize_pair_tags

MAX_TARGET_PERCENT = 1000


def _number(value):
    """float(value), or None for blanks and garbage."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(number) else number


# ============================================
# CALENDAR
# ============================================
def validate_calendar(form):
    """
    Check a calendar create/edit form.

    Returns:
        list of error messages (empty when valid)
    """
    errors = []

    if not str(form.get('name') or '').strip():
        errors.append("Calendar name is required")

    balance = _number(form.get('account_balance'))
    if balance is None or balance <= 0:
        errors.append("Account balance must be greater than 0")

    drawdown = _number(form.get('max_daily_drawdown'))
    if drawdown is None or drawdown <= 0 or drawdown > 100:
        errors.append("Max daily drawdown must be between 0 and 100%")

    for key, label in [('weekly_target', 'Weekly'), ('monthly_target', 'Monthly'), ('yearly_target', 'Yearly')]:
        raw = form.get(key)
        if raw is None or str(raw).strip() == '':
            continue
        target = _number(raw)
        if target is None or target < 0 or target > MAX_TARGET_PERCENT:
            errors.append(f"{label} target must be between 0 and {MAX_TARGET_PERCENT}%")

    risk = _number(form.get('risk_per_trade'))
    raw_risk = form.get('risk_per_trade')
    if raw_risk is not None and str(raw_risk).strip() != '':
        if risk is None or risk <= 0 or risk > 100:
            errors.append("Risk per trade must be between 0 and 100%")

    if form.get('dynamic_risk_enabled'):
        if risk is None:
            errors.append("Risk per trade is required for dynamic risk")
        increased = _number(form.get('increased_risk_percentage'))
        if increased is None or increased > 100 or (risk is not None and increased <= risk):
            errors.append("Increased risk must be greater than risk per trade and at most 100%")
        threshold = _number(form.get('profit_threshold_percentage'))
        if threshold is None or threshold <= 0:
            errors.append("Profit threshold must be greater than 0")

    return errors


# ============================================
# TRADE
# ============================================
def missing_required_tag_groups(tags, required_groups):
    """Required groups with no "Group:Value" tag present."""
    if not required_groups:
        return []
    present = {tag.split(':')[0] for tag in (tags or []) if ':' in tag}
    return [group for group in required_groups if group not in present]


def uses_risk_based_amount(form, calendar=None):
    """Amount comes from risk per trade x R:R when the calendar has a risk setting and no partials were taken."""
    if calendar is None or not _number(calendar.get('risk_per_trade')):
        return False
    return _number(form.get('risk_to_reward')) is not None and not form.get('partials_taken')


def validate_trade(form, required_tag_groups=None, calendar=None):
    """
    Check a trade entry form.

    Returns:
        list of error messages (empty when valid)
    """
    errors = []

    if form.get('trade_type') not in TRADE_TYPES:
        errors.append(f"Trade type must be one of: {', '.join(TRADE_TYPES)}")

    if not uses_risk_based_amount(form, calendar):
        amount = _number(form.get('amount'))
        if amount is None:
            errors.append("Amount is required")
        elif amount == 0 and form.get('trade_type') in ('win', 'loss'):
            errors.append("Amount is required")

    if not form.get('session'):
        errors.append("Session is required")
    elif form['session'] not in SESSIONS:
        errors.append(f"Session must be one of: {', '.join(SESSIONS)}")

    rr = _number(form.get('risk_to_reward'))
    if rr is None:
        errors.append("Risk to reward is required")
    elif rr <= 0:
        errors.append("Risk to reward must be greater than 0")

    missing = missing_required_tag_groups(form.get('tags'), required_tag_groups)
    if missing:
        errors.append(f"Missing required tag groups: {', '.join(missing)}. "
                      f"Each trade must include at least one tag from these groups.")

    return errors


def calculate_final_amount(form, all_trades, calendar):
    """Signed P&L to store: losses negative, everything else positive."""
    trade_type = form.get('trade_type')
    if uses_risk_based_amount(form, calendar):
        settings = DynamicRiskSettings.from_calendar(calendar)
        trade_date = form.get('trade_date') or datetime.now()
        amount = calculate_trade_amount(trade_type, _number(form['risk_to_reward']),
                                        trade_date, all_trades, settings)
    else:
        amount = _number(form.get('amount')) or 0.0
    return -abs(amount) if trade_type == 'loss' else abs(amount)


EDITABLE_TRADE_FIELDS = [
    'id', 'name', 'trade_type', 'amount', 'trade_date', 'entry_price', 'exit_price',
    'stop_loss', 'take_profit', 'risk_to_reward', 'partials_taken', 'session', 'notes', 'tags'
]


def edit_form_from_trade(trade, **changes):
    """Form dict for editing a stored trade: every stored field, overridden by the edited ones."""
    form = {}
    for key in EDITABLE_TRADE_FIELDS:
        value = trade.get(key)
        if key != 'tags' and value is not None and pd.isna(value):
            value = None
        form[key] = value
    form.update(changes)
    return form


def prepare_trade_for_save(form, all_trades, calendar):
    """
    Build the trade record the data layer stores.

    Partials taken replaces any Partials:* tag with Partials:Yes.
    """
    tags = normalize_pair_tags([t.strip() for t in (form.get('tags') or []) if t and t.strip()])
    if form.get('partials_taken'):
        tags = [t for t in tags if not t.startswith('Partials:')]
        tags.append('Partials:Yes')

    trade = {
        'name': form.get('name') or None,
        'amount': float(calculate_final_amount(form, all_trades, calendar)),
        'trade_type': form.get('trade_type'),
        'trade_date': pd.Timestamp(form.get('trade_date') or datetime.now()).to_pydatetime(),
        'entry_price': _number(form.get('entry_price')),
        'exit_price': _number(form.get('exit_price')),
        'stop_loss': _number(form.get('stop_loss')),
        'take_profit': _number(form.get('take_profit')),
        'risk_to_reward': _number(form.get('risk_to_reward')),
        'partials_taken': bool(form.get('partials_taken')),
        'session': form.get('session') or None,
        'notes': form.get('notes') or None,
        'tags': tags,
    }
    if form.get('id'):
        trade['id'] = form['id']
    return trade
