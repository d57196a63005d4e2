# trade_export_import.py - Spreadsheet export/import of a calendar's trades
#
# Export writes one row per trade with running P&L and balance.
# Import accepts the same layout (or any sheet with a Date column); columns
# it does not know become "Column:Value" tags.

import io
import re
import traceback
from datetime import datetime

import pandas as pd
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from trade_model import TRADE_TYPES, format_pnl, new_trade_id, trade_type_from_amount

EXPORT_COLUMNS = [
    'Date', 'Name', 'Type', 'Amount', 'P&L', 'Cumulative P&L', 'Account Balance',
    'Entry Price', 'Exit Price', 'Tags', 'Risk to Reward', 'Session', 'Notes'
]

COLUMN_WIDTHS = [12, 25, 8, 10, 10, 15, 15, 15, 15, 30, 12, 12, 50]

KNOWN_COLUMNS = {
    'id', 'date', 'Date', 'amount', 'Amount', 'P&L', 'type', 'Type', 'name', 'Name',
    'entry', 'Entry Price', 'exit', 'Exit Price', 'tags', 'Tags', 'riskToReward', 'Risk to Reward',
    'partialsTaken', 'Partials Taken', 'session', 'Session', 'notes', 'Notes',
    'images', 'Images', 'Cumulative P&L', 'Account Balance'
}

DATE_FORMATS = [
    '%m/%d/%Y',   # 01/31/2023, 1/31/2023
    '%Y-%m-%d',   # 2023-01-31
    '%Y/%m/%d',   # 2023/01/31
    '%d/%m/%Y',   # 31/01/2023
    '%d-%m-%Y',   # 31-01-2023
    '%m-%d-%Y',   # 01-31-2023, 1-31-2023
    '%B %d, %Y',  # March 7, 2025
    '%b %d, %Y',  # Mar 7, 2025
]

MONTH_NAME_RE = re.compile(
    r'(January|February|March|April|May|June|July|August|September|October|November|December)'
    r'\s+(\d{1,2})(?:st|nd|rd|th)?(?:,)?\s+(\d{4})',
    re.IGNORECASE
)
MONTHS = ['january', 'february', 'march', 'april', 'may', 'june',
          'july', 'august', 'september', 'october', 'november', 'december']


# ============================================
# EXPORT
# ============================================
def _blank(value):
    return value is None or (isinstance(value, float) and pd.isna(value)) or value == ''


def prepare_trade_data_for_export(trades, initial_balance=0):
    """Trades sorted by date with running P&L and account balance, in export column order."""
    ordered = trades.sort_values('trade_date', kind='mergesort')

    rows = []
    cumulative = 0.0
    balance = float(initial_balance or 0)
    for _, trade in ordered.iterrows():
        amount = float(trade['amount'])
        cumulative += amount
        balance += amount
        rr = trade.get('risk_to_reward')
        rows.append({
            'Date': pd.Timestamp(trade['trade_date']).strftime('%m/%d/%Y'),
            'Name': '' if _blank(trade.get('name')) else trade['name'],
            'Type': str(trade['trade_type']).capitalize(),
            'Amount': amount,
            'P&L': format_pnl(amount),
            'Cumulative P&L': format_pnl(cumulative),
            'Account Balance': f"{balance:.2f}",
            'Entry Price': '' if _blank(trade.get('entry_price')) or not trade['entry_price'] else trade['entry_price'],
            'Exit Price': '' if _blank(trade.get('exit_price')) or not trade['exit_price'] else trade['exit_price'],
            'Tags': ', '.join(trade.get('tags') or []),
            'Risk to Reward': '' if _blank(rr) or not rr else f"{float(rr):.2f}",
            'Session': '' if _blank(trade.get('session')) else trade['session'],
            'Notes': '' if _blank(trade.get('notes')) else trade['notes'],
        })
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def _to_xlsx_bytes(df):
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        df.to_excel(writer, sheet_name='Trades', index=False)
        worksheet = writer.sheets['Trades']

        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        for cell in worksheet[1]:
            cell.font = Font(bold=True, color="FFFFFF")
            cell.fill = header_fill

        for idx, width in enumerate(COLUMN_WIDTHS, start=1):
            worksheet.column_dimensions[get_column_letter(idx)].width = width
    return buffer.getvalue()


def export_trades(trades, initial_balance=0, file_format='xlsx'):
    """
    Serialize trades for download.

    Returns:
        (bytes, file_name) or None when there is nothing to export
    """
    if trades is None or len(trades) == 0:
        return None
    if file_format not in ('xlsx', 'csv'):
        raise ValueError(f"Unsupported export format '{file_format}'")

    df = prepare_trade_data_for_export(trades, initial_balance)
    file_name = f"trades_{datetime.now().strftime('%Y-%m-%d')}.{file_format}"

    if file_format == 'xlsx':
        return _to_xlsx_bytes(df), file_name
    return df.to_csv(index=False).encode('utf-8'), file_name


# ============================================
# IMPORT
# ============================================
def parse_date(value):
    """Parse an import date cell, trying the known formats before giving up on today."""
    if isinstance(value, (datetime, pd.Timestamp)):
        return pd.Timestamp(value).to_pydatetime()

    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    match = MONTH_NAME_RE.search(text)
    if match:
        month, day, year = match.groups()
        try:
            return datetime(int(year), MONTHS.index(month.lower()) + 1, int(day))
        except ValueError:
            pass

    parsed = pd.to_datetime(text, errors='coerce')
    if not pd.isna(parsed):
        return parsed.to_pydatetime()

    print(f"⚠️ Could not parse date: {text}. Using current date instead.")
    return datetime.now()


def _cell(value):
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return ''
    if isinstance(value, str):
        return value.strip()
    return value


def _float_or_none(value):
    if value == '':
        return None
    try:
        return float(str(value).replace(',', ''))
    except ValueError:
        return None


def parse_trade_rows(rows):
    """Turn sheet rows (dicts keyed by header) into trade records."""
    trades = []
    for raw in rows:
        row = {str(k).strip(): _cell(v) for k, v in raw.items()}
        if row.get('Date', '') == '':
            continue

        if row.get('Amount', '') != '':
            amount = _float_or_none(row['Amount'])
        else:
            amount = _float_or_none(row.get('P&L', '') or '0')
        if amount is None:
            print(f"⚠️ Could not parse amount: {row.get('Amount') or row.get('P&L')}. Using 0 instead.")
            amount = 0.0

        tags = [t.strip() for t in str(row.get('Tags', '')).split(',') if t.strip()]
        for header, value in row.items():
            if header in KNOWN_COLUMNS or header.startswith('Unnamed:') or value == '':
                continue
            for part in str(value).split(','):
                if part.strip():
                    tags.append(f"{header}:{part.strip()}")

        type_text = str(row.get('Type', '')).lower()
        trade_type = type_text if type_text in TRADE_TYPES else trade_type_from_amount(amount)

        trade = {
            'id': new_trade_id(),
            'trade_date': parse_date(row['Date']),
            'trade_type': trade_type,
            'amount': amount,
            'tags': tags,
        }
        if row.get('Name', '') != '':
            trade['name'] = str(row['Name'])
        if row.get('Entry Price', '') != '':
            trade['entry_price'] = _float_or_none(row['Entry Price'])
        if row.get('Exit Price', '') != '':
            trade['exit_price'] = _float_or_none(row['Exit Price'])
        if row.get('Risk to Reward', '') != '':
            trade['risk_to_reward'] = _float_or_none(row['Risk to Reward'])
        if row.get('Session', '') != '':
            trade['session'] = str(row['Session'])
        if row.get('Notes', '') != '':
            trade['notes'] = str(row['Notes'])
        trades.append(trade)
    return trades


def _read_csv(file_bytes):
    df = pd.read_csv(io.BytesIO(file_bytes), dtype=str, keep_default_na=False, skip_blank_lines=True)
    df.columns = [str(c).strip() for c in df.columns]
    if 'Date' not in df.columns:
        raise ValueError('CSV file must contain a "Date" column')
    rows = [r for r in df.to_dict('records') if str(r.get('Date', '')).strip()]
    if not rows:
        raise ValueError('No valid data rows found in the CSV file')
    return rows


def _read_excel(file_bytes):
    df = pd.read_excel(io.BytesIO(file_bytes), sheet_name=0, engine='openpyxl')
    if df.empty:
        raise ValueError('No data found in the Excel file')
    df.columns = [str(c).strip() for c in df.columns]
    if 'Date' not in df.columns or _cell(df['Date'].iloc[0]) == '':
        raise ValueError('Excel file must contain a "Date" column')
    return df.to_dict('records')


def import_trades(file_bytes, file_name):
    """
    Parse an uploaded .csv/.xlsx into trade records (not yet saved).

    Raises:
        ValueError: "Failed to parse import file. <reason>"
    """
    extension = file_name.rsplit('.', 1)[-1].lower() if '.' in file_name else ''
    try:
        rows = _read_csv(file_bytes) if extension == 'csv' else _read_excel(file_bytes)
        return parse_trade_rows(rows)
    except Exception as e:
        print(f"❌ Import error: {e}")
        print(traceback.format_exc())
        raise ValueError(f"Failed to parse import file. {e}") from e
