"""
Database Migration Runner
Creates the users, calendars and trades tables for the trading journal
"""

import db_layer as db

TABLES = ['users', 'calendars', 'trades']

MIGRATION_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

-- Users
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) NOT NULL UNIQUE,
    display_name VARCHAR(255),
    provider VARCHAR(50) DEFAULT 'local',
    is_active BOOLEAN DEFAULT TRUE,
    last_login TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Calendars (one per trading account)
CREATE TABLE IF NOT EXISTS calendars (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name VARCHAR(255) NOT NULL,
    account_balance NUMERIC(15, 2) NOT NULL CHECK (account_balance > 0),
    max_daily_drawdown NUMERIC(6, 2) NOT NULL CHECK (max_daily_drawdown > 0 AND max_daily_drawdown <= 100),
    weekly_target NUMERIC(8, 2),
    monthly_target NUMERIC(8, 2),
    yearly_target NUMERIC(8, 2),
    risk_per_trade NUMERIC(6, 2),
    dynamic_risk_enabled BOOLEAN DEFAULT FALSE,
    increased_risk_percentage NUMERIC(6, 2),
    profit_threshold_percentage NUMERIC(8, 2),
    required_tag_groups TEXT[] DEFAULT '{}',
    tags TEXT[] DEFAULT '{}',
    score_settings JSONB,
    duplicated_calendar BOOLEAN DEFAULT FALSE,
    source_calendar_id UUID,
    deleted_at TIMESTAMP,
    deleted_by UUID,
    auto_delete_at TIMESTAMP,

    -- Calculated statistics (refreshed by db_layer.refresh_calendar_stats)
    win_rate NUMERIC(6, 2) DEFAULT 0,
    profit_factor NUMERIC(10, 4) DEFAULT 0,
    max_drawdown NUMERIC(6, 2) DEFAULT 0,
    target_progress NUMERIC(6, 2) DEFAULT 0,
    pnl_performance NUMERIC(6, 2) DEFAULT 0,
    total_trades INTEGER DEFAULT 0,
    win_count INTEGER DEFAULT 0,
    loss_count INTEGER DEFAULT 0,
    total_pnl NUMERIC(15, 2) DEFAULT 0,
    drawdown_start_date TIMESTAMP,
    drawdown_end_date TIMESTAMP,
    drawdown_recovery_needed NUMERIC(10, 2) DEFAULT 0,
    drawdown_duration INTEGER DEFAULT 0,
    avg_win NUMERIC(15, 2) DEFAULT 0,
    avg_loss NUMERIC(15, 2) DEFAULT 0,
    current_balance NUMERIC(15, 2) DEFAULT 0,
    weekly_pnl NUMERIC(15, 2) DEFAULT 0,
    monthly_pnl NUMERIC(15, 2) DEFAULT 0,
    yearly_pnl NUMERIC(15, 2) DEFAULT 0,
    weekly_pnl_percentage NUMERIC(6, 2) DEFAULT 0,
    monthly_pnl_percentage NUMERIC(6, 2) DEFAULT 0,
    yearly_pnl_percentage NUMERIC(6, 2) DEFAULT 0,
    weekly_progress NUMERIC(6, 2) DEFAULT 0,
    monthly_progress NUMERIC(6, 2) DEFAULT 0,

    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Trades
CREATE TABLE IF NOT EXISTS trades (
    id UUID PRIMARY KEY,
    calendar_id UUID NOT NULL REFERENCES calendars(id) ON DELETE CASCADE,
    user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name VARCHAR(255),
    amount NUMERIC(15, 2) NOT NULL,
    trade_type VARCHAR(10) NOT NULL CHECK (trade_type IN ('win', 'loss', 'breakeven')),
    trade_date TIMESTAMP NOT NULL,
    entry_price NUMERIC(15, 5),
    exit_price NUMERIC(15, 5),
    stop_loss NUMERIC(15, 5),
    take_profit NUMERIC(15, 5),
    risk_to_reward NUMERIC(8, 2),
    partials_taken BOOLEAN DEFAULT FALSE,
    session VARCHAR(10) CHECK (session IN ('Asia', 'London', 'NY AM', 'NY PM')),
    notes TEXT,
    tags TEXT[] DEFAULT '{}',
    is_pinned BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_calendars_user ON calendars (user_id);
CREATE INDEX IF NOT EXISTS idx_calendars_deleted ON calendars (deleted_at);
CREATE INDEX IF NOT EXISTS idx_trades_calendar_date ON trades (calendar_id, trade_date);
CREATE INDEX IF NOT EXISTS idx_trades_tags ON trades USING GIN (tags);
"""


def run_migration():
    """Create the journal tables"""

    try:
        print("🔄 Running migration to create journal tables...")

        with db.get_db_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(MIGRATION_SQL)
                conn.commit()

                # Verify tables were created
                cur.execute("""
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_name = ANY(%s)
                """, (TABLES,))

                created = {row[0] for row in cur.fetchall()}
                missing = [t for t in TABLES if t not in created]

                if missing:
                    print(f"❌ Tables were not created: {', '.join(missing)}")
                    return False

                print("✅ SUCCESS! users, calendars and trades tables ready")
                for table in TABLES:
                    cur.execute("""
                        SELECT column_name, data_type, is_nullable
                        FROM information_schema.columns
                        WHERE table_name = %s
                        ORDER BY ordinal_position
                    """, (table,))
                    print(f"\n📋 {table}:")
                    for col in cur.fetchall():
                        print(f"   - {col[0]}: {col[1]} (nullable: {col[2]})")

                print("\n🎉 Migration complete!")

    except Exception as e:
        print(f"❌ Migration failed: {e}")
        return False

    return True


if __name__ == "__main__":
    print("Testing database connection...")
    if db.test_connection():
        print("✅ Database connected\n")
        run_migration()
    else:
        print("❌ Cannot connect to database. Check your database configuration.")
