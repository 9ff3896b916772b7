"""
Appointment Coordinator Database Schema
Supports the appointment registry, status history with its current-status
projection, and reminder plans.
"""

SCHEMA = """
-- =============================================================================
-- 1. APPOINTMENTS - Known appointment ids and their current date/time
-- =============================================================================
CREATE TABLE IF NOT EXISTS appointments (
    id TEXT PRIMARY KEY,
    date TEXT,            -- "2025-01-10", NULL until booked
    time TEXT,            -- "10:00"
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);


-- =============================================================================
-- 2. STATUS_HISTORY - Append-only audit trail of status transitions
-- =============================================================================
CREATE TABLE IF NOT EXISTS status_history (
    appointment_id TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    previous_status TEXT NOT NULL,
    new_status TEXT NOT NULL,
    actor TEXT NOT NULL,
    reason TEXT,
    new_date TEXT,
    new_time TEXT,
    recorded_at TEXT NOT NULL,   -- ISO-8601 UTC
    PRIMARY KEY (appointment_id, sequence),
    FOREIGN KEY (appointment_id) REFERENCES appointments(id)
);

CREATE INDEX IF NOT EXISTS idx_status_history_time ON status_history(recorded_at);


-- =============================================================================
-- 3. STATUS_CURRENT - Projection of the newest history row (rebuildable cache)
-- =============================================================================
CREATE TABLE IF NOT EXISTS status_current (
    appointment_id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (appointment_id) REFERENCES appointments(id)
);

CREATE INDEX IF NOT EXISTS idx_status_current_status ON status_current(status);


-- =============================================================================
-- 4. REMINDER_PLANS - Active plan per appointment, replaced wholesale
-- =============================================================================
CREATE TABLE IF NOT EXISTS reminder_plans (
    appointment_id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL,
    appointment_at TEXT NOT NULL,
    offsets_minutes TEXT NOT NULL,   -- JSON array: [1440, 120]
    channels TEXT NOT NULL,          -- JSON array: ["log", "webhook"]
    created_at TEXT NOT NULL
);


-- =============================================================================
-- 5. REMINDER_ENTRIES - Every reminder ever planned, superseded plans included
-- =============================================================================
CREATE TABLE IF NOT EXISTS reminder_entries (
    id TEXT PRIMARY KEY,
    plan_id TEXT NOT NULL,
    appointment_id TEXT NOT NULL,
    label TEXT NOT NULL,
    offset_minutes INTEGER NOT NULL,
    fire_at TEXT NOT NULL,
    channel TEXT NOT NULL,

    -- State: pending, sent, cancelled, failed
    state TEXT NOT NULL DEFAULT 'pending',
    sent_at TEXT,
    error TEXT
);

CREATE INDEX IF NOT EXISTS idx_reminder_entries_plan ON reminder_entries(plan_id);
CREATE INDEX IF NOT EXISTS idx_reminder_entries_appointment ON reminder_entries(appointment_id);
CREATE INDEX IF NOT EXISTS idx_reminder_entries_state ON reminder_entries(state);
"""
