"""
Supabase schema for the access tables.

Table creation is a one-off migration step run before the engine starts
(see scripts/setup_supabase_tables.py). Nothing on the reconciliation path
checks for or creates tables.
"""

SUPABASE_SCHEMA = """
-- Agent types and their backing directory security group
CREATE TABLE IF NOT EXISTS agent_types (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT UNIQUE NOT NULL,
    display_name TEXT NOT NULL DEFAULT '',
    description TEXT,
    group_id TEXT,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    display_order INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    modified_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- Users onboarded into an organization
CREATE TABLE IF NOT EXISTS organization_users (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL,
    directory_user_id TEXT NOT NULL,
    email TEXT NOT NULL,
    display_name TEXT,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    modified_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT valid_user_status CHECK (status IN ('pending', 'active', 'suspended', 'deleted')),
    UNIQUE (organization_id, directory_user_id)
);

-- Ledger of intended agent type grants (soft delete only)
CREATE TABLE IF NOT EXISTS agent_type_group_assignments (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    agent_type_id UUID NOT NULL REFERENCES agent_types(id),
    organization_id UUID NOT NULL,
    group_id TEXT NOT NULL DEFAULT '',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    assigned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    assigned_by TEXT,
    modified_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_assignments_user_org
    ON agent_type_group_assignments(user_id, organization_id);

CREATE INDEX IF NOT EXISTS idx_assignments_agent_type_org
    ON agent_type_group_assignments(agent_type_id, organization_id);

-- Only one active row per (user, agent type, organization)
CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_one_active
    ON agent_type_group_assignments(user_id, agent_type_id, organization_id)
    WHERE is_active = TRUE;
"""

TABLES = ("agent_types", "organization_users", "agent_type_group_assignments")
