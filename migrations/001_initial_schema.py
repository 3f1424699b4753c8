"""
Initial schema migration for flowgate.

Creates the tickets, comments and questions tables that mirror the tracker,
their indexes, and the updated_at triggers.
"""

from yoyo import step

__depends__ = {}

# Ticket mirror; rows are never hard-deleted by the service
step(
    """
    CREATE TABLE IF NOT EXISTS tickets (
        id SERIAL PRIMARY KEY,
        external_id TEXT NOT NULL UNIQUE,
        identifier TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        status TEXT NOT NULL,
        priority TEXT NOT NULL DEFAULT 'medium'
            CHECK (priority IN ('critical', 'high', 'medium', 'low')),
        labels TEXT[] NOT NULL DEFAULT '{}',
        parent_external_id TEXT,
        project_id TEXT,
        awaiting_answers BOOLEAN NOT NULL DEFAULT false,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ DEFAULT now(),
        updated_at TIMESTAMPTZ DEFAULT now()
    );
    """,
    "DROP TABLE IF EXISTS tickets CASCADE;",
)

step(
    """
    CREATE TABLE IF NOT EXISTS comments (
        id SERIAL PRIMARY KEY,
        external_id TEXT NOT NULL UNIQUE,
        ticket_external_id TEXT NOT NULL REFERENCES tickets(external_id) ON DELETE CASCADE,
        body TEXT NOT NULL DEFAULT '',
        author_id TEXT,
        author_name TEXT,
        parent_external_id TEXT,
        created_at TIMESTAMPTZ DEFAULT now(),
        updated_at TIMESTAMPTZ DEFAULT now()
    );
    """,
    "DROP TABLE IF EXISTS comments CASCADE;",
)

# One row per clarification question; a question comment is tracked once
step(
    """
    CREATE TABLE IF NOT EXISTS questions (
        id SERIAL PRIMARY KEY,
        ticket_external_id TEXT NOT NULL REFERENCES tickets(external_id) ON DELETE CASCADE,
        comment_external_id TEXT NOT NULL UNIQUE,
        question TEXT NOT NULL DEFAULT '',
        answered BOOLEAN NOT NULL DEFAULT false,
        answer TEXT,
        answer_comment_external_id TEXT,
        answered_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT now()
    );
    """,
    "DROP TABLE IF EXISTS questions CASCADE;",
)

step(
    """
    CREATE INDEX IF NOT EXISTS idx_tickets_parent_external_id ON tickets(parent_external_id);
    """,
    "DROP INDEX IF EXISTS idx_tickets_parent_external_id;",
)

step(
    """
    CREATE INDEX IF NOT EXISTS idx_tickets_status ON tickets(status);
    """,
    "DROP INDEX IF EXISTS idx_tickets_status;",
)

step(
    """
    CREATE INDEX IF NOT EXISTS idx_comments_ticket_external_id ON comments(ticket_external_id);
    """,
    "DROP INDEX IF EXISTS idx_comments_ticket_external_id;",
)

step(
    """
    CREATE INDEX IF NOT EXISTS idx_questions_ticket_external_id ON questions(ticket_external_id);
    """,
    "DROP INDEX IF EXISTS idx_questions_ticket_external_id;",
)

step(
    """
    CREATE OR REPLACE FUNCTION update_updated_at_column()
    RETURNS TRIGGER AS $$
    BEGIN
        NEW.updated_at = now();
        RETURN NEW;
    END;
    $$ language 'plpgsql';
    """,
    "DROP FUNCTION IF EXISTS update_updated_at_column();",
)

step(
    """
    CREATE TRIGGER update_tickets_updated_at
    BEFORE UPDATE ON tickets
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
    """,
    "DROP TRIGGER IF EXISTS update_tickets_updated_at ON tickets;",
)

step(
    """
    CREATE TRIGGER update_comments_updated_at
    BEFORE UPDATE ON comments
    FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
    """,
    "DROP TRIGGER IF EXISTS update_comments_updated_at ON comments;",
)
