"""
Record the last status the router acted on for each ticket.

The mirror is written by the service's own transitions as well as by syncs,
so the mirror diff alone cannot tell whether a status change has been routed.
claim_ticket_route atomically records the status and reports whether this
caller is the first to route it.
"""

from yoyo import step

__depends__ = {"001_initial_schema"}

step(
    "ALTER TABLE tickets ADD COLUMN IF NOT EXISTS last_routed_status TEXT;",
    "ALTER TABLE tickets DROP COLUMN IF EXISTS last_routed_status;",
)

step(
    """
    CREATE OR REPLACE FUNCTION claim_ticket_route(p_external_id TEXT, p_status TEXT)
    RETURNS BOOLEAN
    LANGUAGE plpgsql
    AS $$
    BEGIN
        UPDATE tickets
        SET last_routed_status = p_status
        WHERE external_id = p_external_id
          AND last_routed_status IS DISTINCT FROM p_status;
        RETURN FOUND;
    END;
    $$;
    """,
    "DROP FUNCTION IF EXISTS claim_ticket_route(TEXT, TEXT);",
)
