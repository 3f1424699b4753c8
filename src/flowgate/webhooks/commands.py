"""``@<bot> <command>`` comment commands."""

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

CommandAction = Literal["sync", "command"]

SYNC_COMMANDS = frozenset({"sync", "refresh"})
STATUS_COMMANDS = frozenset({"status", "info"})


class CommentCommand(BaseModel):
    action: CommandAction
    command: str
    args: List[str] = Field(default_factory=list)


def parse_command(body: str, bot_name: str) -> Optional[CommentCommand]:
    """Find the first ``@<bot_name> <word> [args]`` mention in a comment.

    The mention and command word match case-insensitively; arguments keep
    their case. ``sync`` and ``refresh`` map to a ticket sync; ``info`` is an
    alias of ``status``.
    """
    pattern = re.compile(rf"@{re.escape(bot_name)}\s+(\w+)(?:[ \t]+(.*))?", re.IGNORECASE)
    match = pattern.search((body or "").strip())
    if not match:
        return None

    command = match.group(1).lower()
    args = (match.group(2) or "").split()
    if command in SYNC_COMMANDS:
        return CommentCommand(action="sync", command=command, args=args)
    if command in STATUS_COMMANDS:
        return CommentCommand(action="command", command="status", args=args)
    return CommentCommand(action="command", command=command, args=args)


def not_implemented_message(command: CommentCommand) -> str:
    return f'Command "{command.command}" received but not yet implemented'
