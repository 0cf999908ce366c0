"""Splitting SQL scripts into individual statements.

``sqlite3.Connection.executescript`` commits before it runs, which would
break the atomicity of "run a migration and record its version". Scripts
are therefore split and executed one statement at a time inside an
explicit transaction.
"""

from __future__ import annotations

import re
import sqlite3

_COMMENT_RE = re.compile(r"--[^\n]*|/\*.*?\*/", re.DOTALL)


def _has_sql(statement: str) -> bool:
    """True if anything besides comments, whitespace and ';' remains."""
    return bool(_COMMENT_RE.sub("", statement).strip().strip(";").strip())


def split_statements(script: str) -> list[str]:
    """Split a SQL script into complete statements.

    Uses ``sqlite3.complete_statement`` to decide where a statement ends,
    so semicolons inside string literals, comments and trigger bodies do
    not split it.

    Args:
        script: SQL text with zero or more statements.

    Returns:
        Statements in order, each stripped, comment-only fragments dropped.
    """
    statements: list[str] = []
    buffer = ""
    parts = script.split(";")

    for part in parts[:-1]:
        buffer += part + ";"
        if sqlite3.complete_statement(buffer):
            if _has_sql(buffer):
                statements.append(buffer.strip())
            buffer = ""

    buffer += parts[-1]
    if _has_sql(buffer):
        statements.append(buffer.strip())

    return statements


IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")


def quote_identifier(name: str) -> str:
    """Double-quote a table name made of letters, digits and underscores.

    Raises:
        ValueError: If the name contains any other character.
    """
    if not IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return f'"{name}"'
