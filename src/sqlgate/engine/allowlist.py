"""Statement allowlist.

A statement passes when either:
    - its normalized text equals one of the allowlisted statements, or
    - every table it references permits the statement's operation

With the policy empty, nothing passes. A statement with a FROM or JOIN target
the table scanner cannot read is never matched by table rules. Normalization collapses whitespace,
drops a trailing semicolon and ignores case, so formatting differences do
not matter.
"""

from __future__ import annotations

import logging
import re

from .config import AllowlistPolicy
from .exceptions import SecurityRejection
from .sqltext import (
    statement_operation,
    strip_comments,
    table_key,
    table_refs,
    unreadable_sources,
)

logger = logging.getLogger(__name__)

REJECTION_MESSAGE = "Query not allowed"

_WHITESPACE = re.compile(r"\s+")
# PRAGMA table_info("users") and friends name their table in parentheses
_PRAGMA_TABLE = re.compile(r"^\s*PRAGMA\s+\w+\s*\(\s*([^)\s]+)\s*\)", re.IGNORECASE)


def normalize_statement(sql: str) -> str:
    return _WHITESPACE.sub(" ", sql).strip().rstrip(";").strip().lower()


class Allowlist:
    """Checks statements against an AllowlistPolicy."""

    def __init__(self, policy: AllowlistPolicy, dialect: str = "sqlite"):
        self.policy = policy
        self.dialect = dialect
        self._statements = {normalize_statement(s) for s in policy.statements}

    def is_allowed(self, sql: str) -> bool:
        if normalize_statement(sql) in self._statements:
            return True
        if not self.policy.tables:
            return False

        sql = strip_comments(sql, self.dialect)
        # A table the scanner cannot name cannot be checked against the policy
        if unreadable_sources(sql, self.dialect):
            return False

        operation = statement_operation(sql, self.dialect)
        tables = {ref.name for ref in table_refs(sql, self.dialect)}
        pragma = _PRAGMA_TABLE.match(sql)
        if pragma:
            tables.add(table_key(pragma.group(1)))
        if operation is None or not tables:
            return False
        return all(operation in self.policy.tables.get(table, []) for table in tables)

    def check(self, sql: str) -> None:
        """Raise SecurityRejection unless the statement is allowed."""
        if not self.is_allowed(sql):
            logger.warning(f"Allowlist rejected statement: {normalize_statement(sql)[:200]}")
            raise SecurityRejection(REJECTION_MESSAGE, sql=sql)
