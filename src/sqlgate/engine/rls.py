"""Row-level security: inject row-visibility predicates into statements.

For a SELECT, UPDATE or DELETE, every top-level table reference with a
matching policy gets ``<qualifier>.<column> <op> <value>`` ANDed into the
statement's top-level WHERE clause. If the statement has no WHERE clause
one is inserted before GROUP BY / ORDER BY / LIMIT / RETURNING.

Example (policy: orders.user_id = context.id(), subject "42"):

    SELECT * FROM orders o WHERE o.status = 'open' ORDER BY id
    ->
    SELECT * FROM orders o WHERE o."user_id" = '42' AND (o.status = 'open') ORDER BY id

Statements the rewriter cannot confine are rejected instead of passed through:
    - a protected table read inside a subquery, a CTE or parentheses
    - a compound (UNION/EXCEPT/INTERSECT) statement touching a protected table
    - INSERT ... SELECT and other non-rewritable statements reading one
    - any FROM or JOIN target the scanner cannot read, policed table or not

Comments (including mysql ``#`` comments) are stripped before rewriting.
"""

from __future__ import annotations

import logging

from .config import RlsPolicy
from .exceptions import SecurityRejection
from .sqltext import (
    TableRef,
    Word,
    read_refs,
    scan_words,
    statement_operation,
    strip_comments,
    table_refs,
    unreadable_sources,
)

logger = logging.getLogger(__name__)

CONTEXT_ID = "context.id()"
REWRITABLE = ("select", "update", "delete")
COMPOUND = frozenset({"UNION", "EXCEPT", "INTERSECT"})
TERMINATORS = frozenset(
    {"GROUP", "ORDER", "LIMIT", "OFFSET", "HAVING", "WINDOW", "RETURNING", "FETCH", "FOR"}
)


def quote_identifier(name: str, dialect: str) -> str:
    """Quote an identifier for the dialect: backticks for mysql, double quotes otherwise."""
    if dialect == "mysql":
        return "`" + name.replace("`", "``") + "`"
    return '"' + name.replace('"', '""') + '"'


def render_literal(value: object, dialect: str) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if dialect in ("postgres", "postgresql"):
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


class RowLevelSecurity:
    """Rewrites statements with the configured row policies.

    Attributes:
        policies: Row policies, matched case-insensitively by table
        dialect: Target SQL dialect, selects identifier quoting
        subject: Caller identity substituted for ``context.id()``
    """

    def __init__(
        self, policies: list[RlsPolicy], dialect: str = "sqlite", subject: str | None = None
    ):
        self.policies = policies
        self.dialect = dialect
        self.subject = subject

    def _value(self, policy: RlsPolicy) -> object:
        if isinstance(policy.value, str) and policy.value.strip() == CONTEXT_ID:
            return self.subject
        return policy.value

    def _predicate(self, ref: TableRef, policy: RlsPolicy) -> str:
        column = quote_identifier(policy.column, self.dialect)
        value = render_literal(self._value(policy), self.dialect)
        return f"{ref.qualifier}.{column} {policy.operator} {value}"

    def rewrite(self, sql: str) -> str:
        """Return ``sql`` with predicates injected, or unchanged when no policy applies.

        Raises:
            SecurityRejection: If a protected table is read where no predicate can reach it
        """
        if not self.policies:
            return sql

        original = sql
        # A trailing comment would swallow an appended predicate
        sql = strip_comments(sql, self.dialect)
        if unreadable_sources(sql, self.dialect):
            raise SecurityRejection(
                "Row-level security cannot read every table this statement selects from",
                sql=original,
            )

        protected = {p.table.lower() for p in self.policies}
        all_refs = table_refs(sql, self.dialect)
        touched = {ref.name for ref in all_refs} & protected
        if not touched:
            return original

        words = scan_words(sql, self.dialect)
        operation = statement_operation(sql, self.dialect)

        if any(w.depth == 0 and w.upper in COMPOUND for w in words):
            raise SecurityRejection(
                "Row-level security cannot be applied to compound statements", sql=original
            )

        readable = {p.table.lower() for p in self.policies if "select" in p.actions}
        for ref in read_refs(sql, self.dialect):
            if ref.name not in readable:
                continue
            if ref.depth > 0:
                raise SecurityRejection(
                    f"Row-level security cannot be applied to nested reads of '{ref.name}'",
                    sql=original,
                )
            if operation not in REWRITABLE:
                raise SecurityRejection(
                    f"Row-level security cannot be applied to {operation} reading '{ref.name}'",
                    sql=original,
                )

        if operation not in REWRITABLE:
            return original

        verb = next((w for w in words if w.depth == 0 and w.upper == operation.upper()), None)
        if verb is None:
            raise SecurityRejection(
                "Row-level security cannot be applied to parenthesized statements", sql=original
            )
        targets = [
            ref for ref in all_refs if ref.depth == 0 and ref.start > verb.start
            and not self._is_insert_target(words, ref)
        ]

        predicates = [
            self._predicate(ref, policy)
            for ref in targets
            for policy in self.policies
            if policy.table.lower() == ref.name and operation in policy.actions
        ]
        if not predicates:
            return original

        rewritten = self._inject(sql, words, targets, " AND ".join(predicates))
        logger.debug(f"RLS rewrote {operation} on {sorted(touched)}")
        return rewritten

    @staticmethod
    def _is_insert_target(words: list[Word], ref: TableRef) -> bool:
        before = [w for w in words if w.end <= ref.start]
        return bool(before) and before[-1].upper == "INTO"

    @staticmethod
    def _inject(sql: str, words: list[Word], targets: list[TableRef], predicate: str) -> str:
        body_end = len(sql.rstrip().rstrip(";").rstrip())
        tail = sql[body_end:].strip()
        after_targets = max(ref.end for ref in targets)
        top = [
            w for w in words if w.depth == 0 and after_targets <= w.start < body_end
        ]

        where = next((w for w in top if w.upper == "WHERE"), None)
        if where is not None:
            stop = next(
                (w.start for w in top if w.start > where.start and w.upper in TERMINATORS),
                body_end,
            )
            existing = sql[where.end:stop].strip()
            rest = sql[stop:body_end].strip()
            rewritten = f"{sql[:where.start]}WHERE {predicate} AND ({existing})"
        else:
            stop = next((w.start for w in top if w.upper in TERMINATORS), body_end)
            rest = sql[stop:body_end].strip()
            rewritten = f"{sql[:stop].rstrip()} WHERE {predicate}"

        if rest:
            rewritten += f" {rest}"
        return rewritten + tail
