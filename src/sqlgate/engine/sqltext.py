"""Lightweight SQL text scanning.

No parsing: these helpers find words outside string literals, quoted
identifiers and comments, track parenthesis depth, and pull table names
out of FROM/JOIN/INTO/UPDATE/TABLE positions. That is enough for the
allowlist and row-level security stages.

Every helper takes the target dialect. For mysql, ``#`` starts a comment
and a backslash escapes the next character inside string literals.

A FROM or JOIN target the scanner cannot read (a string literal, a comment
standing in for the name, anything that is not an identifier, a
parenthesized table, or a subquery) is reported by ``unreadable_sources``
so the security stages can refuse the statement instead of guessing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

STATEMENT_KEYWORDS = frozenset(
    {"SELECT", "INSERT", "UPDATE", "DELETE", "REPLACE", "CREATE", "ALTER", "DROP", "PRAGMA"}
)

# Words that end a table reference instead of naming an alias
RESERVED = frozenset(
    {
        "WHERE", "GROUP", "ORDER", "LIMIT", "OFFSET", "HAVING", "WINDOW", "RETURNING",
        "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "NATURAL", "OUTER", "ON",
        "USING", "SET", "UNION", "EXCEPT", "INTERSECT", "VALUES", "SELECT", "DEFAULT",
        "FROM", "AS", "INDEXED", "NOT", "IF", "WITH",
    }
)

# First word of a parenthesized FROM/JOIN target that makes it a subquery
SUBQUERY_START = frozenset({"SELECT", "WITH", "VALUES"})

_IDENT = r"(?:`[^`]+`|\"[^\"]+\"|\[[^\]]+\]|[A-Za-z_][\w$]*)"
_IDENT_PART = re.compile(_IDENT)
_TABLE_REF = re.compile(
    rf"\s*((?:{_IDENT}\s*\.\s*)?{_IDENT})(?:\s+(?:AS\s+)?({_IDENT}))?",
    re.IGNORECASE,
)
_COMMA = re.compile(r"\s*,")
_OPEN_PAREN = re.compile(r"\s*\(")
_CLOSE_PAREN = re.compile(r"\s*\)")


@dataclass(frozen=True)
class Word:
    """A bare word found in SQL text."""

    start: int
    end: int
    text: str
    depth: int

    @property
    def upper(self) -> str:
        return self.text.upper()


@dataclass(frozen=True)
class TableRef:
    """A table reference following FROM/JOIN/INTO/UPDATE/TABLE."""

    start: int
    end: int
    name: str
    written: str
    alias: str | None
    depth: int

    @property
    def qualifier(self) -> str:
        """How columns of this table are qualified in the statement."""
        return self.alias or self.written


def unquote(identifier: str) -> str:
    identifier = identifier.strip()
    if len(identifier) >= 2 and identifier[0] + identifier[-1] in ('""', "``", "[]"):
        return identifier[1:-1]
    return identifier


def table_key(written: str) -> str:
    """Comparable table name: last dotted part, unquoted, lowercased."""
    parts = _IDENT_PART.findall(written)
    return unquote(parts[-1] if parts else written).lower()


def _quoted_end(sql: str, i: int, dialect: str) -> int:
    """Index just past the quoted run opening at ``sql[i]``."""
    quote = sql[i]
    n = len(sql)
    j = i + 1
    while j < n:
        ch = sql[j]
        if ch == "\\" and dialect == "mysql" and quote != "`":
            j += 2
        elif ch == quote:
            # Doubled quote is an escaped quote inside the literal
            if j + 1 < n and sql[j + 1] == quote:
                j += 2
            else:
                return j + 1
        else:
            j += 1
    return n


def _comment_end(sql: str, i: int, dialect: str) -> int | None:
    """Index just past the comment opening at ``i``, or None if none opens there."""
    if sql.startswith("--", i) or (dialect == "mysql" and sql[i] == "#"):
        newline = sql.find("\n", i)
        return len(sql) if newline == -1 else newline + 1
    if sql.startswith("/*", i):
        close = sql.find("*/", i + 2)
        return len(sql) if close == -1 else close + 2
    return None


def scan_words(sql: str, dialect: str = "sqlite") -> list[Word]:
    """Bare words with their paren depth, skipping literals and comments."""
    words: list[Word] = []
    depth = 0
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        comment_end = _comment_end(sql, i, dialect)
        if comment_end is not None:
            i = comment_end
        elif ch in ("'", '"', "`"):
            i = _quoted_end(sql, i, dialect)
        elif ch == "[":
            close = sql.find("]", i + 1)
            i = n if close == -1 else close + 1
        elif ch == "(":
            depth += 1
            i += 1
        elif ch == ")":
            depth = max(depth - 1, 0)
            i += 1
        elif ch.isalpha() or ch == "_":
            j = i + 1
            while j < n and (sql[j].isalnum() or sql[j] in "_$"):
                j += 1
            # :name placeholders and the column half of t.col are not words
            if i == 0 or sql[i - 1] not in ":@$.":
                words.append(Word(i, j, sql[i:j], depth))
            i = j
        elif ch.isdigit():
            j = i + 1
            while j < n and (sql[j].isalnum() or sql[j] in "_."):
                j += 1
            i = j
        else:
            i += 1
    return words


def strip_comments(sql: str, dialect: str = "sqlite") -> str:
    """Replace comments outside literals with a single space."""
    out: list[str] = []
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        comment_end = _comment_end(sql, i, dialect)
        if comment_end is not None:
            out.append(" ")
            i = comment_end
        elif ch in ("'", '"', "`"):
            end = _quoted_end(sql, i, dialect)
            out.append(sql[i:end])
            i = end
        elif ch == "[":
            close = sql.find("]", i + 1)
            end = n if close == -1 else close + 1
            out.append(sql[i:end])
            i = end
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def statement_operation(sql: str, dialect: str = "sqlite") -> str | None:
    """Lowercased verb of the statement; the main verb for WITH/EXPLAIN."""
    words = scan_words(sql, dialect)
    if not words:
        return None
    first = words[0].upper
    if first in ("WITH", "EXPLAIN"):
        for word in words[1:]:
            if word.depth == 0 and word.upper in STATEMENT_KEYWORDS:
                return word.upper.lower()
        return None
    return first.lower()


def _refs_after(sql: str, word: Word) -> tuple[list[TableRef], bool]:
    """Table references following ``word``, and whether the target was readable.

    Parentheses around a table or a join clause are stepped into, so
    ``FROM (orders)`` yields ``orders`` one level deeper than the keyword.
    A parenthesized subquery yields nothing here; its own FROM is scanned
    separately.
    """
    refs: list[TableRef] = []
    pos = word.end
    nested = 0
    while True:
        opening = _OPEN_PAREN.match(sql, pos)
        while opening:
            nested += 1
            pos = opening.end()
            opening = _OPEN_PAREN.match(sql, pos)

        match = _TABLE_REF.match(sql, pos)
        if not match:
            return refs, False
        written = match.group(1)
        if nested and written.upper() in SUBQUERY_START:
            return refs, True
        if unquote(written).upper() in RESERVED:
            return refs, False

        alias = match.group(2)
        end = match.end()
        if alias and alias.upper() in RESERVED:
            alias = None
            end = match.end(1)
        refs.append(
            TableRef(
                start=match.start(1),
                end=end,
                name=table_key(written),
                written=written,
                alias=alias,
                depth=word.depth + nested,
            )
        )

        pos = end
        closing = _CLOSE_PAREN.match(sql, pos) if nested else None
        while closing:
            nested -= 1
            pos = closing.end()
            closing = _CLOSE_PAREN.match(sql, pos) if nested else None

        # FROM a, b
        comma = _COMMA.match(sql, pos)
        if word.upper != "FROM" or not comma:
            return refs, True
        pos = comma.end()


def _is_source_keyword(words: list[Word], index: int) -> bool:
    """FROM or JOIN introducing a row source, not ``IS [NOT] DISTINCT FROM``."""
    kw = words[index].upper
    if kw == "JOIN":
        return True
    if kw != "FROM":
        return False
    before = [w.upper for w in words[max(index - 3, 0) : index]]
    return not (before[-1:] == ["DISTINCT"] and before[-2:-1] in (["IS"], ["NOT"]))


def table_refs(sql: str, dialect: str = "sqlite") -> list[TableRef]:
    """Every table named after FROM, JOIN, INTO, UPDATE or TABLE."""
    refs: list[TableRef] = []
    words = scan_words(sql, dialect)
    for index, word in enumerate(words):
        kw = word.upper
        if kw in ("FROM", "JOIN"):
            if _is_source_keyword(words, index):
                refs.extend(_refs_after(sql, word)[0])
            continue
        if kw not in ("INTO", "UPDATE", "TABLE"):
            continue
        anchor = word
        if kw == "TABLE":
            following = [w.upper for w in words[index + 1 : index + 4]]
            if following[:3] == ["IF", "NOT", "EXISTS"]:
                anchor = words[index + 3]
            elif following[:2] == ["IF", "EXISTS"]:
                anchor = words[index + 2]
        refs.extend(_refs_after(sql, anchor)[0])
    return refs


def read_refs(sql: str, dialect: str = "sqlite") -> list[TableRef]:
    """Table references that read rows (FROM and JOIN positions)."""
    refs: list[TableRef] = []
    words = scan_words(sql, dialect)
    for index, word in enumerate(words):
        if _is_source_keyword(words, index):
            refs.extend(_refs_after(sql, word)[0])
    return refs


def unreadable_sources(sql: str, dialect: str = "sqlite") -> list[Word]:
    """FROM/JOIN keywords whose target the scanner could not read."""
    words = scan_words(sql, dialect)
    return [
        word
        for index, word in enumerate(words)
        if _is_source_keyword(words, index) and not _refs_after(sql, word)[1]
    ]
