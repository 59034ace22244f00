"""SQL reference extraction for views and named queries."""

from __future__ import annotations

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from core.constants import SQL_DIALECT
from core.errors import InvalidSqlError


def referenced_relations(sql_text: str) -> tuple[str, ...]:
    """Return table and view names read by the SQL text.

    Names are returned in first-appearance order. Common table
    expressions and views created by earlier statements in the same
    text are excluded. For ``CREATE VIEW`` statements only the view
    body is inspected.

    Raises:
        InvalidSqlError: If the text cannot be parsed.
    """
    references: dict[str, None] = {}
    created_names: set[str] = set()
    for statement in parse_statements(sql_text):
        body = statement.expression if isinstance(statement, exp.Create) else statement
        if body is not None:
            cte_names = {cte.alias_or_name for cte in body.find_all(exp.CTE)}
            for table in body.find_all(exp.Table):
                name = table.name
                if name and name not in cte_names and name not in created_names:
                    references.setdefault(name, None)
        created_name = created_relation(statement)
        if created_name:
            created_names.add(created_name)
    return tuple(references)


def created_relation(statement: exp.Expression) -> str | None:
    """Return the table or view name a CREATE statement defines."""
    if not isinstance(statement, exp.Create):
        return None
    target = statement.this
    if isinstance(target, exp.Schema):
        target = target.this
    if isinstance(target, exp.Table):
        return target.name or None
    return None


def parse_statements(sql_text: str) -> list[exp.Expression]:
    """Parse SQL text into non-empty statements.

    Raises:
        InvalidSqlError: If the text is empty or cannot be parsed.
    """
    try:
        statements = [
            statement
            for statement in sqlglot.parse(sql_text, read=SQL_DIALECT)
            if statement is not None
        ]
    except SqlglotError as error:
        raise InvalidSqlError(
            f"Failed to parse SQL definition: {error}. Fix the SQL syntax and retry."
        ) from error
    if not statements:
        raise InvalidSqlError("SQL definition is empty. Provide at least one statement.")
    return statements
