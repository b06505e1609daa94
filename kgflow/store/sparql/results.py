"""
Query results.

A ``QueryResult`` is tagged by ``type``: select, ask, construct, describe
or update. Rows keep rdflib terms; ``bindings()`` converts them to plain
Python values for step outputs and JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rdflib.term import Node

from ..terms import Quad, to_python

Row = dict[str, Node]


@dataclass
class QueryResult:
    type: str
    variables: list[str] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)
    boolean: bool | None = None
    quads: list[Quad] = field(default_factory=list)
    ok: bool | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def select(cls, variables: list[str], rows: list[Row]) -> QueryResult:
        return cls(type="select", variables=variables, rows=rows)

    @classmethod
    def ask(cls, value: bool) -> QueryResult:
        return cls(type="ask", boolean=value)

    @classmethod
    def construct(cls, quads: list[Quad]) -> QueryResult:
        return cls(type="construct", quads=quads)

    @classmethod
    def describe(cls, quads: list[Quad]) -> QueryResult:
        return cls(type="describe", quads=quads)

    @classmethod
    def update(cls, inserted: int, deleted: int, epoch: int) -> QueryResult:
        return cls(
            type="update",
            ok=True,
            metadata={"inserted": inserted, "deleted": deleted, "epoch": epoch},
        )

    @property
    def count(self) -> int:
        if self.type == "select":
            return len(self.rows)
        if self.type in ("construct", "describe"):
            return len(self.quads)
        return 0

    def bindings(self) -> list[dict[str, Any]]:
        """Rows as plain values; unbound variables are omitted from a row."""
        return [
            {var: to_python(row[var]) for var in self.variables if row.get(var) is not None}
            for row in self.rows
        ]

    def column(self, var: str) -> list[Node | None]:
        return [row.get(var) for row in self.rows]

    def quad_dicts(self) -> list[dict[str, Any]]:
        return [
            {
                "subject": to_python(q.subject),
                "predicate": to_python(q.predicate),
                "object": to_python(q.object),
            }
            for q in self.quads
        ]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.type == "select":
            data["variables"] = list(self.variables)
            data["results"] = self.bindings()
            data["count"] = self.count
        elif self.type == "ask":
            data["bool"] = self.boolean
        elif self.type in ("construct", "describe"):
            data["quads"] = self.quad_dicts()
            data["count"] = self.count
        else:
            data["ok"] = self.ok
        return data


__all__ = ["QueryResult", "Row"]
