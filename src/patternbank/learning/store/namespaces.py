"""Namespace mixin for LearningStore.

Namespaces form a forest of parent pointers. ``resolve_chain`` turns a
namespace into the list of namespaces a pattern query should search, from
the most specific up to ``root``::

    projects.ecommerce.backend -> projects.ecommerce -> projects -> root
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager

from patternbank.core.config import NamespaceConfig
from patternbank.core.errors import CycleDetectedError, InvalidInputError, NotFoundError
from patternbank.core.logging import BankLogger
from patternbank.learning.store.models import ROOT_NAMESPACE, NamespaceRecord

# Upper bound on parent-pointer hops per resolution
MAX_NAMESPACE_HOPS = 10


def _walk_chain(name: str, parents: dict[str, str | None]) -> list[str]:
    """Walk from ``name`` to the root of its tree.

    Registered names follow their parent pointer. Unregistered names fall
    back to their dotted prefix (``a.b.c`` -> ``a.b``) until a registered
    ancestor or the top segment is reached.
    """
    chain: list[str] = []
    current: str | None = name
    while current is not None:
        if current in chain:
            raise CycleDetectedError(chain + [current])
        if len(chain) > MAX_NAMESPACE_HOPS:
            raise CycleDetectedError(
                chain,
                f"Namespace chain for {name!r} exceeds {MAX_NAMESPACE_HOPS} hops",
            )
        chain.append(current)
        if current in parents:
            current = parents[current]
        elif "." in current:
            current = current.rsplit(".", 1)[0]
        else:
            current = None
    if chain[-1] != ROOT_NAMESPACE:
        chain.append(ROOT_NAMESPACE)
    return chain


class NamespaceMixin:
    """Mixin providing namespace registration and resolution for LearningStore.

    This mixin requires that the composed class provides:
    - _get_connection() / _write_transaction(): connection context managers
    - _check_namespace_name(): name validation
    """

    _logger: BankLogger
    _get_connection: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _write_transaction: Callable[[], AbstractContextManager[sqlite3.Connection]]
    _check_namespace_name: Callable[[str], str]

    def resolve_chain(self, namespace: str) -> list[str]:
        """Resolve a namespace into itself plus every ancestor, ending at root.

        Raises:
            InvalidInputError: Malformed namespace name.
            CycleDetectedError: The parent chain loops or exceeds the hop bound.
        """
        name = self._check_namespace_name(namespace)
        with self._get_connection() as conn:
            parents = self._load_parents(conn)
        return _walk_chain(name, parents)

    def create_namespace(
        self,
        name: str,
        parent: str | None = None,
        description: str | None = None,
    ) -> NamespaceRecord:
        """Register a new namespace.

        Raises:
            InvalidInputError: Malformed name, or the name is already registered.
            NotFoundError: The parent is not registered.
        """
        self._check_namespace_name(name)
        if parent is not None:
            self._check_namespace_name(parent)

        with self._write_transaction() as conn:
            if conn.execute("SELECT 1 FROM namespaces WHERE name = ?", (name,)).fetchone():
                raise InvalidInputError(f"Namespace already exists: {name!r}")
            if parent is not None and not conn.execute(
                "SELECT 1 FROM namespaces WHERE name = ?", (parent,)
            ).fetchone():
                raise NotFoundError("namespace", parent)
            conn.execute(
                "INSERT INTO namespaces (name, parent_namespace, description) VALUES (?, ?, ?)",
                (name, parent, description),
            )

        self._logger.info("namespace_created", namespace=name, parent=parent)
        return NamespaceRecord(name=name, parent=parent, description=description)

    def register_namespaces(self, namespaces: Iterable[NamespaceConfig]) -> int:
        """Create or update namespaces declared in configuration.

        Entries may appear in any order. Existing namespaces get the declared
        parent (and description, when given). Every chain is validated before
        commit; any error rolls the whole load back.

        Returns:
            Number of namespaces written.

        Raises:
            InvalidInputError: Malformed name, or an attempt to give root a parent.
            NotFoundError: A declared parent is neither registered nor declared.
            CycleDetectedError: The declared parents form a cycle.
        """
        entries = list(namespaces)
        for entry in entries:
            self._check_namespace_name(entry.name)
            if entry.parent is not None:
                self._check_namespace_name(entry.parent)
            if entry.name == ROOT_NAMESPACE and entry.parent is not None:
                raise InvalidInputError("The root namespace cannot have a parent")

        with self._write_transaction() as conn:
            for entry in entries:
                conn.execute(
                    """
                    INSERT INTO namespaces (name, parent_namespace, description)
                    VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        parent_namespace = excluded.parent_namespace,
                        description = COALESCE(excluded.description, description)
                    """,
                    (entry.name, entry.parent, entry.description),
                )
            parents = self._load_parents(conn)
            for entry in entries:
                if entry.parent is not None and entry.parent not in parents:
                    raise NotFoundError("namespace", entry.parent)
                _walk_chain(entry.name, parents)

        self._logger.info("namespaces_registered", count=len(entries))
        return len(entries)

    def get_namespace(self, name: str) -> NamespaceRecord | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM namespaces WHERE name = ?", (name,)
            ).fetchone()
        return self._row_to_namespace(row) if row else None

    def list_namespaces(self) -> list[NamespaceRecord]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM namespaces ORDER BY name").fetchall()
        return [self._row_to_namespace(row) for row in rows]

    @staticmethod
    def _load_parents(conn: sqlite3.Connection) -> dict[str, str | None]:
        rows = conn.execute("SELECT name, parent_namespace FROM namespaces").fetchall()
        return {row["name"]: row["parent_namespace"] for row in rows}

    @staticmethod
    def _row_to_namespace(row: sqlite3.Row) -> NamespaceRecord:
        return NamespaceRecord(
            name=row["name"],
            parent=row["parent_namespace"],
            description=row["description"],
        )
