"""
Minimal SQL query builder.

Composes a base SELECT with any number of parametrized WHERE fragments,
ordering and pagination, so callers never concatenate SQL per filter
combination.
"""

from typing import Any, List, Optional, Tuple


class QueryBuilder:
    """
    Incrementally built, parametrized SELECT query.

    Example:
        q = QueryBuilder("SELECT * FROM images i")
        q.where("i.width > ?", 100).order_by("i.created DESC").limit(10, 20)
        query, args = q.build()
    """

    def __init__(self, base: str, *args: Any):
        assert base and base.strip(), "Base query is required"

        self.base = base.strip()
        self.base_args: List[Any] = list(args)
        self.conditions: List[Tuple[str, Tuple[Any, ...]]] = []
        self.ordering: List[str] = []
        self.pagination: Optional[Tuple[int, int]] = None

    def where(self, fragment: str, *args: Any) -> "QueryBuilder":
        """Add a condition; all conditions must hold."""
        assert fragment.count("?") == len(args), (
            f"Placeholder mismatch in {fragment!r}: {len(args)} args"
        )
        self.conditions.append((fragment, args))
        return self

    def order_by(self, *columns: str) -> "QueryBuilder":
        """Append ordering terms."""
        self.ordering.extend(columns)
        return self

    def limit(self, limit: int, offset: int = 0) -> "QueryBuilder":
        """Restrict the result window."""
        assert limit > 0, f"Invalid limit: {limit}"
        assert offset >= 0, f"Invalid offset: {offset}"
        self.pagination = (limit, offset)
        return self

    def _filtered(self) -> Tuple[str, List[Any]]:
        query = self.base
        args = list(self.base_args)
        if self.conditions:
            clauses = []
            for fragment, fragment_args in self.conditions:
                clauses.append(f"({fragment})")
                args.extend(fragment_args)
            query += " WHERE " + " AND ".join(clauses)
        return query, args

    def build(self) -> Tuple[str, List[Any]]:
        """Return the SQL text and its positional arguments."""
        query, args = self._filtered()
        if self.ordering:
            query += " ORDER BY " + ", ".join(self.ordering)
        if self.pagination is not None:
            query += " LIMIT ? OFFSET ?"
            args.extend(self.pagination)
        return query, args

    def build_count(self) -> Tuple[str, List[Any]]:
        """Return a query counting all rows matching the conditions."""
        query, args = self._filtered()
        return f"SELECT COUNT(*) FROM ({query})", args
