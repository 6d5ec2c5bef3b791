"""FTS5 full-text search over notes and todos.

Encapsulates FTS5 querying for one source table, with an optional LIKE
fallback for queries FTS5 cannot parse. The index itself is maintained by triggers (see db_models).
"""
import logging
import sqlite3
from typing import Any, List, Sequence

from sqlalchemy import case, or_, select, text
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError
from sqlalchemy.orm import sessionmaker

from flux_notes.exceptions import ErrorCode, SearchError
from flux_notes.utils import clean_search_query, escape_like_pattern

logger = logging.getLogger(__name__)

SEARCH_RESULT_LIMIT = 100


class FtsIndex:
    """Prefix full-text search against the FTS5 mirror of one table.

    Args:
        session_factory: SQLAlchemy session factory of the shared engine.
        model: Mapped class of the source table (DBNote or DBTodo).
        columns: Indexed text columns, title first.
        limit: Maximum number of results per query.
        like_fallback: Run a LIKE search when FTS5 rejects the query
            instead of returning no results.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        model: Any,
        columns: Sequence[str],
        limit: int = SEARCH_RESULT_LIMIT,
        like_fallback: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self.model = model
        self.columns = tuple(columns)
        self.limit = limit
        self.like_fallback = like_fallback
        self.table = model.__tablename__
        self.fts_table = f"{self.table}_fts"

    def search(self, query: str) -> List[Any]:
        """Full-text search ranked by relevance.

        Quote characters are stripped and whitespace trimmed; an empty
        result is returned for an empty query without touching the index.
        Otherwise the cleaned text gets a trailing ``*`` so the last term
        matches as a prefix. A query FTS5 rejects as malformed yields an
        empty list unless the LIKE fallback is enabled.

        Returns:
            Source-table rows, best match first.
        """
        cleaned = clean_search_query(query)
        if not cleaned:
            return []

        sql = text(f"""
            SELECT {self.table}.* FROM {self.table}
            JOIN {self.fts_table} ON {self.table}.rowid = {self.fts_table}.rowid
            WHERE {self.fts_table} MATCH :query
            ORDER BY {self.fts_table}.rank
            LIMIT :limit
        """)

        with self._session_factory() as session:
            try:
                return list(
                    session.scalars(
                        select(self.model).from_statement(sql),
                        {"query": f"{cleaned}*", "limit": self.limit},
                    ).all()
                )
            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                # Usually FTS5 syntax the user did not mean (e.g. "c++")
                logger.warning(
                    f"FTS5 query failed on {self.fts_table} for '{cleaned}': {e}"
                )

        if not self.like_fallback:
            return []
        return self._fallback_text_search(cleaned)

    def _fallback_text_search(self, cleaned: str) -> List[Any]:
        """LIKE-based fallback when the FTS5 query cannot be evaluated."""
        term = f"%{escape_like_pattern(cleaned)}%"
        columns = [getattr(self.model, name) for name in self.columns]
        title_first = case((columns[0].like(term, escape="\\"), 0), else_=1)
        stmt = (
            select(self.model)
            .where(or_(*[col.like(term, escape="\\") for col in columns]))
            .order_by(title_first, self.model.updated_at.desc())
            .limit(self.limit)
        )

        try:
            with self._session_factory() as session:
                results = list(session.scalars(stmt).all())
        except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
            raise SearchError(
                f"Fallback text search failed: {e}",
                query=cleaned,
                code=ErrorCode.SEARCH_FAILED,
            ) from e

        logger.debug(
            f"Fallback search on {self.table} returned {len(results)} results "
            f"for query '{cleaned}'"
        )
        return results
