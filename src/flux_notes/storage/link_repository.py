"""Repository for the link graph between notes and todos."""
import logging
import re
from enum import Enum
from typing import List, Optional, Union

from sqlalchemy import and_, delete, or_, select

from flux_notes.models.db_models import DBLink, DBNote, DBTodo
from flux_notes.models.schema import (EntityType, GraphData, GraphEdge,
                                      GraphNode, Link, LinkType,
                                      ensure_timezone_aware, generate_id,
                                      utc_now)
from flux_notes.storage.base import Repository

logger = logging.getLogger(__name__)

WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")


def parse_wiki_links(text: str) -> List[str]:
    """Extract the titles referenced as ``[[Title]]`` in text.

    Titles are trimmed and returned in order of appearance, duplicates
    included.
    """
    return [match.group(1).strip() for match in WIKI_LINK_PATTERN.finditer(text or "")]


def _value(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else value


class LinkRepository(Repository):
    """Repository for undirected-unique, directed-stored links.

    At most one link exists per unordered pair of endpoints: creating
    B -> A when A -> B is stored returns the stored A -> B.
    """

    @staticmethod
    def _db_link_to_model(db_link: DBLink) -> Link:
        """Convert a database row to a Link."""
        return Link(
            id=db_link.id,
            source_type=EntityType(db_link.source_type),
            source_id=db_link.source_id,
            target_type=EntityType(db_link.target_type),
            target_id=db_link.target_id,
            link_type=LinkType(db_link.link_type),
            created_at=ensure_timezone_aware(db_link.created_at),
        )

    def create(
        self,
        source_type: Union[EntityType, str],
        source_id: str,
        target_type: Union[EntityType, str],
        target_id: str,
        link_type: Union[LinkType, str] = LinkType.RELATED,
    ) -> Link:
        """Create a link unless one already joins the two endpoints.

        Both orderings are checked. An existing link is returned as
        stored, including its original direction and type.

        Raises:
            ConstraintViolationError: For an entity or link type outside
                the enumeration.
        """
        source_type, target_type = _value(source_type), _value(target_type)

        forward = and_(
            DBLink.source_type == source_type,
            DBLink.source_id == source_id,
            DBLink.target_type == target_type,
            DBLink.target_id == target_id,
        )
        reverse = and_(
            DBLink.source_type == target_type,
            DBLink.source_id == target_id,
            DBLink.target_type == source_type,
            DBLink.target_id == source_id,
        )

        with self._transaction("create_link") as session:
            existing = session.scalar(
                select(DBLink).where(or_(forward, reverse)).limit(1)
            )
            if existing is not None:
                return self._db_link_to_model(existing)

            db_link = DBLink(
                id=generate_id(),
                source_type=source_type,
                source_id=source_id,
                target_type=target_type,
                target_id=target_id,
                link_type=_value(link_type),
                created_at=utc_now(),
            )
            session.add(db_link)
            session.flush()
            link = self._db_link_to_model(db_link)

        logger.debug(
            f"Created {link.link_type.value} link "
            f"{source_type}:{source_id} -> {target_type}:{target_id}"
        )
        return link

    def get(self, link_id: str) -> Optional[Link]:
        """Get a link by ID."""
        with self.session_factory() as session:
            db_link = session.get(DBLink, link_id)
            return self._db_link_to_model(db_link) if db_link else None

    def _select_links(self, condition) -> List[Link]:
        with self.session_factory() as session:
            db_links = session.scalars(
                select(DBLink).where(condition).order_by(DBLink.created_at.desc())
            ).all()
            return [self._db_link_to_model(link) for link in db_links]

    @staticmethod
    def _is_source(entity_type: str, entity_id: str):
        return and_(DBLink.source_type == entity_type, DBLink.source_id == entity_id)

    @staticmethod
    def _is_target(entity_type: str, entity_id: str):
        return and_(DBLink.target_type == entity_type, DBLink.target_id == entity_id)

    def get_links_from(
        self, entity_type: Union[EntityType, str], entity_id: str
    ) -> List[Link]:
        """Links whose source is the entity, newest first."""
        return self._select_links(self._is_source(_value(entity_type), entity_id))

    def get_backlinks(
        self, entity_type: Union[EntityType, str], entity_id: str
    ) -> List[Link]:
        """Links whose target is the entity, newest first."""
        return self._select_links(self._is_target(_value(entity_type), entity_id))

    def get_all_links(
        self, entity_type: Union[EntityType, str], entity_id: str
    ) -> List[Link]:
        """Links touching the entity at either end, newest first."""
        entity_type = _value(entity_type)
        return self._select_links(
            or_(
                self._is_source(entity_type, entity_id),
                self._is_target(entity_type, entity_id),
            )
        )

    def delete(self, link_id: str) -> bool:
        """Delete a link. Returns False if it did not exist."""
        with self._transaction("delete_link") as session:
            result = session.execute(delete(DBLink).where(DBLink.id == link_id))
            return result.rowcount > 0

    def delete_links_for_entity(
        self, entity_type: Union[EntityType, str], entity_id: str
    ) -> int:
        """Delete every link touching the entity.

        Links have no foreign keys, so callers must run this before
        deleting the entity itself.

        Returns:
            Number of links removed.
        """
        entity_type = _value(entity_type)
        with self._transaction("delete_links_for_entity") as session:
            result = session.execute(
                delete(DBLink).where(
                    or_(
                        self._is_source(entity_type, entity_id),
                        self._is_target(entity_type, entity_id),
                    )
                )
            )
            removed = result.rowcount

        if removed:
            logger.debug(f"Removed {removed} links of {entity_type}:{entity_id}")
        return removed

    def get_graph_data(self) -> GraphData:
        """Snapshot of all notes and todos as nodes and all links as edges.

        Edges pointing at entities that no longer exist are kept.
        """
        with self.session_factory() as session:
            notes = session.execute(select(DBNote.id, DBNote.title)).all()
            todos = session.execute(select(DBTodo.id, DBTodo.title)).all()
            links = session.execute(
                select(DBLink.source_id, DBLink.target_id, DBLink.link_type)
            ).all()

        nodes = [
            GraphNode(id=note_id, type=EntityType.NOTE, label=title)
            for note_id, title in notes
        ]
        nodes.extend(
            GraphNode(id=todo_id, type=EntityType.TODO, label=title)
            for todo_id, title in todos
        )
        edges = [
            GraphEdge(source=source, target=target, type=LinkType(link_type))
            for source, target, link_type in links
        ]
        return GraphData(nodes=nodes, edges=edges)

    def create_links_from_content(self, source_note_id: str, text: str) -> List[Link]:
        """Turn ``[[Title]]`` references into note-to-note links.

        Each title is resolved to a note by exact, case-insensitive title
        match. Unresolved titles and references to the source note itself
        are skipped. Links are only ever added here; removing a reference
        from the text leaves its link in place.

        Returns:
            The link for every resolved reference (existing or new).
        """
        titles = parse_wiki_links(text)
        if not titles:
            return []

        links: List[Link] = []
        for title in titles:
            with self.session_factory() as session:
                target_id = session.scalar(
                    select(DBNote.id)
                    .where(DBNote.title.collate("NOCASE") == title)
                    .limit(1)
                )
            if target_id is None or target_id == source_note_id:
                continue
            links.append(
                self.create(
                    EntityType.NOTE,
                    source_note_id,
                    EntityType.NOTE,
                    target_id,
                    LinkType.REFERENCES,
                )
            )
        return links
