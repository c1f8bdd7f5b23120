from ktree.pipeline.store.engine import OntologyStore
from ktree.pipeline.store.models import TopicNodeLink

LINK_COLUMNS = "id, topic_id, node_id, node_type, confidence"


def _row_to_link(row) -> TopicNodeLink:
    return TopicNodeLink(
        id=row["id"],
        topic_id=row["topic_id"],
        node_id=row["node_id"],
        node_type=row["node_type"],
        confidence=row["confidence"],
    )


class TopicLinkRepository:
    """Repository for topic to source-node links."""

    def __init__(self, store: OntologyStore) -> None:
        self.store = store

    async def create(self, entity: TopicNodeLink) -> TopicNodeLink:
        """Insert a link. Constraint violations raise sqlite3.IntegrityError."""
        self.store.conn.execute(
            f"INSERT INTO topic_node_links ({LINK_COLUMNS}) VALUES (?, ?, ?, ?, ?)",
            (
                entity.id,
                entity.topic_id,
                entity.node_id,
                entity.node_type,
                entity.confidence,
            ),
        )
        return entity

    async def list_all(self) -> list[TopicNodeLink]:
        rows = self.store.conn.execute(
            f"SELECT {LINK_COLUMNS} FROM topic_node_links ORDER BY rowid"
        ).fetchall()
        return [_row_to_link(row) for row in rows]

    async def list_by_topic(
        self, topic_id: str, node_type: str = "file"
    ) -> list[TopicNodeLink]:
        rows = self.store.conn.execute(
            f"""
            SELECT {LINK_COLUMNS} FROM topic_node_links
            WHERE topic_id = ? AND node_type = ?
            ORDER BY rowid
            """,
            (topic_id, node_type),
        ).fetchall()
        return [_row_to_link(row) for row in rows]

    async def count(self) -> int:
        return self.store.conn.execute(
            "SELECT COUNT(*) FROM topic_node_links"
        ).fetchone()[0]

    async def count_linked_nodes(self, node_type: str = "file") -> int:
        """Number of distinct nodes with at least one link."""
        return self.store.conn.execute(
            "SELECT COUNT(DISTINCT node_id) FROM topic_node_links WHERE node_type = ?",
            (node_type,),
        ).fetchone()[0]

    async def delete_all(self) -> None:
        self.store.conn.execute("DELETE FROM topic_node_links")
