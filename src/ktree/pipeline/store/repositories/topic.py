from ktree.pipeline.store.engine import OntologyStore
from ktree.pipeline.store.models import Topic

TOPIC_COLUMNS = "id, title, description, parent_id, depth, is_root"


def _row_to_topic(row) -> Topic:
    return Topic(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        parent_id=row["parent_id"],
        depth=row["depth"],
        is_root=bool(row["is_root"]),
    )


class TopicRepository:
    """Repository for Topic operations."""

    def __init__(self, store: OntologyStore) -> None:
        self.store = store

    async def create(self, entity: Topic) -> Topic:
        self.store.conn.execute(
            f"INSERT INTO topics ({TOPIC_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (
                entity.id,
                entity.title,
                entity.description,
                entity.parent_id,
                entity.depth,
                entity.is_root,
            ),
        )
        return entity

    async def get_by_id(self, entity_id: str) -> Topic | None:
        row = self.store.conn.execute(
            f"SELECT {TOPIC_COLUMNS} FROM topics WHERE id = ?", (entity_id,)
        ).fetchone()
        return _row_to_topic(row) if row else None

    async def list_all(self) -> list[Topic]:
        rows = self.store.conn.execute(
            f"SELECT {TOPIC_COLUMNS} FROM topics ORDER BY depth, rowid"
        ).fetchall()
        return [_row_to_topic(row) for row in rows]

    async def get_children(self, parent_id: str) -> list[Topic]:
        rows = self.store.conn.execute(
            f"SELECT {TOPIC_COLUMNS} FROM topics WHERE parent_id = ? ORDER BY rowid",
            (parent_id,),
        ).fetchall()
        return [_row_to_topic(row) for row in rows]

    async def list_for_node(self, node_id: str, node_type: str = "file") -> list[Topic]:
        """Topics linked to a source node."""
        columns = ", ".join(f"t.{c.strip()}" for c in TOPIC_COLUMNS.split(","))
        rows = self.store.conn.execute(
            f"""
            SELECT {columns}
            FROM topic_node_links l
            INNER JOIN topics t ON l.topic_id = t.id
            WHERE l.node_id = ? AND l.node_type = ?
            ORDER BY t.rowid
            """,
            (node_id, node_type),
        ).fetchall()
        return [_row_to_topic(row) for row in rows]

    async def count(self) -> int:
        return self.store.conn.execute("SELECT COUNT(*) FROM topics").fetchone()[0]

    async def delete_all(self) -> None:
        # Children first so parent references stay valid while deleting
        self.store.conn.execute("DELETE FROM topics WHERE depth >= 2")
        self.store.conn.execute("DELETE FROM topics WHERE depth = 1")
        self.store.conn.execute("DELETE FROM topics")
