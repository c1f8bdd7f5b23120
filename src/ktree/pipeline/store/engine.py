import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

DB_FILENAME = "ontology.sqlite"

TOPICS_SCHEMA = """
CREATE TABLE IF NOT EXISTS topics (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    parent_id TEXT,
    depth INTEGER NOT NULL DEFAULT 0,
    is_root BOOLEAN NOT NULL DEFAULT FALSE,
    FOREIGN KEY (parent_id) REFERENCES topics(id)
)
"""

TOPIC_NODE_LINKS_SCHEMA = """
CREATE TABLE IF NOT EXISTS topic_node_links (
    id TEXT PRIMARY KEY,
    topic_id TEXT NOT NULL,
    node_id TEXT NOT NULL,
    node_type TEXT NOT NULL CHECK (node_type IN ('file', 'directory')),
    confidence INTEGER NOT NULL DEFAULT 100,
    FOREIGN KEY (topic_id) REFERENCES topics(id),
    UNIQUE(topic_id, node_id, node_type)
)
"""


class OntologyStore:
    """SQLite database holding the topic tree and its links to source nodes.

    The database lives at `{cache_dir}/ontology.sqlite`. Transactions are
    managed explicitly through `transaction()`.
    """

    def __init__(self, cache_dir: Path, create: bool = True):
        self.cache_dir = Path(cache_dir)
        self.db_path = self.cache_dir / DB_FILENAME

        if not self.db_path.exists():
            if not create:
                raise FileNotFoundError(
                    f"Ontology database does not exist: {self.db_path}"
                )
            self.cache_dir.mkdir(parents=True, exist_ok=True)

        self.conn = sqlite3.connect(self.db_path, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_or_update_db()

    def create_or_update_db(self) -> None:
        """Create the database tables."""
        self.conn.execute(TOPICS_SCHEMA)
        self.conn.execute(TOPIC_NODE_LINKS_SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; any exception rolls the whole block back."""
        self.conn.execute("BEGIN")
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "OntologyStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
