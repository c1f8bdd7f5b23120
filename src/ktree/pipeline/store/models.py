from typing import Literal

from pydantic import BaseModel

NodeType = Literal["file", "directory"]


class Topic(BaseModel):
    """
    A node in the ontology tree: the root (depth 0), a domain (depth 1)
    or a subtopic (depth 2).
    """

    id: str
    title: str
    description: str
    parent_id: str | None = None
    depth: int = 0
    is_root: bool = False


class TopicNodeLink(BaseModel):
    """Many-to-many edge between a subtopic and a file or directory."""

    id: str
    topic_id: str
    node_id: str
    node_type: NodeType = "file"
    confidence: int = 100
