from ktree.pipeline.store.repositories.link import TopicLinkRepository
from ktree.pipeline.store.repositories.topic import TopicRepository

__all__ = ["TopicLinkRepository", "TopicRepository"]
