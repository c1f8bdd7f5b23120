from ktree.pipeline.store.engine import DB_FILENAME, OntologyStore
from ktree.pipeline.store.models import Topic, TopicNodeLink

__all__ = ["DB_FILENAME", "OntologyStore", "Topic", "TopicNodeLink"]
