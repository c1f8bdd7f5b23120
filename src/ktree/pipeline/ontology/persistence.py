import logging
import math
import sqlite3
from collections.abc import Mapping, Sequence
from pathlib import Path

from ktree.pipeline.ontology.errors import OntologyError, OntologyPersistenceError
from ktree.pipeline.ontology.models import (
    DomainDiscoveryResult,
    DomainPlan,
    OntologyPersistenceResult,
    OntologyStats,
    OntologyStructure,
)
from ktree.pipeline.store.engine import OntologyStore
from ktree.pipeline.store.models import Topic, TopicNodeLink
from ktree.pipeline.store.repositories import TopicLinkRepository, TopicRepository

logger = logging.getLogger(__name__)

ROOT_TOPIC_ID = "root"
LINK_CONFIDENCE = 100


def domain_topic_id(index: int) -> str:
    return f"domain-{index + 1}"


def subtopic_topic_id(domain_id: str, index: int) -> str:
    return f"{domain_id}-sub-{index + 1}"


def link_id(topic_id: str, file_id: str) -> str:
    return f"link-{topic_id}-{file_id}"


def calculate_coverage(count: int, total_files: int) -> int:
    """Percentage of `total_files` covered by `count`, capped at 100.

    An empty repository is fully covered. Halves round up.
    """
    if total_files == 0:
        return 100
    return min(100, math.floor(count / total_files * 100 + 0.5))


async def _create_links(
    links: TopicLinkRepository,
    plan: DomainPlan,
    subtopic_ids: Mapping[str, str],
    file_ids: Mapping[str, str],
) -> int:
    created = 0
    if plan.assignments is None:
        return created

    for assignment in plan.assignments.assignments:
        file_id = file_ids.get(assignment.file_path)
        if file_id is None:
            logger.warning("File ID not found for path: %s", assignment.file_path)
            continue

        for title in assignment.subtopics:
            topic_id = subtopic_ids.get(title)
            if topic_id is None:
                logger.warning("Topic ID not found for subtopic: %s", title)
                continue

            new_link = TopicNodeLink(
                id=link_id(topic_id, file_id),
                topic_id=topic_id,
                node_id=file_id,
                node_type="file",
                confidence=LINK_CONFIDENCE,
            )
            try:
                await links.create(new_link)
            except sqlite3.IntegrityError as e:
                # Same file confirmed twice for one subtopic
                if "UNIQUE constraint" not in str(e):
                    logger.warning("Failed to create link %s: %s", new_link.id, e)
                continue
            except sqlite3.Error as e:
                logger.warning("Failed to create link %s: %s", new_link.id, e)
                continue
            created += 1

    return created


async def persist_ontology(
    cache_dir: Path,
    discovery: DomainDiscoveryResult,
    plans: Mapping[str, DomainPlan],
    file_ids: Mapping[str, str],
) -> OntologyPersistenceResult:
    """Replace the stored ontology with a freshly built one.

    All writes happen in a single transaction: existing links and topics are
    deleted, then the root, domain and subtopic topics and the file links
    are inserted. Subtopic titles are resolved within their own domain.

    Args:
        cache_dir: Directory holding `ontology.sqlite`
        discovery: Root and top-level domains
        plans: Per-domain subtopics and assignments, keyed by domain topic id
        file_ids: Lookup from file path to file id

    Raises:
        OntologyPersistenceError: the transaction failed and was rolled back.
    """
    try:
        with OntologyStore(cache_dir) as store:
            topics = TopicRepository(store)
            links = TopicLinkRepository(store)

            with store.transaction():
                await links.delete_all()
                await topics.delete_all()

                await topics.create(
                    Topic(
                        id=ROOT_TOPIC_ID,
                        title=discovery.root_domain.title,
                        description=discovery.root_domain.description,
                        parent_id=None,
                        depth=0,
                        is_root=True,
                    )
                )

                domain_count = 0
                subtopic_count = 0
                link_count = 0

                for domain_id, plan in plans.items():
                    await topics.create(
                        Topic(
                            id=domain_id,
                            title=plan.domain.title,
                            description=plan.domain.description,
                            parent_id=ROOT_TOPIC_ID,
                            depth=1,
                        )
                    )
                    domain_count += 1

                    subtopic_ids: dict[str, str] = {}
                    subtopics = plan.subtopics.subtopics if plan.subtopics else []
                    for j, subtopic in enumerate(subtopics):
                        topic_id = subtopic_topic_id(domain_id, j)
                        await topics.create(
                            Topic(
                                id=topic_id,
                                title=subtopic.title,
                                description=subtopic.description,
                                parent_id=domain_id,
                                depth=2,
                            )
                        )
                        subtopic_ids.setdefault(subtopic.title, topic_id)
                        subtopic_count += 1

                    link_count += await _create_links(
                        links, plan, subtopic_ids, file_ids
                    )

                linked_file_count = await links.count_linked_nodes("file")
    except Exception as e:
        raise OntologyPersistenceError(f"Failed to persist ontology: {e}") from e

    topic_count = 1 + domain_count + subtopic_count
    logger.info(
        "Persisted %d topics (%d domains, %d subtopics) and %d links",
        topic_count,
        domain_count,
        subtopic_count,
        link_count,
    )
    return OntologyPersistenceResult(
        root_topic_id=ROOT_TOPIC_ID,
        topic_count=topic_count,
        link_count=link_count,
        coverage_percentage=calculate_coverage(linked_file_count, len(file_ids)),
    )


async def query_ontology_structure(cache_dir: Path) -> OntologyStructure:
    """Read every topic and link of a persisted ontology."""
    try:
        with OntologyStore(cache_dir, create=False) as store:
            topics = await TopicRepository(store).list_all()
            links = await TopicLinkRepository(store).list_all()
    except (OSError, sqlite3.Error) as e:
        raise OntologyError(f"Failed to query ontology: {e}") from e

    return OntologyStructure(
        topics=topics,
        links=links,
        stats=OntologyStats(
            total_topics=len(topics),
            total_links=len(links),
            max_depth=max((t.depth for t in topics), default=0),
        ),
    )


async def get_files_for_topic(cache_dir: Path, topic_id: str) -> list[str]:
    """Ids of the files linked to a topic."""
    try:
        with OntologyStore(cache_dir, create=False) as store:
            links = await TopicLinkRepository(store).list_by_topic(topic_id, "file")
    except (OSError, sqlite3.Error) as e:
        raise OntologyError(f"Failed to query files for topic: {e}") from e
    return [link.node_id for link in links]


async def get_topics_for_file(cache_dir: Path, file_id: str) -> list[Topic]:
    """Topics a file is linked to."""
    try:
        with OntologyStore(cache_dir, create=False) as store:
            return await TopicRepository(store).list_for_node(file_id, "file")
    except (OSError, sqlite3.Error) as e:
        raise OntologyError(f"Failed to query topics for file: {e}") from e


def validate_topic_hierarchy(topics: Sequence[Topic]) -> list[str]:
    """Check the tree shape of a topic set.

    There must be exactly one root at depth 0, and every other topic must
    point to an existing parent exactly one level above it.
    """
    issues: list[str] = []
    by_id = {t.id: t for t in topics}

    roots = [t for t in topics if t.is_root]
    if len(roots) != 1:
        issues.append(f"Expected exactly one root topic, found {len(roots)}")
    for root in roots:
        if root.depth != 0:
            issues.append(f"Root topic {root.id} has depth {root.depth}")
        if root.parent_id is not None:
            issues.append(f"Root topic {root.id} has parent {root.parent_id}")

    for topic in topics:
        if topic.is_root:
            continue
        if topic.parent_id is None:
            issues.append(f"Topic {topic.id} has no parent")
            continue
        parent = by_id.get(topic.parent_id)
        if parent is None:
            issues.append(f"Topic {topic.id} references missing parent {topic.parent_id}")
        elif topic.depth != parent.depth + 1:
            issues.append(
                f"Topic {topic.id} at depth {topic.depth} is not one below "
                f"parent {parent.id} at depth {parent.depth}"
            )

    return issues
