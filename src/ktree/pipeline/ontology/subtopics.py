import asyncio
import logging
from collections.abc import Mapping

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.ontology.errors import SubtopicGenerationError
from ktree.pipeline.ontology.models import DomainCluster, DomainPlan, SubtopicStructure
from ktree.pipeline.ontology.providers import OntologyProvider
from ktree.pipeline.ontology.scheduling import RequestScheduler, retry_with_backoff

logger = logging.getLogger(__name__)


def build_subtopic_context(cluster: DomainCluster, max_files: int = 30) -> str:
    lines = [
        f"Domain: {cluster.domain.title}",
        f"Description: {cluster.domain.description}",
        "",
        f"Files in this domain ({len(cluster.candidates)} total):",
        "",
    ]
    for file in cluster.candidates[:max_files]:
        lines.append(f"• {file.path}: {file.title} - {file.summary}")

    if len(cluster.candidates) > max_files:
        lines.append(f"... and {len(cluster.candidates) - max_files} more files")

    lines.append("")
    lines.append(
        "Based on these files, identify subtopics that would logically group them by functionality."
    )
    return "\n".join(lines)


def validate_subtopic_structure(structure: SubtopicStructure, max_subtopics: int) -> None:
    count = len(structure.subtopics)
    if count == 0:
        raise ValueError("No subtopics generated")
    if count > max_subtopics:
        raise ValueError(f"Too many subtopics: {count} (max {max_subtopics})")
    titles = [s.title for s in structure.subtopics]
    if len(set(titles)) != len(titles):
        raise ValueError("Duplicate subtopic titles")


async def generate_subtopic_structure(
    cluster: DomainCluster,
    provider: OntologyProvider,
    config: AppConfig = Config,
    scheduler: RequestScheduler | None = None,
) -> SubtopicStructure:
    """Name the subtopics of one domain from a sample of its files.

    Raises:
        SubtopicGenerationError: all attempts failed.
    """
    ontology = config.ontology
    context = build_subtopic_context(cluster, ontology.max_prompt_files)

    async def attempt() -> SubtopicStructure:
        structure = await provider.generate_subtopics(context)
        validate_subtopic_structure(structure, ontology.max_subtopics)
        return structure

    try:
        return await retry_with_backoff(
            attempt,
            f'Subtopic generation for domain "{cluster.domain.title}"',
            max_attempts=ontology.max_attempts,
            backoff_factor=ontology.backoff_factor,
            scheduler=scheduler,
        )
    except Exception as e:
        raise SubtopicGenerationError(cluster.domain.title, ontology.max_attempts) from e


async def generate_subtopic_structures_for_all_domains(
    plans: Mapping[str, DomainPlan],
    provider: OntologyProvider,
    config: AppConfig = Config,
    scheduler: RequestScheduler | None = None,
) -> int:
    """Fill `plan.subtopics` for every domain, one domain at a time.

    Domains without files get an empty structure and no LLM call.

    Returns:
        The number of LLM calls made.
    """
    calls = 0
    pending = [plan for plan in plans.values() if not plan.is_empty]
    logger.info("Generating subtopics for %d domains", len(pending))

    for plan in plans.values():
        if plan.is_empty:
            logger.warning(
                'Domain "%s" has no files, skipping subtopic generation',
                plan.domain.title,
            )
            plan.subtopics = SubtopicStructure(subtopics=[])

    for i, plan in enumerate(pending):
        logger.info(
            'Generating subtopics %d/%d: "%s" (%d files)',
            i + 1,
            len(pending),
            plan.domain.title,
            len(plan.cluster.candidates),
        )
        plan.subtopics = await generate_subtopic_structure(
            plan.cluster, provider, config, scheduler
        )
        calls += 1
        logger.info(
            'Generated %d subtopics for "%s"',
            len(plan.subtopics.subtopics),
            plan.domain.title,
        )
        if i < len(pending) - 1 and config.ontology.domain_delay > 0:
            await asyncio.sleep(config.ontology.domain_delay)

    return calls
