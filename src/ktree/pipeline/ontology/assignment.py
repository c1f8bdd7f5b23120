import asyncio
import logging
from collections.abc import Mapping, Sequence

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.ontology.errors import AssignmentValidationError, TopicAssignmentError
from ktree.pipeline.ontology.models import (
    AssignmentResult,
    DomainPlan,
    FileCandidate,
    Subtopic,
)
from ktree.pipeline.ontology.providers import OntologyProvider
from ktree.pipeline.ontology.scheduling import RequestScheduler, retry_with_backoff

logger = logging.getLogger(__name__)


def build_assignment_context(plan: DomainPlan) -> str:
    subtopics = plan.subtopics.subtopics if plan.subtopics else []
    candidates = plan.cluster.candidates

    lines = [
        f"Domain: {plan.domain.title}",
        f"Description: {plan.domain.description}",
        "",
        "Available Subtopics:",
    ]
    for subtopic in subtopics:
        lines.append(f'• "{subtopic.title}": {subtopic.description}')
    lines.append("")

    lines.append(f"Files to assign ({len(candidates)} total):")
    lines.append("")
    for file in candidates:
        lines.append(f"Path: {file.path}")
        lines.append(f"Title: {file.title}")
        lines.append(f"Summary: {file.summary}")
        lines.append("")

    lines.append(
        "Assign each file to appropriate subtopics. Files can belong to multiple subtopics if relevant."
    )
    return "\n".join(lines)


def validate_assignment_result(
    result: AssignmentResult,
    candidates: Sequence[FileCandidate],
    subtopics: Sequence[Subtopic],
) -> None:
    """Check an assignment against the domain it was produced for.

    Raises:
        AssignmentValidationError: a candidate is missing, or the result
            references an unknown path or subtopic, or a file has no subtopic.
    """
    candidate_paths = {c.path for c in candidates}
    subtopic_titles = {s.title for s in subtopics}
    assigned_paths = {a.file_path for a in result.assignments}

    for candidate in candidates:
        if candidate.path not in assigned_paths:
            raise AssignmentValidationError(f"File not assigned: {candidate.path}")

    for assignment in result.assignments:
        if assignment.file_path not in candidate_paths:
            raise AssignmentValidationError(
                f"Invalid file path in assignment: {assignment.file_path}"
            )
        for title in assignment.subtopics:
            if title not in subtopic_titles:
                raise AssignmentValidationError(
                    f"Invalid subtopic in assignment: {title}"
                )
        if not assignment.subtopics:
            raise AssignmentValidationError(
                f"File must be assigned to at least one subtopic: {assignment.file_path}"
            )


async def assign_files_to_subtopics(
    plan: DomainPlan,
    provider: OntologyProvider,
    config: AppConfig = Config,
    scheduler: RequestScheduler | None = None,
) -> AssignmentResult:
    """Assign every candidate file of a domain to one or more subtopics.

    Validation runs inside the retry loop, so an invalid answer is retried
    like a failed call.

    Raises:
        TopicAssignmentError: all attempts failed.
    """
    ontology = config.ontology
    subtopics = plan.subtopics.subtopics if plan.subtopics else []
    context = build_assignment_context(plan)

    async def attempt() -> AssignmentResult:
        result = await provider.assign_files(context)
        validate_assignment_result(result, plan.cluster.candidates, subtopics)
        return result

    try:
        return await retry_with_backoff(
            attempt,
            f'File assignment for domain "{plan.domain.title}"',
            max_attempts=ontology.max_attempts,
            backoff_factor=ontology.backoff_factor,
            scheduler=scheduler,
        )
    except Exception as e:
        logger.error(
            'File assignment failed for domain "%s" after %d attempts',
            plan.domain.title,
            ontology.max_attempts,
        )
        raise TopicAssignmentError(plan.domain.title, ontology.max_attempts) from e


def assignment_stats(result: AssignmentResult) -> tuple[int, int, int]:
    """Return (files, total assignments, multi-topic files)."""
    files = len(result.assignments)
    total = sum(len(a.subtopics) for a in result.assignments)
    multi = sum(1 for a in result.assignments if len(a.subtopics) > 1)
    return files, total, multi


async def assign_files_for_all_domains(
    plans: Mapping[str, DomainPlan],
    provider: OntologyProvider,
    config: AppConfig = Config,
    scheduler: RequestScheduler | None = None,
) -> int:
    """Fill `plan.assignments` for every domain, one domain at a time.

    Domains without files get an empty result and no LLM call.

    Returns:
        The number of LLM calls made.
    """
    calls = 0
    pending = [plan for plan in plans.values() if not plan.is_empty]
    logger.info("Assigning files to subtopics for %d domains", len(pending))

    for plan in plans.values():
        if plan.is_empty:
            plan.assignments = AssignmentResult(assignments=[])

    for i, plan in enumerate(pending):
        subtopic_count = len(plan.subtopics.subtopics) if plan.subtopics else 0
        logger.info(
            'Assigning files %d/%d: "%s" (%d files -> %d subtopics)',
            i + 1,
            len(pending),
            plan.domain.title,
            len(plan.cluster.candidates),
            subtopic_count,
        )
        plan.assignments = await assign_files_to_subtopics(
            plan, provider, config, scheduler
        )
        calls += 1

        files, total, multi = assignment_stats(plan.assignments)
        logger.info(
            "Completed assignments: %d files, %d total assignments, %d multi-topic files",
            files,
            total,
            multi,
        )
        if i < len(pending) - 1 and config.ontology.domain_delay > 0:
            await asyncio.sleep(config.ontology.domain_delay)

    overall = [assignment_stats(p.assignments) for p in plans.values() if p.assignments]
    logger.info(
        "Assignment complete: %d files, %d total assignments, %d multi-topic files",
        sum(s[0] for s in overall),
        sum(s[1] for s in overall),
        sum(s[2] for s in overall),
    )
    return calls
