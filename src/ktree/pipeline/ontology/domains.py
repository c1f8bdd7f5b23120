import logging
from collections.abc import Sequence

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.ontology.errors import DomainDiscoveryError
from ktree.pipeline.ontology.models import (
    DirectoryRecord,
    DomainDiscoveryResult,
    FileContext,
)
from ktree.pipeline.ontology.providers import OntologyProvider
from ktree.pipeline.ontology.scheduling import RequestScheduler, retry_with_backoff

logger = logging.getLogger(__name__)


def is_top_level_directory(path: str) -> bool:
    return "/" not in path or len(path.split("/")) <= 2


def build_discovery_context(
    files: Sequence[FileContext], directories: Sequence[DirectoryRecord]
) -> str:
    """Build the repository digest sent to the domain discovery call.

    Lists the top-level directories by descending lines of code, then every
    file by descending summary length.
    """
    lines = [
        f"Repository contains {len(files)} files across {len(directories)} directories.",
        "",
    ]

    top_level_dirs = sorted(
        (d for d in directories if is_top_level_directory(d.path)),
        key=lambda d: d.loc,
        reverse=True,
    )
    if top_level_dirs:
        lines.append("Top-level directories:")
        for d in top_level_dirs:
            lines.append(f"• {d.path} ({d.file_count} files, {d.loc} LOC): {d.summary}")
        lines.append("")

    key_files = sorted(files, key=lambda f: len(f.summary), reverse=True)
    if key_files:
        lines.append("Key files:")
        for f in key_files:
            lines.append(f"• {f.path}: {f.title} - {f.summary}")

    return "\n".join(lines)


def validate_domain_count(
    result: DomainDiscoveryResult, min_domains: int, max_domains: int
) -> None:
    count = len(result.top_level_domains)
    if not min_domains <= count <= max_domains:
        raise ValueError(
            f"Expected {min_domains}-{max_domains} top-level domains, got {count}"
        )


async def discover_root_and_top_level_domains(
    files: Sequence[FileContext],
    directories: Sequence[DirectoryRecord],
    provider: OntologyProvider,
    config: AppConfig = Config,
    scheduler: RequestScheduler | None = None,
) -> DomainDiscoveryResult:
    """Discover the root domain and the top-level functional domains.

    Raises:
        DomainDiscoveryError: every attempt failed or returned an invalid
            number of domains.
    """
    ontology = config.ontology
    context = build_discovery_context(files, directories)

    async def attempt() -> DomainDiscoveryResult:
        result = await provider.discover_domains(context)
        validate_domain_count(result, ontology.min_domains, ontology.max_domains)
        return result

    try:
        return await retry_with_backoff(
            attempt,
            "Domain discovery",
            max_attempts=ontology.max_attempts,
            backoff_factor=ontology.backoff_factor,
            scheduler=scheduler,
        )
    except Exception as e:
        raise DomainDiscoveryError(
            f"Domain discovery failed after {ontology.max_attempts} attempts: {e}"
        ) from e
