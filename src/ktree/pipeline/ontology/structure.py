import logging
from collections.abc import Sequence

import numpy as np

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.embeddings.gateway import EmbeddingGateway
from ktree.pipeline.ontology.models import (
    ClusterQuality,
    Domain,
    DomainCluster,
    FileCandidate,
    FileContext,
)
from ktree.pipeline.vector.similarity import cosine_similarity, normalize
from ktree.pipeline.vector.storage import VectorStorage

logger = logging.getLogger(__name__)


def file_embedding_text(file: FileContext) -> str:
    return f"{file.title}: {file.summary}"


def domain_embedding_text(domain: Domain) -> str:
    return f"{domain.title}: {domain.description}"


async def generate_file_embeddings(
    files: Sequence[FileContext],
    gateway: EmbeddingGateway,
    batch_size: int = 10,
    delay: float = 0.1,
    storage: VectorStorage | None = None,
) -> list[FileCandidate]:
    """Embed every file as `title: summary`, in concurrent batches.

    When a vector store is given the vectors are also persisted under the
    file id.
    """
    results = await gateway.generate_batch_embeddings(
        [file_embedding_text(f) for f in files], batch_size=batch_size, delay=delay
    )

    candidates = []
    for file, result in zip(files, results, strict=True):
        candidates.append(
            FileCandidate(
                id=file.id,
                path=file.path,
                title=file.title,
                summary=file.summary,
                embedding=normalize(result.vector),
            )
        )
        if storage is not None:
            await storage.save_embedding(file.id, result.vector, result.model)

    logger.info("Embedded %d files", len(candidates))
    return candidates


async def generate_domain_embeddings(
    domains: Sequence[Domain], gateway: EmbeddingGateway
) -> list[np.ndarray]:
    embeddings = []
    for domain in domains:
        result = await gateway.generate_embedding(domain_embedding_text(domain))
        embeddings.append(normalize(result.vector))
    return embeddings


def find_similar_files(
    files: Sequence[FileCandidate], domain_embedding: np.ndarray, threshold: float
) -> list[FileCandidate]:
    """Files whose similarity to the domain is at least `threshold`.

    Ordered by descending similarity; ties keep input order.
    """
    scored = [
        (file, cosine_similarity(file.embedding, domain_embedding)) for file in files
    ]
    selected = [(f, s) for f, s in scored if s >= threshold]
    selected.sort(key=lambda item: item[1], reverse=True)
    return [f.model_copy(update={"similarity": s}) for f, s in selected]


def assign_unassigned_files(
    unassigned: Sequence[FileCandidate],
    clusters: list[DomainCluster],
    domain_embeddings: Sequence[np.ndarray],
) -> None:
    """Append each file to the cluster of its most similar domain.

    The threshold is ignored here. On equal scores the earlier domain wins.
    """
    for file in unassigned:
        best_index = 0
        best_similarity = -1.0
        for i, domain_embedding in enumerate(domain_embeddings):
            similarity = cosine_similarity(file.embedding, domain_embedding)
            if similarity > best_similarity:
                best_similarity = similarity
                best_index = i
        clusters[best_index].candidates.append(
            file.model_copy(update={"similarity": best_similarity})
        )


async def cluster_files_by_domain(
    files: Sequence[FileCandidate],
    domains: Sequence[Domain],
    gateway: EmbeddingGateway,
    threshold: float = 0.3,
) -> list[DomainCluster]:
    """Cluster embedded files into one cluster per domain, in domain order.

    Every file ends up in at least one cluster.
    """
    if not domains:
        raise ValueError("Cannot cluster files without domains")

    logger.info("Clustering %d files by %d domains", len(files), len(domains))
    domain_embeddings = await generate_domain_embeddings(domains, gateway)

    clusters = [
        DomainCluster(
            domain=domain,
            candidates=find_similar_files(files, embedding, threshold),
            threshold=threshold,
        )
        for domain, embedding in zip(domains, domain_embeddings, strict=True)
    ]

    assigned_ids = {c.id for cluster in clusters for c in cluster.candidates}
    unassigned = [f for f in files if f.id not in assigned_ids]
    if unassigned:
        logger.info("Assigning %d unassigned files", len(unassigned))
        assign_unassigned_files(unassigned, clusters, domain_embeddings)

    for cluster in clusters:
        logger.info("%s: %d files", cluster.domain.title, len(cluster.candidates))
    return clusters


async def generate_structure_for_domains(
    files: Sequence[FileContext],
    domains: Sequence[Domain],
    gateway: EmbeddingGateway,
    config: AppConfig = Config,
    storage: VectorStorage | None = None,
) -> list[DomainCluster]:
    """Embed all files and cluster them by domain similarity."""
    ontology = config.ontology
    logger.info("Generating embeddings for %d files", len(files))
    candidates = await generate_file_embeddings(
        files,
        gateway,
        batch_size=ontology.embedding_batch_size,
        delay=ontology.embedding_batch_delay,
        storage=storage,
    )
    return await cluster_files_by_domain(
        candidates, domains, gateway, threshold=ontology.similarity_threshold
    )


def analyze_cluster_quality(clusters: Sequence[DomainCluster]) -> ClusterQuality:
    """Average pairwise similarity inside clusters, plus cluster sizes.

    Clusters with fewer than two files contribute no pairs. Coverage is
    100 by construction of the clustering.
    """
    total_similarity = 0.0
    total_pairs = 0
    for cluster in clusters:
        n = len(cluster.candidates)
        if n < 2:
            continue
        matrix = np.vstack([c.embedding for c in cluster.candidates])
        similarities = matrix @ matrix.T
        rows, cols = np.triu_indices(n, k=1)
        total_similarity += float(similarities[rows, cols].sum())
        total_pairs += len(rows)

    return ClusterQuality(
        avg_intra_cluster_similarity=(
            total_similarity / total_pairs if total_pairs else 0.0
        ),
        coverage_percentage=100,
        cluster_sizes=[len(c.candidates) for c in clusters],
    )
