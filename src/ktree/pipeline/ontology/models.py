import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ktree.pipeline.store.models import Topic, TopicNodeLink


class FileSummary(BaseModel):
    title: str
    summary: str
    loc: int = 0


class FileRecord(BaseModel):
    """A summarized source file produced upstream of the ontology stage."""

    id: str
    path: str
    name: str
    summary: FileSummary


class DirectoryRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    path: str
    summary: str
    file_count: int = Field(default=0, alias="fileCount")
    loc: int = 0


class FileContext(BaseModel):
    """Flattened view of a file used by the LLM phases."""

    id: str
    path: str
    title: str
    summary: str

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileContext":
        return cls(
            id=record.id,
            path=record.path,
            title=record.summary.title,
            summary=record.summary.summary,
        )


# Structured LLM outputs


class RootDomain(BaseModel):
    title: str = Field(description="Brief title for the entire repository")
    description: str = Field(
        description="Comprehensive description of the entire repository"
    )


class Domain(BaseModel):
    title: str = Field(description="Domain name (ontological categorisation)")
    description: str = Field(
        description="Comprehensive description of this functional area"
    )


class DomainDiscoveryResult(BaseModel):
    root_domain: RootDomain = Field(description="One domain describing the repository")
    top_level_domains: list[Domain] = Field(
        description="Between 2 and 10 broad functional domains covering the codebase"
    )


class Subtopic(BaseModel):
    title: str = Field(description="Subtopic name (descriptive and specific)")
    description: str = Field(
        description="Comprehensive description of this subtopic's focus area"
    )


class SubtopicStructure(BaseModel):
    subtopics: list[Subtopic] = Field(
        description="Distinct functional areas within the domain"
    )


class FileAssignment(BaseModel):
    file_path: str = Field(description="Exact file path from the provided list")
    subtopics: list[str] = Field(
        description="Subtopic titles this file belongs to (can be multiple)"
    )


class AssignmentResult(BaseModel):
    assignments: list[FileAssignment]


# Clustering


class FileCandidate(BaseModel):
    """A file placed in a domain cluster, with its embedding and score."""

    model_config = {"arbitrary_types_allowed": True}

    id: str
    path: str
    title: str
    summary: str
    embedding: np.ndarray
    similarity: float = 0.0


class DomainCluster(BaseModel):
    domain: Domain
    candidates: list[FileCandidate] = []
    threshold: float


class ClusterQuality(BaseModel):
    avg_intra_cluster_similarity: float
    coverage_percentage: int
    cluster_sizes: list[int]


class DomainPlan(BaseModel):
    """Everything the pipeline knows about one domain, keyed by domain id."""

    domain_id: str
    domain: Domain
    cluster: DomainCluster
    subtopics: SubtopicStructure | None = None
    assignments: AssignmentResult | None = None

    @property
    def is_empty(self) -> bool:
        return not self.cluster.candidates


# Results


class OntologyPersistenceResult(BaseModel):
    root_topic_id: str
    topic_count: int
    link_count: int
    coverage_percentage: int


class OntologyTiming(BaseModel):
    """Wall-clock duration of each phase in seconds."""

    embedding_time: float = 0.0
    domain_discovery_time: float = 0.0
    clustering_time: float = 0.0
    subtopic_time: float = 0.0
    assignment_time: float = 0.0
    persistence_time: float = 0.0
    total_time: float = 0.0


class OntologyBuildResult(BaseModel):
    persistence: OntologyPersistenceResult
    timing: OntologyTiming
    quality: ClusterQuality
    llm_call_count: int


class ValidationReport(BaseModel):
    passed: bool
    issues: list[str] = []


class OntologyStats(BaseModel):
    total_topics: int
    total_links: int
    max_depth: int


class OntologyStructure(BaseModel):
    topics: list[Topic]
    links: list[TopicNodeLink]
    stats: OntologyStats


class OntologyExport(BaseModel):
    structure: OntologyStructure
    validation: ValidationReport
