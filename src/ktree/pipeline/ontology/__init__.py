from ktree.pipeline.ontology.errors import (
    AssignmentValidationError,
    DomainDiscoveryError,
    OntologyError,
    OntologyExportError,
    OntologyExtractionError,
    OntologyPersistenceError,
    SubtopicGenerationError,
    TopicAssignmentError,
)
from ktree.pipeline.ontology.models import (
    DirectoryRecord,
    FileRecord,
    FileSummary,
    OntologyBuildResult,
    OntologyExport,
    ValidationReport,
)
from ktree.pipeline.ontology.persistence import (
    calculate_coverage,
    get_files_for_topic,
    get_topics_for_file,
    query_ontology_structure,
)
from ktree.pipeline.ontology.providers import (
    AgentOntologyProvider,
    OntologyProvider,
    get_provider,
)
from ktree.pipeline.ontology.service import (
    build_ontology,
    export_ontology_structure,
    validate_ontology_results,
)

__all__ = [
    "AgentOntologyProvider",
    "AssignmentValidationError",
    "DirectoryRecord",
    "DomainDiscoveryError",
    "FileRecord",
    "FileSummary",
    "OntologyBuildResult",
    "OntologyError",
    "OntologyExport",
    "OntologyExportError",
    "OntologyExtractionError",
    "OntologyPersistenceError",
    "OntologyProvider",
    "SubtopicGenerationError",
    "TopicAssignmentError",
    "ValidationReport",
    "build_ontology",
    "calculate_coverage",
    "export_ontology_structure",
    "get_files_for_topic",
    "get_provider",
    "get_topics_for_file",
    "query_ontology_structure",
    "validate_ontology_results",
]
