class OntologyError(Exception):
    """Base class for ontology pipeline errors."""


class DomainDiscoveryError(OntologyError):
    pass


class SubtopicGenerationError(OntologyError):
    def __init__(self, domain_title: str, attempts: int):
        self.domain_title = domain_title
        self.attempts = attempts
        super().__init__(
            f'Failed to generate subtopics for domain "{domain_title}" '
            f"after {attempts} attempts"
        )


class TopicAssignmentError(OntologyError):
    def __init__(self, domain_title: str, attempts: int):
        self.domain_title = domain_title
        self.attempts = attempts
        super().__init__(
            f'Failed to assign files for domain "{domain_title}" '
            f"after {attempts} attempts"
        )


class AssignmentValidationError(ValueError):
    """An assignment result references unknown data or misses a candidate."""


class OntologyPersistenceError(OntologyError):
    pass


class OntologyExtractionError(OntologyError):
    pass


class OntologyExportError(OntologyError):
    pass
