from abc import ABC, abstractmethod

from pydantic_ai import Agent
from pydantic_ai.output import ToolOutput

from ktree.pipeline.config import AppConfig, Config
from ktree.pipeline.embeddings import get_embedder
from ktree.pipeline.embeddings.base import EmbedderBase
from ktree.pipeline.ontology.models import (
    AssignmentResult,
    DomainDiscoveryResult,
    SubtopicStructure,
)
from ktree.pipeline.ontology.prompts import (
    ASSIGNMENT_PROMPT,
    DOMAIN_DISCOVERY_PROMPT,
    SUBTOPIC_PROMPT,
)
from ktree.pipeline.utils import get_model


class OntologyProvider(ABC):
    """Capabilities the ontology pipeline needs from a model provider.

    Each structured call takes the prepared textual context and returns a
    parsed, schema-valid result. Providers raise on transport or parse
    failures; retrying is the caller's concern.
    """

    @abstractmethod
    async def discover_domains(self, context: str) -> DomainDiscoveryResult: ...

    @abstractmethod
    async def generate_subtopics(self, context: str) -> SubtopicStructure: ...

    @abstractmethod
    async def assign_files(self, context: str) -> AssignmentResult: ...

    @abstractmethod
    async def embed(self, text: str) -> list[float]: ...


class AgentOntologyProvider(OntologyProvider):
    """OntologyProvider backed by pydantic-ai agents.

    The model is resolved once from `config.ontology.model`, so any provider
    family supported by `get_model` can serve every capability.
    """

    def __init__(self, config: AppConfig = Config, embedder: EmbedderBase | None = None):
        self._config = config
        self._embedder = embedder
        ontology = config.ontology
        model = get_model(ontology.model, config)

        self._domain_agent = Agent(
            model=model,
            output_type=ToolOutput(
                DomainDiscoveryResult,
                name="extract_domain_structure",
                description="Extract root domain and top-level functional domains from repository analysis",
                max_retries=ontology.agent_retries,
            ),
            instructions=DOMAIN_DISCOVERY_PROMPT.format(
                min_domains=ontology.min_domains, max_domains=ontology.max_domains
            ),
            retries=ontology.agent_retries,
        )
        self._subtopic_agent = Agent(
            model=model,
            output_type=ToolOutput(
                SubtopicStructure,
                name="generate_subtopic_structure",
                description="Generate subtopic structure for a domain based on file analysis",
                max_retries=ontology.agent_retries,
            ),
            instructions=SUBTOPIC_PROMPT.format(max_subtopics=ontology.max_subtopics),
            retries=ontology.agent_retries,
        )
        self._assignment_agent = Agent(
            model=model,
            output_type=ToolOutput(
                AssignmentResult,
                name="assign_files_to_subtopics",
                description="Assign files to appropriate subtopics within a domain",
                max_retries=ontology.agent_retries,
            ),
            instructions=ASSIGNMENT_PROMPT,
            retries=ontology.agent_retries,
        )

    async def discover_domains(self, context: str) -> DomainDiscoveryResult:
        result = await self._domain_agent.run(f"Repository Context:\n{context}")
        return result.output

    async def generate_subtopics(self, context: str) -> SubtopicStructure:
        result = await self._subtopic_agent.run(
            f"Domain Context and Files:\n{context}"
        )
        return result.output

    async def assign_files(self, context: str) -> AssignmentResult:
        result = await self._assignment_agent.run(
            f"Domain Context and Assignment Task:\n{context}"
        )
        return result.output

    async def embed(self, text: str) -> list[float]:
        if self._embedder is None:
            self._embedder = get_embedder(self._config)
        return await self._embedder.embed(text)


def get_provider(config: AppConfig = Config) -> OntologyProvider:
    """Factory returning the ontology provider for the configured model."""
    return AgentOntologyProvider(config)
