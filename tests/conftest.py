import asyncio
import os
import tempfile
from pathlib import Path

# Prevent tests from loading a local ktree.yaml by pointing the loader at an
# empty config file BEFORE any ktree imports.
_test_config_dir = tempfile.mkdtemp()
_test_config_path = Path(_test_config_dir) / "test-defaults.yaml"
_test_config_path.write_text("{}")
os.environ["KTREE_CONFIG_PATH"] = str(_test_config_path)

import pytest  # noqa: E402

from ktree.pipeline.config import AppConfig  # noqa: E402
from ktree.pipeline.embeddings.base import EmbedderBase  # noqa: E402
from ktree.pipeline.ontology.models import (  # noqa: E402
    AssignmentResult,
    Domain,
    DomainDiscoveryResult,
    FileAssignment,
    FileRecord,
    FileSummary,
    RootDomain,
    Subtopic,
    SubtopicStructure,
)
from ktree.pipeline.ontology.providers import OntologyProvider  # noqa: E402

_real_sleep = asyncio.sleep

KEYWORDS = ("auth", "login", "regist", "button", "interface", "component")


class KeywordEmbedder(EmbedderBase):
    """Deterministic embedder counting keyword occurrences per axis."""

    def __init__(self, keywords: tuple[str, ...] = KEYWORDS):
        super().__init__("keyword-test", len(keywords), AppConfig())
        self.keywords = keywords
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        lowered = text.lower()
        return [float(lowered.count(k)) for k in self.keywords]


def _domain_of(context: str) -> str:
    return context.splitlines()[0].removeprefix("Domain: ")


class FakeOntologyProvider(OntologyProvider):
    """Scripted provider keyed by domain title.

    `failures` maps a capability name to how many leading calls should
    raise before the scripted answer is returned.
    """

    def __init__(
        self,
        discovery: DomainDiscoveryResult,
        subtopics: dict[str, list[tuple[str, str]]] | None = None,
        assignments: dict[str, dict[str, list[str]]] | None = None,
        failures: dict[str, int] | None = None,
        embedder: EmbedderBase | None = None,
    ):
        self.discovery = discovery
        self.subtopics = subtopics or {}
        self.assignments = assignments or {}
        self.failures = dict(failures or {})
        self.embedder = embedder or KeywordEmbedder()
        self.calls: dict[str, list[str]] = {
            "discover_domains": [],
            "generate_subtopics": [],
            "assign_files": [],
        }

    def _record(self, name: str, context: str) -> None:
        self.calls[name].append(context)
        if self.failures.get(name, 0) > 0:
            self.failures[name] -= 1
            raise RuntimeError(f"{name} unavailable")

    async def discover_domains(self, context: str) -> DomainDiscoveryResult:
        self._record("discover_domains", context)
        return self.discovery

    async def generate_subtopics(self, context: str) -> SubtopicStructure:
        self._record("generate_subtopics", context)
        pairs = self.subtopics.get(_domain_of(context), [])
        return SubtopicStructure(
            subtopics=[Subtopic(title=t, description=d) for t, d in pairs]
        )

    async def assign_files(self, context: str) -> AssignmentResult:
        self._record("assign_files", context)
        mapping = self.assignments.get(_domain_of(context), {})
        return AssignmentResult(
            assignments=[
                FileAssignment(file_path=path, subtopics=subs)
                for path, subs in mapping.items()
            ]
        )

    async def embed(self, text: str) -> list[float]:
        return await self.embedder.embed(text)


class SerialTrackingProvider(FakeOntologyProvider):
    """Fake provider that also records how many calls overlap."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.in_flight = 0
        self.max_in_flight = 0

    async def _tracked(self, call):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await _real_sleep(0)
            return await call
        finally:
            self.in_flight -= 1

    async def generate_subtopics(self, context: str) -> SubtopicStructure:
        return await self._tracked(super().generate_subtopics(context))

    async def assign_files(self, context: str) -> AssignmentResult:
        return await self._tracked(super().assign_files(context))


def domains_called(provider: FakeOntologyProvider, name: str) -> list[str]:
    return [_domain_of(context) for context in provider.calls[name]]


def make_file(file_id: str, path: str, title: str, summary: str, loc: int = 10):
    return FileRecord(
        id=file_id,
        path=path,
        name=path.rsplit("/", 1)[-1],
        summary=FileSummary(title=title, summary=summary, loc=loc),
    )


@pytest.fixture
def test_config() -> AppConfig:
    """Default config with all pauses removed."""
    return AppConfig.model_validate(
        {
            "ontology": {
                "backoff_factor": 0,
                "domain_delay": 0,
                "embedding_batch_delay": 0,
                "persist_embeddings": False,
            }
        }
    )


@pytest.fixture
def scenario_files() -> list[FileRecord]:
    return [
        make_file(
            "f1",
            "src/auth/login.ts",
            "Login handler",
            "Authenticates users with login credentials",
        ),
        make_file(
            "f2",
            "src/auth/register.ts",
            "Registration handler",
            "Registers new users and authenticates them",
        ),
        make_file(
            "f3",
            "src/ui/button.ts",
            "Button component",
            "Renders a clickable button in the user interface",
        ),
    ]


@pytest.fixture
def scenario_discovery() -> DomainDiscoveryResult:
    return DomainDiscoveryResult(
        root_domain=RootDomain(
            title="Web App", description="A web application with accounts and UI"
        ),
        top_level_domains=[
            Domain(
                title="Authentication",
                description="Login, registration and authentication of users",
            ),
            Domain(
                title="User Interface",
                description="Visual components such as buttons and layouts",
            ),
        ],
    )


@pytest.fixture
def scenario_provider(scenario_discovery) -> FakeOntologyProvider:
    return FakeOntologyProvider(
        scenario_discovery,
        subtopics={
            "Authentication": [
                ("Sign In", "Credential checks and sessions"),
                ("Sign Up", "Account registration"),
            ],
            "User Interface": [("Controls", "Interactive widgets")],
        },
        assignments={
            "Authentication": {
                "src/auth/login.ts": ["Sign In"],
                "src/auth/register.ts": ["Sign Up"],
            },
            "User Interface": {"src/ui/button.ts": ["Controls"]},
        },
    )


@pytest.fixture
def keyword_embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def paced_config() -> AppConfig:
    """Config with a pause between domains and no retry backoff."""
    return AppConfig.model_validate(
        {
            "ontology": {
                "backoff_factor": 0,
                "domain_delay": 0.5,
                "embedding_batch_delay": 0,
                "persist_embeddings": False,
            }
        }
    )


@pytest.fixture
def recorded_sleeps(monkeypatch) -> list[float]:
    """Record asyncio.sleep durations instead of waiting."""
    sleeps: list[float] = []

    async def fake_sleep(seconds, *args, **kwargs):
        sleeps.append(seconds)
        await _real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    return sleeps
