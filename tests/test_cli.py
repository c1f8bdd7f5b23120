import json
import sys

import pytest
import yaml
from typer.testing import CliRunner

from ktree.pipeline.cli import _cli as cli
from ktree.pipeline.cli import cli as cli_wrapper
from ktree.pipeline.ontology import OntologyExportError

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "ktree.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "ontology": {
                    "backoff_factor": 0,
                    "domain_delay": 0,
                    "embedding_batch_delay": 0,
                    "persist_embeddings": False,
                }
            }
        )
    )
    return path


@pytest.fixture
def summaries_file(tmp_path, scenario_files):
    path = tmp_path / "summaries.json"
    path.write_text(
        json.dumps(
            {
                "files": [f.model_dump() for f in scenario_files],
                "directories": [
                    {
                        "id": "d1",
                        "path": "src",
                        "summary": "Sources",
                        "fileCount": 3,
                        "loc": 30,
                    }
                ],
            }
        )
    )
    return path


@pytest.fixture
def fake_provider(monkeypatch, scenario_provider):
    monkeypatch.setattr(
        "ktree.pipeline.ontology.service.get_provider",
        lambda config: scenario_provider,
    )
    return scenario_provider


@pytest.fixture
def built(tmp_path, config_file, summaries_file, fake_provider):
    cache_dir = tmp_path / "cache"
    result = runner.invoke(
        cli,
        [
            "build",
            str(summaries_file),
            "--cache-dir",
            str(cache_dir),
            "--config",
            str(config_file),
        ],
    )
    assert result.exit_code == 0, result.output
    return cache_dir, result


def test_build(built):
    _, result = built
    assert "Ontology build" in result.output
    assert "Topics" in result.output
    assert "All validation checks passed" in result.output


def test_build_directory_context(built, fake_provider):
    context = fake_provider.calls["discover_domains"][0]
    assert "• src (3 files, 30 LOC): Sources" in context


def test_build_strict_fails_on_validation_issues(
    tmp_path, summaries_file, fake_provider
):
    config_file = tmp_path / "strict.yaml"
    config_file.write_text(
        yaml.safe_dump(
            {
                "ontology": {
                    "backoff_factor": 0,
                    "domain_delay": 0,
                    "embedding_batch_delay": 0,
                    "persist_embeddings": False,
                },
                "validation": {"max_llm_calls": 1},
            }
        )
    )
    args = [
        "build",
        str(summaries_file),
        "--cache-dir",
        str(tmp_path / "cache"),
        "--config",
        str(config_file),
    ]

    lenient = runner.invoke(cli, args)
    assert lenient.exit_code == 0
    assert "LLM calls exceed 1: 5" in lenient.output

    strict = runner.invoke(cli, [*args, "--strict"])
    assert strict.exit_code == 1


def test_build_missing_summaries(tmp_path, config_file):
    result = runner.invoke(
        cli, ["build", str(tmp_path / "nope.json"), "--config", str(config_file)]
    )
    assert result.exit_code != 0


def test_build_missing_config(tmp_path, summaries_file):
    result = runner.invoke(
        cli, ["build", str(summaries_file), "--config", str(tmp_path / "nope.yaml")]
    )
    assert result.exit_code != 0


def test_export_tree(built, config_file):
    cache_dir, _ = built
    result = runner.invoke(
        cli, ["export", "--cache-dir", str(cache_dir), "--config", str(config_file)]
    )
    assert result.exit_code == 0, result.output
    assert "Web App" in result.output
    assert "Authentication" in result.output
    assert "Sign In" in result.output
    assert "6 topics, 3 links, max depth 2" in result.output


def test_export_json(built, config_file):
    cache_dir, _ = built
    result = runner.invoke(
        cli,
        [
            "export",
            "--cache-dir",
            str(cache_dir),
            "--config",
            str(config_file),
            "--json",
        ],
    )
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["validation"]["passed"] is True
    assert data["structure"]["stats"]["total_topics"] == 6


def test_topics_for_file(built, config_file):
    cache_dir, _ = built
    result = runner.invoke(
        cli,
        ["topics", "f3", "--cache-dir", str(cache_dir), "--config", str(config_file)],
    )
    assert result.exit_code == 0
    assert "domain-2-sub-1" in result.output
    assert "Controls" in result.output


def test_topics_for_unlinked_file(built, config_file):
    cache_dir, _ = built
    result = runner.invoke(
        cli,
        ["topics", "f9", "--cache-dir", str(cache_dir), "--config", str(config_file)],
    )
    assert "No topics linked to f9" in result.output


def test_files_for_topic(built, config_file):
    cache_dir, _ = built
    result = runner.invoke(
        cli,
        [
            "files",
            "domain-1-sub-1",
            "--cache-dir",
            str(cache_dir),
            "--config",
            str(config_file),
        ],
    )
    assert result.exit_code == 0
    assert result.output.split() == ["f1"]


def test_titles_with_markup_are_printed_verbatim(
    tmp_path, config_file, summaries_file, fake_provider
):
    fake_provider.discovery.root_domain.title = "Web [/] App"
    fake_provider.subtopics["Authentication"][0] = ("[bold]Sign In", "Credentials")
    fake_provider.assignments["Authentication"]["src/auth/login.ts"] = [
        "[bold]Sign In"
    ]
    cache_dir = tmp_path / "cache"
    options = ["--cache-dir", str(cache_dir), "--config", str(config_file)]

    result = runner.invoke(cli, ["build", str(summaries_file), *options])
    assert result.exit_code == 0, result.output

    result = runner.invoke(cli, ["export", *options])
    assert result.exit_code == 0, result.output
    assert "Web [/] App" in result.output
    assert "[bold]Sign In" in result.output

    result = runner.invoke(cli, ["topics", "f1", *options])
    assert result.exit_code == 0, result.output
    assert "[bold]Sign In" in result.output


def test_init_config(tmp_path):
    output = tmp_path / "ktree.yaml"

    result = runner.invoke(cli, ["init-config", str(output)])
    assert result.exit_code == 0
    assert yaml.safe_load(output.read_text())["ontology"]["max_attempts"] == 3

    again = runner.invoke(cli, ["init-config", str(output)])
    assert again.exit_code == 1

    forced = runner.invoke(cli, ["init-config", str(output), "--force"])
    assert forced.exit_code == 0


def test_export_missing_ontology(tmp_path, config_file):
    result = runner.invoke(
        cli,
        [
            "export",
            "--cache-dir",
            str(tmp_path / "empty"),
            "--config",
            str(config_file),
        ],
    )
    assert result.exit_code != 0
    assert isinstance(result.exception, OntologyExportError)


def test_cli_wrapper_reports_pipeline_errors(tmp_path, config_file, monkeypatch):
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "ktree-ontology",
            "export",
            "--cache-dir",
            str(tmp_path / "empty"),
            "--config",
            str(config_file),
        ],
    )
    with pytest.raises(SystemExit) as exc_info:
        cli_wrapper()
    assert exc_info.value.code == 1
