"""
Tests for CLI module.

Reports are generated through the real pipeline with scripted clients:
generate_report is wrapped so every service answer, analysis, visibility
and recommendation call comes from MockLLMClient instead of the network.

Commands:
    - run: success, duplicate correlation id, config and pipeline errors
    - validate: valid and invalid configs
    - show / latest / competitors / sources / export / wait
    - main callback: version flag

Output Modes:
    - Human mode (--format text)
    - Agent mode (--format json): valid JSON on stdout
    - Quiet mode (--quiet): tab-separated output

Exit Codes:
    - 0: Success
    - 1: Configuration error
    - 2: Database error or unknown report
    - 3: Report failed
    - 4: Report still generating after wait timeout
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from visibility_probe.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_DB_ERROR,
    EXIT_REPORT_FAILED,
    EXIT_REPORT_PENDING,
    EXIT_SUCCESS,
    app,
)
from visibility_probe.config.schema import CompanyConfig
from visibility_probe.exceptions import PipelineError, PromptGenerationError
from visibility_probe.extractor.answer_analyzer import AnswerAnalyzer
from visibility_probe.extractor.recommendation_generator import RecommendationGenerator
from visibility_probe.extractor.visibility_analyzer import VisibilityAnalyzer
from visibility_probe.llm_runner import runner
from visibility_probe.llm_runner.mock_client import MockLLMClient
from visibility_probe.llm_runner.probe import ServiceProbeContext
from visibility_probe.storage.db import (
    connect,
    create_report,
    init_db_if_needed,
    upsert_company,
)

COMPANY_URL = "https://beanthere.example"

ANALYSIS = json.dumps(
    {
        "business_mentioned": True,
        "rank": 1,
        "competitors": [{"name": "Stumptown", "rank": 2, "source_index": 1}],
    }
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def no_log_setup(monkeypatch):
    """Keep JSON log lines off the captured output and the root logger untouched."""
    monkeypatch.setattr("visibility_probe.cli.setup_logging", lambda **kwargs: None)


@pytest.fixture(autouse=True)
def api_keys(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-openai")
    monkeypatch.setenv("PERPLEXITY_API_KEY", "pplx-test")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "probe.db"


@pytest.fixture
def config_path(tmp_path, db_path):
    config_data = {
        "company": {
            "name": "Bean There Coffee",
            "url": COMPANY_URL,
            "industry": "Specialty coffee roasting",
        },
        "report_settings": {
            "runs_per_prompt": 2,
            "services": ["gpt"],
            "sqlite_db_path": str(db_path),
        },
        "prompts": [
            {"category": "Finding a business", "prompt": "Best roaster in Portland?"},
            {"category": "Comparing options", "prompt": "Which roaster ships fastest?"},
        ],
    }
    path = tmp_path / "probe.config.yaml"
    path.write_text(yaml.safe_dump(config_data))
    return path


@pytest.fixture
def scripted_pipeline(monkeypatch):
    """Run the real report pipeline against scripted clients."""
    real_generate_report = runner.generate_report

    async def generate_report(config, conn, **kwargs):
        services = [
            ServiceProbeContext(
                service_id=service.service_id,
                answer_client=MockLLMClient(
                    default_response="Bean There Coffee, then Stumptown.",
                    sources=["https://www.stumptown.example/beans", "https://guide.example/"],
                ),
                analyzer=AnswerAnalyzer(MockLLMClient(default_response=ANALYSIS)),
                timeout_seconds=5.0,
            )
            for service in config.services
        ]
        visibility = VisibilityAnalyzer(
            MockLLMClient(
                default_response='{"overallAssessment": "High", "keyFactors": ["Local"]}'
            )
        )
        recommendations = RecommendationGenerator(
            MockLLMClient(
                default_response=json.dumps(
                    [{"title": "Collect reviews", "description": "Ask regulars.", "priority": 1}]
                )
            )
        )
        return await real_generate_report(
            config,
            conn,
            services=services,
            visibility_analyzer=visibility,
            recommendation_generator=recommendations,
            **kwargs,
        )

    monkeypatch.setattr("visibility_probe.cli.generate_report", generate_report)


@pytest.fixture
def completed_report(cli_runner, config_path, scripted_pipeline):
    """Generate one report through the CLI and return its id."""
    result = cli_runner.invoke(app, ["run", "--config", str(config_path), "--format", "json"])
    assert result.exit_code == EXIT_SUCCESS, result.output
    return json.loads(result.stdout)["report"]["report"]["id"]


@pytest.fixture
def generating_report(db_path):
    """A report left in 'generating' (as if another worker were running it)."""
    init_db_if_needed(str(db_path))
    conn = connect(str(db_path))
    company_id = upsert_company(
        conn, CompanyConfig(name="Bean There Coffee", url=COMPANY_URL)
    )
    report_id = create_report(conn, company_id, 2, 2, ["gpt"])
    conn.close()
    return report_id


# ============================================================================
# run
# ============================================================================


def test_run_json_output(cli_runner, config_path, scripted_pipeline):
    result = cli_runner.invoke(app, ["run", "--config", str(config_path), "--format", "json"])

    assert result.exit_code == EXIT_SUCCESS, result.output
    payload = json.loads(result.stdout)
    report = payload["report"]
    assert payload["status"] == "success"
    assert report["report"]["status"] == "completed"
    assert report["report"]["visibility_level"] == "High"
    assert report["summary"]["overall"]["visibility_score"] == 100
    assert report["summary"]["overall"]["average_rank"] == 1.0
    assert [p["prompt_text"] for p in report["prompts"]] == [
        "Best roaster in Portland?",
        "Which roaster ships fastest?",
    ]
    assert report["competitors"] == [
        {"name": "Stumptown", "total_mentions": 4, "average_rank": 2.0}
    ]
    assert report["top_sources"][0] == {"domain": "guide.example", "count": 4}
    assert report["recommendations"][0]["title"] == "Collect reviews"
    assert report["recommendations"][0]["priority"] == "High"


def test_run_human_output(cli_runner, config_path, scripted_pipeline):
    result = cli_runner.invoke(app, ["run", "--config", str(config_path)])

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert "Bean There Coffee" in result.stdout
    assert "completed" in result.stdout


def test_run_quiet_output(cli_runner, config_path, scripted_pipeline):
    result = cli_runner.invoke(app, ["run", "--config", str(config_path), "--quiet"])

    assert result.exit_code == EXIT_SUCCESS, result.output
    assert "\tcompleted\t100\t100.0\t100.0" in result.stdout


def test_run_duplicate_correlation_id(cli_runner, config_path, scripted_pipeline):
    args = ["run", "--config", str(config_path), "--format", "json", "--correlation-id", "msg-1"]

    first = cli_runner.invoke(app, args)
    second = cli_runner.invoke(app, args)

    assert first.exit_code == EXIT_SUCCESS, first.output
    assert second.exit_code == EXIT_SUCCESS, second.output
    second_payload = json.loads(second.stdout)
    assert "already has report" in second_payload["warning"]
    assert (
        second_payload["report"]["report"]["id"]
        == json.loads(first.stdout)["report"]["report"]["id"]
    )


def test_run_missing_api_key(cli_runner, config_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")

    result = cli_runner.invoke(app, ["run", "--config", str(config_path), "--format", "json"])

    assert result.exit_code == EXIT_CONFIG_ERROR
    assert "API key missing" in json.loads(result.stdout)["error"]


def test_run_invalid_config(cli_runner, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("company:\n  name: Bean There\n")

    result = cli_runner.invoke(app, ["run", "--config", str(path), "--format", "json"])

    assert result.exit_code == EXIT_CONFIG_ERROR
    assert json.loads(result.stdout)["status"] == "error"


def test_run_prompt_generation_failure(cli_runner, config_path, monkeypatch):
    async def generate_report(config, conn, **kwargs):
        raise PromptGenerationError("Prompt generation returned no usable prompts")

    monkeypatch.setattr("visibility_probe.cli.generate_report", generate_report)

    result = cli_runner.invoke(app, ["run", "--config", str(config_path), "--format", "json"])

    assert result.exit_code == EXIT_REPORT_FAILED
    assert "Prompt generation failed" in json.loads(result.stdout)["error"]


def test_run_pipeline_failure(cli_runner, config_path, monkeypatch):
    async def generate_report(config, conn, **kwargs):
        raise PipelineError("Report 5 failed: database is locked", report_id=5)

    monkeypatch.setattr("visibility_probe.cli.generate_report", generate_report)

    result = cli_runner.invoke(app, ["run", "--config", str(config_path), "--format", "json"])

    assert result.exit_code == EXIT_REPORT_FAILED
    payload = json.loads(result.stdout)
    assert payload["report_id"] == 5
    assert "database is locked" in payload["error"]


# ============================================================================
# validate
# ============================================================================


def test_validate_valid_config(cli_runner, config_path):
    result = cli_runner.invoke(
        app, ["validate", "--config", str(config_path), "--format", "json"]
    )

    assert result.exit_code == EXIT_SUCCESS
    payload = json.loads(result.stdout)
    assert payload["valid"] is True
    assert payload["services"] == ["gpt"]
    assert payload["prompt_count"] == 2
    assert payload["runs_per_prompt"] == 2


def test_validate_invalid_config(cli_runner, tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text(
        "company:\n  name: Bean There\n  url: https://b.example\n"
        "report_settings:\n  runs_per_prompt: 0\n"
    )

    result = cli_runner.invoke(app, ["validate", "--config", str(path), "--format", "json"])

    assert result.exit_code == EXIT_CONFIG_ERROR
    payload = json.loads(result.stdout)
    assert payload["valid"] is False
    assert payload["error_type"] == "ConfigValidationError"


def test_validate_missing_file(cli_runner, tmp_path):
    result = cli_runner.invoke(app, ["validate", "--config", str(tmp_path / "nope.yaml")])

    # Typer rejects a non-existent --config path before the command runs
    assert result.exit_code == 2


# ============================================================================
# Report lookups
# ============================================================================


def test_show_quiet(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(
        app, ["show", str(completed_report), "--db", str(db_path), "--quiet"]
    )

    assert result.exit_code == EXIT_SUCCESS
    assert result.stdout == f"{completed_report}\tcompleted\t100\t100.0\t100.0\n"


def test_show_unknown_report(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(app, ["show", "999", "--db", str(db_path), "--format", "json"])

    assert result.exit_code == EXIT_DB_ERROR
    assert "does not exist" in json.loads(result.stdout)["error"]


def test_latest_by_url(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(
        app, ["latest", "--url", COMPANY_URL, "--db", str(db_path), "--format", "json"]
    )

    assert result.exit_code == EXIT_SUCCESS
    assert json.loads(result.stdout)["report"]["report"]["id"] == completed_report


def test_latest_unknown_company(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(
        app, ["latest", "--url", "https://unknown.example", "--db", str(db_path)]
    )

    assert result.exit_code == EXIT_DB_ERROR


def test_competitors_quiet(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(
        app, ["competitors", str(completed_report), "--db", str(db_path), "--quiet"]
    )

    assert result.exit_code == EXIT_SUCCESS
    assert result.stdout == "Stumptown\t4\t2.0\n"


def test_sources_json_with_limit(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(
        app,
        ["sources", str(completed_report), "--db", str(db_path), "--limit", "1", "--format", "json"],
    )

    assert result.exit_code == EXIT_SUCCESS
    assert json.loads(result.stdout)["sources"] == [{"domain": "guide.example", "count": 4}]


def test_export(cli_runner, db_path, completed_report, tmp_path):
    output = tmp_path / "exports" / "report.json"

    result = cli_runner.invoke(
        app,
        ["export", str(completed_report), "--db", str(db_path), "--output", str(output)],
    )

    assert result.exit_code == EXIT_SUCCESS, result.output
    exported = json.loads(output.read_text())
    assert exported["report"]["id"] == completed_report
    assert len(exported["prompts"]) == 2


def test_export_unknown_report(cli_runner, db_path, completed_report, tmp_path):
    result = cli_runner.invoke(
        app, ["export", "999", "--db", str(db_path), "--output", str(tmp_path / "r.json")]
    )

    assert result.exit_code == EXIT_DB_ERROR


# ============================================================================
# wait
# ============================================================================


def test_wait_completed_report(cli_runner, db_path, completed_report):
    result = cli_runner.invoke(
        app, ["wait", str(completed_report), "--db", str(db_path), "--quiet"]
    )

    assert result.exit_code == EXIT_SUCCESS
    assert "\tcompleted\t" in result.stdout


def test_wait_gives_up_on_generating_report(cli_runner, db_path, generating_report):
    result = cli_runner.invoke(
        app,
        ["wait", str(generating_report), "--db", str(db_path), "--timeout", "0", "--format", "json"],
    )

    assert result.exit_code == EXIT_REPORT_PENDING
    assert "still generating" in json.loads(result.stdout)["warning"]


def test_wait_unknown_report(cli_runner, db_path, generating_report):
    result = cli_runner.invoke(app, ["wait", "999", "--db", str(db_path), "--timeout", "0"])

    assert result.exit_code == EXIT_DB_ERROR


# ============================================================================
# main callback
# ============================================================================


def test_version_flag(cli_runner):
    result = cli_runner.invoke(app, ["--version"])

    assert result.exit_code == EXIT_SUCCESS
    assert "visibility-probe" in result.stdout


def test_no_command_shows_hint(cli_runner):
    result = cli_runner.invoke(app, [])

    assert result.exit_code == EXIT_SUCCESS
    assert "--help" in result.stdout
