"""Unit tests for pipeline definition loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.errors import PipelineSpecError
from core.pipeline_spec import load_pipeline_spec, parse_pipeline_spec
from tests.fixture_paths import fixture_path


def _minimal_payload() -> dict[str, object]:
    return {
        "version": 1,
        "final_stage": "app",
        "stages": [
            {"name": "lib", "base": "debian", "outputs": ["usr/lib"]},
            {"name": "app", "base": "debian", "commands": ["make"]},
        ],
        "edges": [
            {
                "producer": "lib",
                "consumer": "app",
                "artifacts": [{"from": "usr/lib/libx.so", "to": "usr/lib/"}],
            }
        ],
    }


def test_load_pipeline_spec_parses_valid_file() -> None:
    """Valid pipeline file should parse stages in declaration order."""
    spec = load_pipeline_spec(str(fixture_path("pipeline/valid_pipeline.yaml")))

    assert [stage.name for stage in spec.stages] == ["source", "lib-build", "app"]


def test_load_pipeline_spec_reads_source_retry_settings() -> None:
    """Per-source retry settings should override configured defaults."""
    spec = load_pipeline_spec(str(fixture_path("pipeline/valid_pipeline.yaml")))
    source = spec.stage("source").sources[0]

    assert (
        source.name == "app"
        and source.repository.ref == "v1.0"
        and source.max_attempts == 2
        and source.backoff_seconds == 0.0
    )


def test_load_pipeline_spec_names_unnamed_commands() -> None:
    """Plain string commands should receive positional step names."""
    spec = load_pipeline_spec(str(fixture_path("pipeline/valid_pipeline.yaml")))

    assert [command.step for command in spec.stage("app").commands] == [
        "bootstrap",
        "configure",
        "command-3",
    ]


def test_load_pipeline_spec_resolves_toggle_table_file() -> None:
    """Toggle tables should load relative to the pipeline file."""
    spec = load_pipeline_spec(str(fixture_path("pipeline/valid_pipeline.yaml")))
    toggles = spec.stage("app").toggles

    assert toggles is not None and dict(toggles.table) == {
        "endpoints/mod_verto": False,
        "mod_lua": False,
    }


def test_load_pipeline_spec_parses_runtime_layout() -> None:
    """Runtime layout should carry identity, modes, config and listeners."""
    spec = load_pipeline_spec(str(fixture_path("pipeline/valid_pipeline.yaml")))
    runtime = spec.runtime

    assert runtime is not None
    assert (
        runtime.identity.group == "app"
        and runtime.identity.gid == 999
        and runtime.directories[1].mode == 0o750
        and runtime.workdir == "/opt/app"
        and runtime.config_file is not None
        and "$password" in runtime.config_file.template
        and [listener.render() for listener in runtime.listeners]
        == ["8021/tcp", "64535-65535/udp"]
    )


def test_load_pipeline_spec_rejects_cycles() -> None:
    """Cyclic artifact edges should be rejected before any stage runs."""
    with pytest.raises(PipelineSpecError, match="cycle"):
        load_pipeline_spec(str(fixture_path("pipeline/cyclic_pipeline.yaml")))


def test_load_pipeline_spec_rejects_undeclared_artifact() -> None:
    """Artifacts outside the producer's outputs should be rejected."""
    with pytest.raises(PipelineSpecError, match="outputs"):
        load_pipeline_spec(str(fixture_path("pipeline/undeclared_artifact.yaml")))


def test_load_pipeline_spec_rejects_unknown_fields() -> None:
    """Unknown stage keys should fail with the offending field name."""
    with pytest.raises(PipelineSpecError, match="image"):
        load_pipeline_spec(str(fixture_path("pipeline/unknown_field.yaml")))


def test_load_pipeline_spec_rejects_privileged_runtime_user() -> None:
    """The runtime identity must not be uid 0."""
    with pytest.raises(PipelineSpecError, match="uid 0"):
        load_pipeline_spec(str(fixture_path("pipeline/root_user.yaml")))


def test_load_pipeline_spec_reports_missing_file(tmp_path) -> None:
    """Missing pipeline files should raise a spec error."""
    with pytest.raises(PipelineSpecError, match="does not exist"):
        load_pipeline_spec(str(tmp_path / "missing.yaml"))


def test_parse_pipeline_spec_rejects_unknown_final_stage(tmp_path: Path) -> None:
    """final_stage must name a declared stage."""
    payload = _minimal_payload()
    payload["final_stage"] = "missing"

    with pytest.raises(PipelineSpecError, match="missing"):
        parse_pipeline_spec(payload, tmp_path)


def test_parse_pipeline_spec_rejects_escaping_paths(tmp_path: Path) -> None:
    """Artifact paths must not climb out of a work tree."""
    payload = _minimal_payload()
    payload["edges"] = [
        {
            "producer": "lib",
            "consumer": "app",
            "artifacts": [{"from": "usr/lib/../../etc/passwd", "to": "etc/"}],
        }
    ]

    with pytest.raises(PipelineSpecError, match=r"\.\."):
        parse_pipeline_spec(payload, tmp_path)


def test_parse_pipeline_spec_rejects_toggle_before_unknown_step(tmp_path: Path) -> None:
    """The toggle step must precede a command step of the same stage."""
    payload = _minimal_payload()
    stages = payload["stages"]
    assert isinstance(stages, list)
    stages[1]["toggles"] = {
        "manifest": "modules.conf",
        "before": "configure",
        "table": {"mod_lua": False},
    }

    with pytest.raises(PipelineSpecError, match="configure"):
        parse_pipeline_spec(payload, tmp_path)


def test_parse_pipeline_spec_rejects_duplicate_stage_names(tmp_path: Path) -> None:
    """Stage names must be unique."""
    payload = _minimal_payload()
    stages = payload["stages"]
    assert isinstance(stages, list)
    stages.append({"name": "lib", "base": "debian"})

    with pytest.raises(PipelineSpecError, match="more than once"):
        parse_pipeline_spec(payload, tmp_path)


def test_parse_pipeline_spec_rejects_secret_declared_twice(tmp_path: Path) -> None:
    """A config parameter cannot be both literal and secret."""
    payload = _minimal_payload()
    payload["runtime"] = {
        "root": "/opt/app",
        "user": {"name": "app", "uid": 999},
        "config": {
            "path": "conf/app.conf",
            "template": "password=$password",
            "parameters": {"password": "plain"},
            "secret_parameters": {"password": "APP_PASSWORD"},
        },
    }

    with pytest.raises(PipelineSpecError, match="password"):
        parse_pipeline_spec(payload, tmp_path)


def test_parse_pipeline_spec_rejects_inverted_port_range(tmp_path: Path) -> None:
    """A listener range must not end below its start."""
    payload = _minimal_payload()
    payload["runtime"] = {
        "root": "/opt/app",
        "user": {"name": "app", "uid": 999},
        "listeners": [{"protocol": "udp", "port": 6000, "port_end": 5000}],
    }

    with pytest.raises(PipelineSpecError, match="port_end"):
        parse_pipeline_spec(payload, tmp_path)


def test_reference_pipeline_loads() -> None:
    """The shipped telephony pipeline should validate."""
    spec_path = Path(__file__).resolve().parents[3] / "pipelines" / "freeswitch.yaml"

    spec = load_pipeline_spec(str(spec_path))

    assert spec.final_stage == "freeswitch" and spec.runtime is not None


@pytest.mark.parametrize("stage_name", ["../victim", "..", "lib/build", ".hidden"])
def test_parse_pipeline_spec_rejects_unsafe_stage_names(tmp_path, stage_name: str) -> None:
    """Stage names become directory names, so path-like names are refused."""
    payload = _minimal_payload()
    payload["stages"][0]["name"] = stage_name
    payload["edges"][0]["producer"] = stage_name

    with pytest.raises(PipelineSpecError, match="is not allowed"):
        parse_pipeline_spec(payload, tmp_path)


def test_reference_pipeline_disables_optional_features() -> None:
    """The telephony configure step should turn off the unused optional features."""
    spec_path = Path(__file__).resolve().parents[3] / "pipelines" / "freeswitch.yaml"
    configure = next(
        command
        for command in load_pipeline_spec(str(spec_path)).stage("freeswitch").commands
        if command.step == "configure"
    )

    assert all(
        flag in configure.run.split()
        for flag in ("--disable-erlang", "--disable-java", "--disable-verto", "--disable-rtc")
    )
