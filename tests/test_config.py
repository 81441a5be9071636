"""Tests for settings, environment loading and region resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from holodeck.api.environment import Environment
from holodeck.config import (
    DEFAULT_CACHE_DIR,
    default_cache_path,
    load_config,
    load_environment,
    load_settings,
    resolve_region,
)
from holodeck.exceptions import ConfigurationError
from tests.fakes import environment_document

pytestmark = [pytest.mark.unit]


class TestLoadSettings:
    def test_defaults_without_files(self, tmp_path: Path) -> None:
        settings = load_settings(project_dir=tmp_path, global_path=tmp_path / "missing.toml")
        assert settings.cache_dir == DEFAULT_CACHE_DIR
        assert settings.retry.max_retries == 3
        assert settings.deletion.attempts == 5
        assert settings.api_timeout == 120
        assert settings.log is None

    def test_project_overrides_global(self, tmp_path: Path) -> None:
        global_path = tmp_path / "defaults.toml"
        global_path.write_text('api_timeout = 60\n[retry]\nmax_retries = 7\ninitial_backoff = 2.0\n')
        project = tmp_path / "project"
        project.mkdir()
        (project / "holodeck.toml").write_text('cache_dir = "/tmp/holo"\n[retry]\nmax_retries = 1\n')

        settings = load_settings(project_dir=project, global_path=global_path)

        assert settings.api_timeout == 60
        assert settings.retry.max_retries == 1
        assert settings.retry.initial_backoff == 2.0
        assert settings.cache_dir == Path("/tmp/holo")

    def test_unknown_keys_are_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "holodeck.toml").write_text("[deletion]\nattempts = 2\nbogus = 1\n[log]\nlevel = \"DEBUG\"\n")
        settings = load_settings(project_dir=tmp_path, global_path=tmp_path / "none.toml")
        assert settings.deletion.attempts == 2
        assert settings.log is not None
        assert settings.log.level == "DEBUG"

    def test_load_config_deep_merges(self, tmp_path: Path) -> None:
        global_path = tmp_path / "g.toml"
        global_path.write_text("[log]\nlevel = \"INFO\"\nconsole = false\n")
        (tmp_path / "holodeck.toml").write_text("[log]\nlevel = \"ERROR\"\n")
        assert load_config(project_dir=tmp_path, global_path=global_path)["log"] == {
            "level": "ERROR",
            "console": False,
        }


class TestLoadEnvironment:
    def test_reads_camel_case_document(self, tmp_path: Path) -> None:
        path = tmp_path / "env.yaml"
        path.write_text(
            "apiVersion: holodeck.nvidia.com/v1alpha1\n"
            "kind: Environment\n"
            "metadata:\n  name: gpu-ci\n"
            "spec:\n"
            "  provider: aws\n"
            "  auth:\n    keyName: ci\n    privateKey: /keys/ci.pem\n"
            "  instance:\n"
            "    type: g4dn.xlarge\n    region: us-west-2\n    rootVolumeSizeGB: 128\n"
            "    ingressIpRanges: [10.1.0.0/16]\n"
        )
        env = load_environment(path)
        assert env.name == "gpu-ci"
        assert env.spec.instance.root_volume_size_gb == 128
        assert env.spec.instance.ingress_ip_ranges == ["10.1.0.0/16"]
        assert not env.is_multinode

    def test_empty_document_is_configuration_error(self, tmp_path: Path) -> None:
        path = tmp_path / "env.yaml"
        path.write_text("")
        with pytest.raises(ConfigurationError):
            load_environment(path)


class TestCachePath:
    def test_default_location(self) -> None:
        assert default_cache_path("ci-test") == DEFAULT_CACHE_DIR / "ci-test.yaml"

    def test_custom_directory(self, tmp_path: Path) -> None:
        assert default_cache_path("ci-test", tmp_path) == tmp_path / "ci-test.yaml"

    def test_name_required(self) -> None:
        with pytest.raises(ConfigurationError):
            default_cache_path("")


class TestResolveRegion:
    def test_instance_region(self, single_node_env: Environment) -> None:
        assert resolve_region(single_node_env) == "us-east-1"

    def test_cluster_region_wins_over_instance(self) -> None:
        env = Environment.model_validate(environment_document(cluster={"region": "eu-west-1"}))
        assert resolve_region(env) == "eu-west-1"

    def test_environment_variable_overrides(
        self, single_node_env: Environment, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AWS_REGION", "ap-south-1")
        assert resolve_region(single_node_env) == "ap-south-1"

    def test_missing_region(self) -> None:
        env = Environment.model_validate(environment_document(instance={"type": "t3.medium"}))
        with pytest.raises(ConfigurationError, match="region is required"):
            resolve_region(env)
