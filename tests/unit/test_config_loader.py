from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from infra_provisioner.config import ConfigError, load
from infra_provisioner.resources import ref

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from infra_provisioner.config.schema import Config


_RESOURCES = """\
resources:
  - id: network
    type: network
    config:
      cidr: 10.0.0.0/16
  - id: database
    type: database
    depends_on: [network]
    config:
      vpc: {$ref: network.id}
outputs:
  - name: db_endpoint
    value: {$ref: database.endpoint}
    sensitive: true
"""


def test_minimal_config_defaults(make_config: Callable[..., Config]) -> None:
    cfg = make_config("resources: []\n")

    assert cfg.resources == []
    assert cfg.settings.parallelism == 10
    assert cfg.settings.max_attempts == 3
    assert cfg.settings.rotation_interval_days == 30
    assert cfg.provider.region is None
    assert str(cfg.state_path) == ".infra-state.json"


def test_empty_file_is_an_empty_config(make_config: Callable[..., Config]) -> None:
    assert make_config("").resources == []


def test_resources_and_outputs(make_config: Callable[..., Config], tmp_path: Path) -> None:
    cfg = make_config(_RESOURCES)

    assert [n.id for n in cfg.resources] == ["network", "database"]
    assert cfg.resources[1].config["vpc"] == ref("network.id")
    assert cfg.resources[1].depends_on == ["network"]
    assert cfg.outputs[0].sensitive
    assert cfg.config_dir == tmp_path


class TestProviderResolution:
    def test_yaml_wins_over_env(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INFRA_REGION", "eu-west-1")
        cfg = make_config("provider:\n  region: us-east-1\n")
        assert cfg.provider.region == "us-east-1"

    def test_env_wins_over_dotenv(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INFRA_REGION", "eu-west-1")
        cfg = make_config("resources: []\n", dotenv="INFRA_REGION=ap-south-1\n")
        assert cfg.provider.region == "eu-west-1"

    def test_dotenv_fallback(self, make_config: Callable[..., Config]) -> None:
        cfg = make_config(
            "resources: []\n",
            dotenv="INFRA_REGION=ap-south-1\nINFRA_ENVIRONMENT=staging\n",
        )
        assert cfg.provider.region == "ap-south-1"
        assert cfg.provider.environment == "staging"

    def test_default_tags_become_context(self, make_config: Callable[..., Config]) -> None:
        cfg = make_config(
            "provider:\n  environment: prod\n  default_tags:\n    Environment: prod\n"
        )
        ctx = cfg.provider.context()
        assert ctx.environment == "prod"
        assert ctx.default_tags == {"Environment": "prod"}

    def test_default_tags_must_be_a_mapping(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="default_tags"):
            make_config("provider:\n  default_tags: [a, b]\n")


class TestSettings:
    def test_env_overrides_defaults(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INFRA_PARALLELISM", "4")
        monkeypatch.setenv("INFRA_MAX_ATTEMPTS", "5")
        cfg = make_config("resources: []\n")
        assert cfg.settings.parallelism == 4
        assert cfg.settings.retry_policy().max_attempts == 5

    def test_yaml_wins_over_env(
        self, make_config: Callable[..., Config], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("INFRA_PARALLELISM", "4")
        cfg = make_config("settings:\n  parallelism: 2\n  step_timeout_seconds: 30\n")
        assert cfg.settings.parallelism == 2
        assert cfg.settings.retry_policy().timeout_seconds == 30

    def test_invalid_setting(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError):
            make_config("settings:\n  parallelism: 0\n")


class TestErrors:
    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError):
            make_config("resources: [\n")

    def test_top_level_must_be_mapping(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="mapping"):
            make_config("- a\n- b\n")

    def test_unknown_resource_field(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError):
            make_config("resources:\n  - id: a\n    type: network\n    colour: blue\n")

    def test_undeclared_reference(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="undeclared resource 'network'"):
            make_config(
                "resources:\n  - id: db\n    type: database\n"
                "    config:\n      vpc: {$ref: network.id}\n"
            )

    def test_output_with_undeclared_reference(self, make_config: Callable[..., Config]) -> None:
        with pytest.raises(ConfigError, match="Output 'x'"):
            make_config("outputs:\n  - name: x\n    value: {$ref: ghost.id}\n")


def test_call_shorthand(make_config: Callable[..., Config]) -> None:
    cfg = make_config(
        "providers:\n"
        "  network: my_pkg.providers:network\n"
        "  database:\n"
        "    call: my_pkg.providers:database\n"
        "    with:\n"
        "      engine: postgres\n"
        "secrets:\n"
        "  - id: db-credentials\n"
        "    target: my_pkg.targets:postgres\n"
        "    rotation_interval_days: 7\n"
    )
    assert cfg.providers["network"].call == "my_pkg.providers:network"
    assert cfg.providers["network"].with_ == {}
    assert cfg.providers["database"].with_ == {"engine": "postgres"}
    assert cfg.secrets[0].target.call == "my_pkg.targets:postgres"
    assert cfg.secrets[0].rotation_interval_days == 7
