"""Tests for eks_provisioner.config (models + loader)."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from eks_provisioner.config.loader import (
    KUBECTL_ENV_VAR,
    SETTINGS_ENV_VAR,
    TASK_QUEUE_ENV_VAR,
    load_request,
    load_settings,
)
from eks_provisioner.config.models import (
    CLUSTER_TAG_KEY,
    NodePoolSpec,
    ProvisionerSettings,
    ProvisioningRequest,
    SubnetSpec,
    WaitPolicy,
)


def _pool(**overrides):
    data = {"name": "general", "instance_type": "m5.large"}
    data.update(overrides)
    return data


def _request(**overrides):
    data = {
        "organization": "acme",
        "cluster_name": "demo",
        "region": "us-west-2",
        "node_pools": [_pool()],
    }
    data.update(overrides)
    return data


# ── ProvisioningRequest ──────────────────────────────────────────────────


class TestProvisioningRequest:
    def test_minimal(self):
        req = ProvisioningRequest.model_validate(_request())
        assert req.kubernetes_version == "1.29"
        assert req.secret_ref == "env:"
        assert req.node_pools[0].desired_count == 1

    def test_frozen(self):
        req = ProvisioningRequest.model_validate(_request())
        with pytest.raises(ValidationError):
            req.cluster_name = "other"

    @pytest.mark.parametrize("name", ["Demo", "1demo", "demo_cluster", "d", "a" * 41])
    def test_bad_cluster_names(self, name):
        with pytest.raises(ValidationError):
            ProvisioningRequest.model_validate(_request(cluster_name=name))

    def test_requires_node_pool(self):
        with pytest.raises(ValidationError):
            ProvisioningRequest.model_validate(_request(node_pools=[]))

    def test_duplicate_pool_names(self):
        with pytest.raises(ValidationError, match="duplicate node pool"):
            ProvisioningRequest.model_validate(
                _request(node_pools=[_pool(), _pool(instance_type="c5.large")])
            )

    def test_counts_ordered(self):
        with pytest.raises(ValidationError, match="min <= desired <= max"):
            NodePoolSpec.model_validate(_pool(min_count=2, desired_count=1, max_count=3))

    def test_subnet_outside_network(self):
        with pytest.raises(ValidationError, match="outside network"):
            ProvisioningRequest.model_validate(
                _request(subnets=[{"cidr": "10.0.0.0/24", "availability_zone": "us-west-2a"}])
            )

    def test_subnets_need_distinct_zones(self):
        subnets = [
            {"cidr": "192.168.0.0/24", "availability_zone": "us-west-2a"},
            {"cidr": "192.168.1.0/24", "availability_zone": "us-west-2a"},
        ]
        with pytest.raises(ValidationError, match="distinct availability zones"):
            ProvisioningRequest.model_validate(_request(subnets=subnets))

    def test_network_too_small(self):
        with pytest.raises(ValidationError, match="too small"):
            ProvisioningRequest.model_validate(_request(network_cidr="192.168.0.0/28"))

    def test_derived_subnets(self):
        req = ProvisioningRequest.model_validate(_request())
        assert req.effective_subnets() == [
            SubnetSpec(cidr="192.168.0.0/18"),
            SubnetSpec(cidr="192.168.64.0/18"),
        ]

    def test_derived_subnets_leave_zones_to_the_provider(self):
        req = ProvisioningRequest.model_validate(_request(region="ap-northeast-1"))
        assert all(s.availability_zone == "" for s in req.effective_subnets())

    def test_zoneless_explicit_subnets_allowed(self):
        subnets = [{"cidr": "192.168.0.0/24"}, {"cidr": "192.168.1.0/24"}]
        req = ProvisioningRequest.model_validate(_request(subnets=subnets))
        assert [s.availability_zone for s in req.effective_subnets()] == ["", ""]

    def test_explicit_subnets_win(self):
        subnets = [{"cidr": "192.168.5.0/24", "availability_zone": "us-west-2c"}]
        req = ProvisioningRequest.model_validate(_request(subnets=subnets))
        assert [s.cidr for s in req.effective_subnets()] == ["192.168.5.0/24"]

    def test_resource_tags(self):
        req = ProvisioningRequest.model_validate(_request(tags={"team": "infra"}))
        assert req.resource_tags() == {
            "team": "infra",
            "organization": "acme",
            CLUSTER_TAG_KEY: "demo",
        }


# ── WaitPolicy ───────────────────────────────────────────────────────────


class TestWaitPolicy:
    def test_attempts_derived(self):
        policy = WaitPolicy(poll_interval=timedelta(seconds=30), max_wait=timedelta(minutes=20))
        assert policy.attempts == 40

    def test_max_wait_below_interval(self):
        with pytest.raises(ValidationError):
            WaitPolicy(poll_interval=timedelta(seconds=10), max_wait=timedelta(seconds=5))

    def test_zero_interval(self):
        with pytest.raises(ValidationError):
            WaitPolicy(poll_interval=timedelta(0))


# ── loader ───────────────────────────────────────────────────────────────


class TestLoadRequest:
    def test_plain_document(self, tmp_path: Path):
        path = tmp_path / "req.yaml"
        path.write_text(yaml.safe_dump(_request()), encoding="utf-8")
        assert load_request(path).cluster_name == "demo"

    def test_wrapped_under_cluster(self, tmp_path: Path):
        path = tmp_path / "req.yaml"
        path.write_text(yaml.safe_dump({"cluster": _request()}), encoding="utf-8")
        assert load_request(path).organization == "acme"

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_request(tmp_path / "nope.yaml")

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "req.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_request(path)


class TestLoadSettings:
    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        for var in (
            SETTINGS_ENV_VAR, KUBECTL_ENV_VAR, TASK_QUEUE_ENV_VAR,
            "TEMPORAL_HOST", "TEMPORAL_PORT", "TEMPORAL_NAMESPACE",
        ):
            monkeypatch.delenv(var, raising=False)

    def test_defaults(self):
        settings = load_settings()
        assert settings.kubectl_path == "kubectl"
        assert settings.capacity_wait.attempts == 24
        assert settings.temporal.target == "localhost:7233"
        assert settings.temporal.namespace == "default"
        assert settings.temporal.task_queue == "eks-provisioner"
        assert settings.execution_timeout == timedelta(hours=2)

    def test_from_file(self, tmp_path: Path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            yaml.safe_dump({
                "temporal": {"host": "temporal.internal", "task_queue": "clusters"},
                "capacity_wait": {"poll_interval": 10, "max_wait": 60},
            }),
            encoding="utf-8",
        )
        settings = load_settings(path)
        assert settings.temporal.target == "temporal.internal:7233"
        assert settings.temporal.task_queue == "clusters"
        assert settings.capacity_wait.attempts == 6

    def test_env_overrides(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text(
            yaml.safe_dump({"temporal": {"host": "from-file", "namespace": "prod"}}),
            encoding="utf-8",
        )
        monkeypatch.setenv(KUBECTL_ENV_VAR, "/opt/bin/kubectl")
        monkeypatch.setenv("TEMPORAL_HOST", "temporal.example")
        monkeypatch.setenv("TEMPORAL_PORT", "7300")
        monkeypatch.setenv(TASK_QUEUE_ENV_VAR, "eks-prod")
        settings = load_settings(path)
        assert settings.temporal.target == "temporal.example:7300"
        assert settings.temporal.namespace == "prod"
        assert settings.temporal.task_queue == "eks-prod"
        assert settings.kubectl_path == "/opt/bin/kubectl"

    def test_settings_env_var(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("max_workers: 4\n", encoding="utf-8")
        monkeypatch.setenv(SETTINGS_ENV_VAR, str(path))
        assert load_settings().max_workers == 4

    def test_missing_file_uses_defaults(self, tmp_path: Path):
        settings = load_settings(tmp_path / "absent.yaml")
        assert settings.max_workers == 8


class TestProvisionerSettings:
    def test_poll_interval_must_fit_heartbeat_timeout(self):
        with pytest.raises(ValidationError, match="heartbeat timeout"):
            ProvisionerSettings(
                control_plane_wait=WaitPolicy(
                    poll_interval=timedelta(minutes=10), max_wait=timedelta(minutes=30),
                ),
            )

    def test_port_positive(self):
        with pytest.raises(ValidationError):
            ProvisionerSettings.model_validate({"temporal": {"port": 0}})
