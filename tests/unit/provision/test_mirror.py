"""Unit tests for mirror planning."""

from __future__ import annotations

import pytest
import yaml

from k3s_nested.provision.images import ImageResolver
from k3s_nested.provision.mirror import (
    ComponentVersions,
    MirrorPlanner,
    image_catalog,
    kubernetes_minor,
    system_components,
)
from k3s_nested.provision.models import InstanceConfig, PrivateRegistry


@pytest.mark.cli_unit
class TestImageCatalog:
    """Tests for the list of images an instance needs."""

    def test_infrastructure_images(self):
        """Test engine, tool and inner server images with normalized tags."""
        catalog = image_catalog(ComponentVersions())
        assert catalog["engine"] == "docker:27-dind"
        assert catalog["cluster-tool"] == "ghcr.io/k3d-io/k3d:5.8.3"
        assert catalog["inner-server"] == "rancher/k3s:v1.32.9-k3s1"
        assert catalog["cluster-tools"] == "ghcr.io/k3d-io/k3d-tools:5.8.3"
        assert catalog["cluster-proxy"] == "ghcr.io/k3d-io/k3d-proxy:5.8.3"

    def test_system_components_included(self):
        """Test inner cluster system images are part of the catalog."""
        catalog = image_catalog(ComponentVersions(k3s_version="v1.30.4+k3s1"))
        assert catalog["coredns"] == "registry.k8s.io/coredns/coredns:v1.11.1"
        assert "local-path-provisioner" in catalog

    def test_catalog_matches_resolver(self):
        """Test the catalog uses the same tags the workload runs with."""
        config = InstanceConfig(name="dev")
        images = ImageResolver().resolve(config)
        catalog = image_catalog(ComponentVersions())
        assert catalog["engine"] == images.dind
        assert catalog["cluster-tool"] == images.k3d
        assert catalog["inner-server"] == images.k3s

    def test_kubernetes_minor(self):
        """Test minor version extraction."""
        assert kubernetes_minor("v1.31.5-k3s1") == "1.31"
        assert kubernetes_minor("1.29.0") == "1.29"
        assert kubernetes_minor("latest") is None

    def test_unknown_version_falls_back(self):
        """Test unknown versions use the newest known component set."""
        assert system_components("v1.99.0+k3s1") == system_components("v1.32.0+k3s1")


@pytest.mark.cli_unit
class TestMirrorPlanner:
    """Tests for MirrorPlanner."""

    def test_targets_preserve_public_paths(self):
        """Test each target keeps the public repository path."""
        plan = MirrorPlanner().plan(ComponentVersions(), "docker.local")
        assert plan.entries["cluster-tool"].target == "docker.local/k3d-io/k3d:5.8.3"
        assert plan.entries["inner-server"].target == "docker.local/rancher/k3s:v1.32.9-k3s1"
        assert plan.entries["engine"].target == "docker.local/library/docker:27-dind"

    def test_path_prefix(self):
        """Test the path prefix is inserted after the host."""
        plan = MirrorPlanner().plan(ComponentVersions(), "registry:5000", "/team/sandbox/")
        assert plan.path_prefix == "team/sandbox"
        assert plan.entries["inner-server"].target == (
            "registry:5000/team/sandbox/rancher/k3s:v1.32.9-k3s1"
        )

    def test_mapping_lines_sorted_and_unique(self):
        """Test mapping lines are source=target, sorted, without duplicates."""
        plan = MirrorPlanner().plan(ComponentVersions(), "docker.local")
        lines = plan.mapping_lines()
        assert lines == sorted(set(lines))
        assert "docker:27-dind=docker.local/library/docker:27-dind" in lines

    def test_source_lines(self):
        """Test source-only listing."""
        plan = MirrorPlanner().plan(ComponentVersions(), "docker.local")
        assert "rancher/k3s:v1.32.9-k3s1" in plan.source_lines()
        assert all("=" not in line for line in plan.source_lines())

    def test_rewrite_rules_without_prefix(self):
        """Test each public registry is mirrored to the private endpoint."""
        plan = MirrorPlanner().plan(ComponentVersions(), "docker.local")
        config = plan.registries_config()
        assert set(config["mirrors"]) == {"docker.io", "ghcr.io", "registry.k8s.io"}
        assert config["mirrors"]["docker.io"] == {"endpoint": ["https://docker.local"]}
        assert "configs" not in config

    def test_rewrite_rules_with_prefix(self):
        """Test a path prefix becomes a rewrite, including for the private host."""
        plan = MirrorPlanner().plan(ComponentVersions(), "docker.local", "team")
        mirrors = plan.registries_config()["mirrors"]
        assert mirrors["ghcr.io"]["rewrite"] == {"(.*)": "team/$1"}
        assert mirrors["docker.local"]["rewrite"] == {"(.*)": "team/$1"}

    def test_insecure_tls_config(self):
        """Test insecure registries skip TLS verification."""
        plan = MirrorPlanner().plan(ComponentVersions(), "registry:5000", insecure=True)
        config = yaml.safe_load(plan.registries_yaml())
        assert config["configs"]["registry:5000"]["tls"]["insecure_skip_verify"] is True

    def test_plan_for_without_registry(self, dev_config):
        """Test no plan without a private registry."""
        assert MirrorPlanner().plan_for(dev_config) is None

    def test_plan_for_uses_instance_versions(self):
        """Test plan_for reads versions and registry from the config."""
        config = InstanceConfig(
            name="dev",
            k3s_version="v1.31.5+k3s1",
            registry=PrivateRegistry("docker.local", path="team", insecure=True),
        )
        plan = MirrorPlanner().plan_for(config)
        assert plan.insecure is True
        assert plan.entries["inner-server"].target == (
            "docker.local/team/rancher/k3s:v1.31.5-k3s1"
        )

    @pytest.mark.parametrize("path", ["", "team/sandbox"])
    def test_every_resolved_image_is_mirrored(self, path):
        """Test the plan targets cover every image the workload pulls."""
        config = InstanceConfig(
            name="dev",
            k3s_version="v1.31.5+k3s1",
            k3d_version="v5.8.1",
            k3d_tools_version="5.7.4",
            docker_version="26-dind",
            registry=PrivateRegistry("docker.local", path=path),
        )
        images = ImageResolver().resolve(config)
        targets = {e.target for e in MirrorPlanner().plan_for(config).entries.values()}

        for image in (images.dind, images.k3d, images.k3s, images.k3d_tools):
            assert image in targets

    def test_tools_version_independent_of_k3d(self):
        """Test the helper image follows its own version."""
        versions = ComponentVersions(k3d_version="v5.8.3", k3d_tools_version="v5.7.4")
        catalog = image_catalog(versions)
        assert catalog["cluster-tools"] == "ghcr.io/k3d-io/k3d-tools:5.7.4"
        assert catalog["cluster-tool"] == "ghcr.io/k3d-io/k3d:5.8.3"
