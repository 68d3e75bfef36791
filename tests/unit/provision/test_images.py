"""Unit tests for image resolution."""

from __future__ import annotations

import pytest

from k3s_nested.provision.images import (
    ImageResolver,
    is_public_reference,
    k3s_tag,
    mirrored_reference,
    registry_domain,
    repository_path,
    split_reference,
    strip_version_prefix,
)
from k3s_nested.provision.models import ImageOverrides, InstanceConfig, PrivateRegistry


@pytest.mark.cli_unit
class TestTagNormalization:
    """Tests for version to tag conversion."""

    def test_strip_version_prefix(self):
        """Test leading v is dropped."""
        assert strip_version_prefix("v5.8.3") == "5.8.3"
        assert strip_version_prefix("5.8.3") == "5.8.3"

    def test_k3s_tag(self):
        """Test build metadata becomes a dash."""
        assert k3s_tag("v1.32.9+k3s1") == "v1.32.9-k3s1"
        assert k3s_tag("v1.32.9-k3s1") == "v1.32.9-k3s1"


@pytest.mark.cli_unit
class TestReferences:
    """Tests for reference parsing and re-homing."""

    def test_split_reference(self):
        """Test tag splitting keeps registry ports."""
        assert split_reference("rancher/k3s:v1") == ("rancher/k3s", "v1")
        assert split_reference("registry:5000/app") == ("registry:5000/app", None)
        assert split_reference("registry:5000/app:1.0") == ("registry:5000/app", "1.0")

    @pytest.mark.parametrize(
        "repository,path",
        [
            ("ghcr.io/k3d-io/k3d", "k3d-io/k3d"),
            ("registry.k8s.io/coredns/coredns", "coredns/coredns"),
            ("rancher/k3s", "rancher/k3s"),
            ("docker", "library/docker"),
            ("localhost/app", "app"),
        ],
    )
    def test_repository_path(self, repository, path):
        """Test registry domains are stripped."""
        assert repository_path(repository) == path

    def test_mirrored_reference_preserves_path(self):
        """Test public paths are kept under the private prefix."""
        assert (
            mirrored_reference("ghcr.io/k3d-io/k3d:5.8.3", "docker.local")
            == "docker.local/k3d-io/k3d:5.8.3"
        )
        assert (
            mirrored_reference("rancher/k3s:v1.32.9-k3s1", "artifactory.company.com/team")
            == "artifactory.company.com/team/rancher/k3s:v1.32.9-k3s1"
        )
        assert mirrored_reference("docker:27-dind", "registry:5000") == (
            "registry:5000/library/docker:27-dind"
        )

    @pytest.mark.parametrize(
        "repository,domain",
        [
            ("ghcr.io/k3d-io/k3d", "ghcr.io"),
            ("rancher/k3s", "docker.io"),
            ("docker", "docker.io"),
            ("registry:5000/app", "registry:5000"),
            ("localhost/app", "localhost"),
        ],
    )
    def test_registry_domain(self, repository, domain):
        """Test implicit Docker Hub names resolve to docker.io."""
        assert registry_domain(repository) == domain

    def test_is_public_reference(self):
        """Test public and private registries are told apart."""
        assert is_public_reference("rancher/k3s:v1.32.9-k3s1")
        assert is_public_reference("registry.k8s.io/pause:3.9")
        assert not is_public_reference("docker.local/rancher/k3s:v1.32.9-k3s1")
        assert not is_public_reference("quay.io/app:1")


@pytest.mark.cli_unit
class TestImageResolver:
    """Tests for ImageResolver precedence."""

    def test_public_defaults(self, dev_config):
        """Test public images with normalized tags."""
        images = ImageResolver().resolve(dev_config)
        assert images.dind == "docker:27-dind"
        assert images.k3d == "ghcr.io/k3d-io/k3d:5.8.3"
        assert images.k3s == "rancher/k3s:v1.32.9-k3s1"
        assert images.k3d_tools == "ghcr.io/k3d-io/k3d-tools:5.8.3"

    def test_private_registry_derivation(self):
        """Test every slot is re-homed under the registry prefix."""
        config = InstanceConfig(
            name="dev", registry=PrivateRegistry("docker.local", path="sandbox")
        )
        images = ImageResolver().resolve(config)
        assert images.dind == "docker.local/sandbox/library/docker:27-dind"
        assert images.k3d == "docker.local/sandbox/k3d-io/k3d:5.8.3"
        assert images.k3s == "docker.local/sandbox/rancher/k3s:v1.32.9-k3s1"
        assert images.k3d_tools == "docker.local/sandbox/k3d-io/k3d-tools:5.8.3"

    def test_override_wins_per_slot(self):
        """Test an override replaces only its slot."""
        config = InstanceConfig(name="dev", overrides=ImageOverrides(k3s="mirror/k3s:custom"))
        images = ImageResolver().resolve(config)
        assert images.k3s == "mirror/k3s:custom"
        assert images.dind == "docker:27-dind"

    def test_override_wins_over_registry(self):
        """Test precedence holds even on an unvalidated config."""
        config = InstanceConfig(
            name="dev",
            registry=PrivateRegistry("docker.local"),
            overrides=ImageOverrides(dind="custom/dind:1"),
        )
        images = ImageResolver().resolve(config)
        assert images.dind == "custom/dind:1"
        assert images.k3s == "docker.local/rancher/k3s:v1.32.9-k3s1"

    def test_resolution_is_pure(self, dev_config):
        """Test the same config always resolves identically."""
        resolver = ImageResolver()
        assert resolver.resolve(dev_config) == resolver.resolve(dev_config)

    def test_custom_versions(self):
        """Test versions flow into tags."""
        config = InstanceConfig(
            name="dev", k3s_version="v1.31.5+k3s1", k3d_version="v5.7.0", docker_version="26-dind"
        )
        images = ImageResolver().resolve(config)
        assert images.k3s == "rancher/k3s:v1.31.5-k3s1"
        assert images.k3d == "ghcr.io/k3d-io/k3d:5.7.0"
        assert images.dind == "docker:26-dind"
