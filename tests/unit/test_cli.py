"""Unit tests for the k3s-nested command line."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
import yaml
from click.testing import CliRunner

from k3s_nested.config import CLIConfig
from k3s_nested.context import Services
from k3s_nested.errors import KubectlError
from k3s_nested.main import cli
from k3s_nested.provision.diagnose import DiagnosticReport


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def services(kubectl, store) -> Services:
    return Services(settings=CLIConfig(), kubectl=kubectl, store=store)


@pytest.fixture
def invoke(runner, services):
    """Run the CLI with the fake host cluster."""

    def _invoke(*args: str, input: str | None = None):
        with patch("k3s_nested.main.load_config", return_value=CLIConfig()):
            return runner.invoke(cli, list(args), obj={"services": services}, input=input)

    return _invoke


@pytest.mark.cli_unit
class TestDeployCommand:
    """Tests for deploy."""

    def test_dry_run_prints_manifests(self, invoke, kubectl):
        """Test dry-run output and no cluster access."""
        result = invoke("deploy", "--name", "dev", "--dry-run")

        assert result.exit_code == 0, result.output
        docs = list(yaml.safe_load_all(result.output))
        assert [d["kind"] for d in docs] == [
            "Namespace",
            "PersistentVolumeClaim",
            "Deployment",
            "Service",
            "Service",
        ]
        assert kubectl.mock_calls == []

    def test_dry_run_to_file(self, invoke, tmp_path):
        """Test dry-run manifests written to a file."""
        output = tmp_path / "dev.yaml"
        result = invoke("deploy", "--name", "dev", "--dry-run", "-o", str(output))

        assert result.exit_code == 0, result.output
        assert len(list(yaml.safe_load_all(output.read_text()))) == 5

    def test_nodeport_option(self, invoke):
        """Test --nodeport reaches the service."""
        result = invoke("deploy", "--name", "dev", "--nodeport", "31000", "--dry-run")

        docs = list(yaml.safe_load_all(result.output))
        nodeport = next(d for d in docs if d["metadata"]["name"] == "k3s-nodeport")
        assert nodeport["spec"]["ports"][0]["nodePort"] == 31000

    def test_missing_name(self, invoke):
        """Test the name is required."""
        result = invoke("deploy", "--dry-run")

        assert result.exit_code == 1
        assert "Instance name is required" in result.output

    def test_ingress_without_hostname(self, invoke):
        """Test configuration errors report their phase."""
        result = invoke("deploy", "--name", "dev", "--access-method", "ingress", "--dry-run")

        assert result.exit_code == 1
        assert "failed phase: configure" in result.output

    def test_config_file_with_cli_override(self, invoke, tmp_path):
        """Test CLI options win over the config file."""
        config_file = tmp_path / "dev.yaml"
        config_file.write_text(
            yaml.dump({"name": "dev", "storage_size": "20Gi", "cpu_limit": "3"})
        )
        result = invoke(
            "deploy", "--config", str(config_file), "--storage-size", "40Gi", "--dry-run"
        )

        assert result.exit_code == 0, result.output
        docs = list(yaml.safe_load_all(result.output))
        pvc = next(d for d in docs if d["kind"] == "PersistentVolumeClaim")
        assert pvc["spec"]["resources"]["requests"]["storage"] == "40Gi"
        deployment = next(d for d in docs if d["kind"] == "Deployment")
        k3d = deployment["spec"]["template"]["spec"]["containers"][1]
        assert k3d["resources"]["limits"]["cpu"] == "3"

    def test_registry_secret_without_registry(self, invoke):
        """Test contradictory registry flags."""
        result = invoke("deploy", "--name", "dev", "--registry-secret", "regcred", "--dry-run")

        assert result.exit_code == 1
        assert "--private-registry" in result.output

    def test_apply_failure_exit_code(self, invoke, kubectl):
        """Test an apply failure exits 1 with a resume hint."""
        kubectl.apply.side_effect = KubectlError(["kubectl", "apply"], 1, "forbidden")

        result = invoke("deploy", "--name", "dev", "--skip-prerequisites")

        assert result.exit_code == 1
        assert "failed phase: apply" in result.output

    def test_log_file_option(self, invoke, tmp_path):
        """Test -vv --log-file sends debug events to the file."""
        log_file = tmp_path / "logs" / "k3s-nested.log"
        result = invoke(
            "-vv", "--log-file", str(log_file), "deploy", "--name", "dev", "--dry-run"
        )

        assert result.exit_code == 0, result.output
        assert "deploy_planned" in log_file.read_text()
        assert "deploy_planned" not in result.output


@pytest.mark.cli_unit
class TestInstanceCommands:
    """Tests for list, delete, delete-all, exec and diagnose."""

    def test_list_empty(self, invoke, kubectl):
        """Test no instances."""
        kubectl.list_items.return_value = []
        result = invoke("list")

        assert result.exit_code == 0
        assert "No k3s instances found" in result.output

    def test_list_json(self, invoke, kubectl, make_namespace, make_pod):
        """Test JSON listing."""

        def list_items(kind, namespace=None, selector=None):
            if kind == "namespaces":
                return [make_namespace("dev")]
            return [make_pod()]

        kubectl.list_items.side_effect = list_items
        kubectl.get_optional.return_value = {"spec": {"ports": [{"nodePort": 30443}]}}

        result = invoke("--json", "list")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data[0]["name"] == "dev"
        assert data[0]["access"] == "NodePort:30443"

    def test_list_table(self, invoke, kubectl, make_namespace, make_pod):
        """Test the table lists the instance and a total."""

        def list_items(kind, namespace=None, selector=None):
            if kind == "namespaces":
                return [make_namespace("dev")]
            return [make_pod()]

        kubectl.list_items.side_effect = list_items
        kubectl.get_optional.return_value = None

        result = invoke("list")

        assert "k3s-dev" in result.output
        assert "Total instances: 1" in result.output

    def test_status_not_found(self, invoke, kubectl):
        """Test unknown instances exit 1."""
        kubectl.list_items.return_value = []
        result = invoke("status", "ghost")

        assert result.exit_code == 1
        assert "Instance 'ghost' not found" in result.output

    def test_delete_confirm_declined(self, invoke, kubectl, make_namespace):
        """Test declining the confirmation deletes nothing."""
        kubectl.list_items.return_value = [make_namespace("dev")]
        result = invoke("delete", "dev", input="n\n")

        assert "Deletion cancelled" in result.output
        kubectl.delete_namespace.assert_not_called()

    def test_delete_yes(self, invoke, kubectl, store, make_namespace):
        """Test deletion without a prompt."""
        store.write("dev", "x")
        kubectl.list_items.return_value = [make_namespace("dev")]
        result = invoke("delete", "dev", "--yes")

        assert result.exit_code == 0, result.output
        assert "Instance deleted" in result.output
        assert "Kubeconfig removed" in result.output

    def test_delete_all_partial_failure(self, invoke, kubectl, make_namespace):
        """Test failures are counted and exit 1."""
        kubectl.list_items.return_value = [make_namespace(n) for n in ("a", "b", "c")]

        def delete_namespace(namespace):
            if namespace == "k3s-b":
                raise KubectlError(["kubectl", "delete"], 1, "timeout")
            return "deleted"

        kubectl.delete_namespace.side_effect = delete_namespace

        result = invoke("delete-all", "--yes")

        assert result.exit_code == 1
        assert "1 of 3 deletions failed" in result.output

    def test_delete_all_success(self, invoke, kubectl, make_namespace):
        """Test every instance deleted."""
        kubectl.list_items.return_value = [make_namespace("a")]
        result = invoke("delete-all", "--yes")

        assert result.exit_code == 0, result.output
        assert "All 1 instances deleted" in result.output

    def test_exec_passes_arguments(self, invoke, kubectl, store):
        """Test kubectl arguments after the name are passed through."""
        path = store.write("dev", "x")
        kubectl.passthrough.return_value = 0

        result = invoke("exec", "dev", "get", "pods", "-A")

        assert result.exit_code == 0, result.output
        kubectl.passthrough.assert_called_once_with(["get", "pods", "-A"], kubeconfig=path)

    def test_exec_missing_kubeconfig(self, invoke):
        """Test exec without a local kubeconfig."""
        result = invoke("exec", "dev", "get", "nodes")

        assert result.exit_code == 1
        assert "k3s-nested refresh dev" in result.output

    def test_diagnose_failure_exit_code(self, invoke, kubectl):
        """Test a failed check exits 1 after printing the report."""
        kubectl.list_items.return_value = []
        result = invoke("diagnose", "ghost")

        assert result.exit_code == 1
        assert "0 passed, 0 warnings, 1 failed" in result.output

    def test_diagnose_airgap_flag(self, invoke):
        """Test --airgap requests the mirror checks."""
        with patch("k3s_nested.commands.instances.Diagnoser") as diagnoser:
            diagnoser.return_value.diagnose.return_value = DiagnosticReport(
                instance="dev", namespace="k3s-dev"
            )
            result = invoke("--json", "diagnose", "dev", "--airgap")

        assert result.exit_code == 0, result.output
        diagnoser.return_value.diagnose.assert_called_once_with("dev", airgap=True)
        assert json.loads(result.output)["checks"] == []

    def test_refresh_alias(self, invoke, kubectl, make_namespace, make_pod, inner_kubeconfig):
        """Test refresh-kubeconfig re-extracts the credential."""

        def list_items(kind, namespace=None, selector=None):
            if kind == "namespaces":
                return [make_namespace("dev")]
            return [make_pod()]

        kubectl.list_items.side_effect = list_items
        kubectl.get_optional.return_value = {"spec": {"ports": [{"nodePort": 30443}]}}
        kubectl.exec.return_value = MagicMock(returncode=0, stdout=inner_kubeconfig)
        kubectl.cluster_info.return_value = True

        result = invoke("refresh-kubeconfig", "dev")

        assert result.exit_code == 0, result.output
        assert "Kubeconfig refreshed" in result.output
        assert "Connection verified" in result.output


@pytest.mark.cli_unit
class TestImagesCommand:
    """Tests for images."""

    def test_mapping(self, invoke):
        """Test source=target lines."""
        result = invoke("images", "--registry", "docker.local")

        assert result.exit_code == 0, result.output
        lines = result.output.splitlines()
        assert lines == sorted(set(lines))
        assert "rancher/k3s:v1.32.9-k3s1=docker.local/rancher/k3s:v1.32.9-k3s1" in lines

    def test_list_format(self, invoke):
        """Test source-only output."""
        result = invoke("images", "--registry", "docker.local", "--format", "list")

        assert "ghcr.io/k3d-io/k3d:5.8.3" in result.output.splitlines()

    def test_output_files(self, invoke, tmp_path):
        """Test the list and registries.yaml written to files."""
        images_file = tmp_path / "images.txt"
        registries_file = tmp_path / "registries.yaml"
        result = invoke(
            "images",
            "--registry",
            "docker.local",
            "--path",
            "team",
            "-o",
            str(images_file),
            "--registries-yaml",
            str(registries_file),
        )

        assert result.exit_code == 0, result.output
        assert "docker.local/team/rancher/k3s" in images_file.read_text()
        config = yaml.safe_load(registries_file.read_text())
        assert config["mirrors"]["docker.io"]["rewrite"] == {"(.*)": "team/$1"}

    def test_tools_version_option(self, invoke):
        """Test the helper image follows --k3d-tools-version."""
        result = invoke("images", "--registry", "docker.local", "--k3d-tools-version", "v5.7.4")

        assert result.exit_code == 0, result.output
        assert (
            "ghcr.io/k3d-io/k3d-tools:5.7.4=docker.local/k3d-io/k3d-tools:5.7.4"
            in result.output.splitlines()
        )

    def test_registry_required(self, invoke):
        """Test --registry is required."""
        result = invoke("images")
        assert result.exit_code == 2


@pytest.mark.cli_unit
class TestConfigCommand:
    """Tests for config and version."""

    def test_set_show_unset(self, invoke, tmp_path, monkeypatch):
        """Test a setting round trip."""
        monkeypatch.delenv("K3S_NESTED_WAIT_TIMEOUT", raising=False)
        path = tmp_path / "config.yaml"
        with patch("k3s_nested.config.get_config_path", return_value=path):
            result = invoke("config", "set", "wait_timeout", "600")
            assert result.exit_code == 0, result.output

            result = invoke("--json", "config", "show")
            data = json.loads(result.output)
            assert data["wait_timeout"] == {"value": 600, "source": "config file"}

            result = invoke("config", "unset", "wait_timeout")
            assert "wait_timeout removed" in result.output

    def test_set_invalid(self, invoke, tmp_path):
        """Test invalid values exit 1."""
        with patch("k3s_nested.config.get_config_path", return_value=tmp_path / "config.yaml"):
            result = invoke("config", "set", "poll_interval", "fast")

        assert result.exit_code == 1
        assert "✗" in result.output

    def test_version(self, invoke):
        """Test version output."""
        result = invoke("version")
        assert result.exit_code == 0
        assert result.output.startswith("k3s-nested version ")
