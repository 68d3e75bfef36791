"""kubectl wrapper used for every host and inner cluster call."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Any

from ..errors import KUBECTL_NOT_FOUND, KubectlError
from ..shared.logging import get_logger

log = get_logger(__name__)


class Kubectl:
    """Run kubectl against the host cluster.

    Every method raises KubectlError on a non-zero exit unless it is
    documented as returning a status instead.
    """

    def __init__(self, kubeconfig: str | None = None, binary: str = "kubectl"):
        """Initialize wrapper.

        Args:
            kubeconfig: Path to the host cluster kubeconfig (kubectl default if None).
            binary: kubectl executable.
        """
        self.kubeconfig = kubeconfig
        self.binary = binary

    def _kubectl_cmd(self, kubeconfig: str | Path | None = None) -> list[str]:
        """Build base kubectl command."""
        cmd = [self.binary]
        target = kubeconfig if kubeconfig is not None else self.kubeconfig
        if target:
            cmd.extend(["--kubeconfig", str(target)])
        return cmd

    def run(
        self,
        args: list[str],
        *,
        input: str | None = None,
        check: bool = True,
        kubeconfig: str | Path | None = None,
    ) -> subprocess.CompletedProcess:
        """Run kubectl with captured output.

        Args:
            args: Arguments after the base command.
            input: Text fed to stdin.
            check: Raise on a non-zero exit.
            kubeconfig: Use this kubeconfig instead of the host one.

        Returns:
            The completed process.

        Raises:
            KubectlError: kubectl is missing, or exited non-zero with check=True.
        """
        cmd = self._kubectl_cmd(kubeconfig) + list(args)
        log.debug("kubectl", args=args)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, input=input)
        except FileNotFoundError:
            raise KubectlError(
                cmd, KUBECTL_NOT_FOUND, "kubectl not found. Is kubectl installed?"
            ) from None
        if check and result.returncode != 0:
            raise KubectlError(cmd, result.returncode, result.stderr)
        return result

    def passthrough(self, args: list[str], kubeconfig: str | Path | None = None) -> int:
        """Run kubectl attached to the terminal and return its exit code."""
        cmd = self._kubectl_cmd(kubeconfig) + list(args)
        try:
            return subprocess.run(cmd).returncode
        except FileNotFoundError:
            raise KubectlError(
                cmd, KUBECTL_NOT_FOUND, "kubectl not found. Is kubectl installed?"
            ) from None

    # Host cluster primitives

    def apply(self, manifests: str) -> str:
        """Apply multi-document YAML from stdin."""
        return self.run(["apply", "-f", "-"], input=manifests).stdout

    def get_json(
        self,
        kind: str,
        name: str | None = None,
        namespace: str | None = None,
        selector: str | None = None,
    ) -> dict[str, Any]:
        """Get one object or a list as parsed JSON."""
        args = ["get", kind]
        if name:
            args.append(name)
        if namespace:
            args += ["-n", namespace]
        if selector:
            args += ["-l", selector]
        args += ["-o", "json"]
        return json.loads(self.run(args).stdout or "{}")

    def list_items(
        self, kind: str, namespace: str | None = None, selector: str | None = None
    ) -> list[dict[str, Any]]:
        """List objects matching a selector."""
        return self.get_json(kind, namespace=namespace, selector=selector).get("items", [])

    def get_optional(self, kind: str, name: str, namespace: str) -> dict[str, Any] | None:
        """Get one object, or None when it does not exist."""
        try:
            return self.get_json(kind, name, namespace=namespace)
        except KubectlError as e:
            if e.not_found:
                return None
            raise

    def get_table(
        self,
        kind: str,
        namespace: str | None = None,
        selector: str | None = None,
        wide: bool = False,
    ) -> str:
        """Human-readable kubectl table output."""
        args = ["get", kind]
        if namespace:
            args += ["-n", namespace]
        if selector:
            args += ["-l", selector]
        if wide:
            args += ["-o", "wide"]
        return self.run(args).stdout

    def describe(self, kind: str, namespace: str, selector: str | None = None) -> str:
        args = ["describe", kind, "-n", namespace]
        if selector:
            args += ["-l", selector]
        return self.run(args).stdout

    def events(self, namespace: str) -> list[dict[str, Any]]:
        """Events of a namespace, oldest first."""
        items = self.list_items("events", namespace=namespace)
        return sorted(items, key=lambda e: e.get("lastTimestamp") or "")

    def logs(
        self,
        namespace: str,
        selector: str,
        container: str,
        tail: int = 100,
    ) -> str:
        """Log tail of one container."""
        return self.run(
            ["logs", "-n", namespace, "-l", selector, "-c", container, f"--tail={tail}"]
        ).stdout

    def stream_logs(
        self,
        namespace: str,
        selector: str,
        container: str,
        tail: int = 100,
        follow: bool = True,
    ) -> int:
        """Stream logs to the terminal."""
        args = ["logs", "-n", namespace, "-l", selector, "-c", container, f"--tail={tail}"]
        if follow:
            args.append("-f")
        return self.passthrough(args)

    def exec(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: list[str],
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run a command inside a container."""
        return self.run(
            ["exec", "-n", namespace, pod, "-c", container, "--", *command], check=check
        )

    def delete_namespace(self, namespace: str) -> str:
        return self.run(["delete", "namespace", namespace]).stdout

    def top_pods(self, namespace: str, selector: str) -> str:
        """``kubectl top pod`` output (requires metrics-server)."""
        return self.run(["top", "pod", "-n", namespace, "-l", selector, "--no-headers"]).stdout

    def can_i(self, verb: str, resource: str) -> bool:
        """Check an RBAC permission."""
        result = self.run(["auth", "can-i", verb, resource], check=False)
        return result.returncode == 0 and result.stdout.strip() == "yes"

    # Inner cluster, through an extracted kubeconfig

    def cluster_info(self, kubeconfig: str | Path | None = None) -> bool:
        """True when the cluster answers a cluster-info query."""
        try:
            return self.run(["cluster-info"], check=False, kubeconfig=kubeconfig).returncode == 0
        except KubectlError:
            return False
