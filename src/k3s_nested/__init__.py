"""k3s-nested: isolated k3s clusters running inside a Kubernetes cluster."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("k3s-nested")
except PackageNotFoundError:
    __version__ = "0.0.0"
