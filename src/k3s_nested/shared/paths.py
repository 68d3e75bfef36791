"""Path management for k3s-nested.

Manages the ~/.k3s-nested/ directory structure.
"""

from pathlib import Path

# Base directory for all k3s-nested data
BASE_DIR = Path.home() / ".k3s-nested"

# Per-instance kubeconfigs extracted from inner clusters
KUBECONFIGS_DIR = BASE_DIR / "kubeconfigs"

# CLI settings file
CONFIG_FILE = BASE_DIR / "config.yaml"


def get_kubeconfig_file(instance: str, kubeconfigs_dir: Path | None = None) -> Path:
    """Get path to the local kubeconfig of an instance.

    Args:
        instance: Instance name (e.g., "dev")
        kubeconfigs_dir: Override for the kubeconfigs directory.

    Returns:
        Path to the kubeconfig file
    """
    return (kubeconfigs_dir or KUBECONFIGS_DIR) / f"k3s-{instance}.yaml"
