"""
Kubernetes Input Plugin.

Watches one custom resource kind and writes reconciled status back.
"""

from plugins.inputs.kubernetes.watcher import (
    KubernetesStatusWriter,
    KubernetesWatchPlugin,
)

__all__ = ["KubernetesStatusWriter", "KubernetesWatchPlugin"]
