"""Exceptions raised by the reconciliation core."""

from typing import Dict, Optional


class OperatorError(Exception):
    """Base exception for operator errors."""


class KubernetesAPIError(OperatorError):
    """Raised when a Kubernetes API call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, reason: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class ConflictError(KubernetesAPIError):
    """Raised on a resourceVersion conflict or an already existing object."""


class NotFoundError(KubernetesAPIError):
    """Raised when the target object does not exist."""


class KubernetesUnavailableError(KubernetesAPIError):
    """Raised when the API server cannot be reached or times out."""


class InvalidKeyError(OperatorError):
    """Raised when a work queue key is not of the form namespace/name."""


class InvalidInstanceError(OperatorError):
    """Raised when a custom resource spec cannot be parsed."""


class ConfigArtifactError(OperatorError):
    """Raised when existing config map content cannot be parsed."""


class LiveConfigError(OperatorError):
    """Raised when the operator configuration map is malformed."""


class StepError(OperatorError):
    """Raised when some objects handled by a pipeline step failed."""

    def __init__(self, step: str, failures: Dict[str, Exception]):
        details = ", ".join(f"{name}: {err}" for name, err in failures.items())
        super().__init__(f"{step} failed for {len(failures)} object(s): {details}")
        self.step = step
        self.failures = failures


class ClusterHealthError(OperatorError):
    """Raised when the OpenSearch cluster does not allow an operation."""


class ResizeNotAllowedError(ClusterHealthError):
    """Raised when too few data nodes are declared to resize safely."""


class ClusterNotReadyError(ClusterHealthError):
    """Raised when the cluster health is not green."""


class TopologyMismatchError(ClusterHealthError):
    """Raised when the reported nodes do not match the declared node groups."""
