"""
gke-deploy prepares kubernetes configuration for deployment to a GKE cluster
and applies it, waiting for the deployed objects to become ready.
"""

__all__ = [
    "prepare",
    "apply",
    "resource",
    "readiness",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
