"""
ServerDeployer - Kubernetes install, upgrade and migration tool for the Uyuni server
"""

__version__ = "0.1.0"

from .core import DeployerError, ServerDeployer

__all__ = ["ServerDeployer", "DeployerError"]
