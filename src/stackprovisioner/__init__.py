"""
stackprovisioner - F#/ASP.NET Core, Giraffe and PostgreSQL host provisioning
"""

__version__ = "7.0.0"

from .core import ProvisionerError, StackProvisioner

__all__ = ["StackProvisioner", "ProvisionerError"]
