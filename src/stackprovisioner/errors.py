"""Domain errors for stackprovisioner."""


class ProvisionerError(RuntimeError):
    """Raised when provisioning cannot continue safely."""
