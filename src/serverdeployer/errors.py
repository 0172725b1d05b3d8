"""Domain errors for ServerDeployer."""


class DeployerError(RuntimeError):
    """Raised when the deployment cannot continue safely."""


class PreconditionError(DeployerError):
    """A required tool or input is missing; nothing was changed yet."""


class UnsupportedTransitionError(DeployerError):
    """The requested version transition is rejected."""


class WaitTimeoutError(DeployerError):
    """A bounded wait on cluster state expired."""


class JobFailedError(DeployerError):
    """A batch job reported a failed pod."""


class InspectionError(DeployerError):
    """Configuration extracted from the cluster could not be read or parsed."""


class SetupFailedError(DeployerError):
    """The first-boot setup of the server failed."""
