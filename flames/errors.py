# flames/errors.py


class FlamesError(Exception):
    pass


class NotFoundError(FlamesError):
    """Missing job, missing working directory, or missing file named by an edit."""
    pass


class PreconditionError(FlamesError):
    pass


class ContractViolationError(FlamesError):
    """The provider answered, but not with the structure we asked for. Never retried."""
    pass


class PathEscapeError(ContractViolationError):
    pass


class InvalidTransitionError(FlamesError):
    pass


class JobBusyError(FlamesError):
    pass


class DeploymentTimeoutError(FlamesError):
    pass


class ExternalConfigError(FlamesError):
    """An external platform error rewritten into remediation text."""
    pass
