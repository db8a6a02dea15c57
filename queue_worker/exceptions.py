class WorkerError(Exception):
    """Base worker error."""


class BrokerError(WorkerError):
    """Raised when the queue transport fails."""


class UnknownJobTypeError(WorkerError):
    """Raised when a job carries a type its router does not handle."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"Unknown job type: {job_type}")


class JobFatalError(WorkerError):
    """Raised when the whole job must fail, not just one batch."""


class ImportSourceError(JobFatalError):
    """Raised when the import file cannot be read or parsed."""


class CampaignHaltError(JobFatalError):
    """Raised when the messaging session is unusable for the rest of a campaign."""
