"""
Error taxonomy for insight generation and scheduling
"""


class InsightPipelineError(Exception):
    """Base class for all insight pipeline errors"""


class InsufficientCredits(InsightPipelineError):
    """Organization cannot cover the cost of the requested operation"""

    def __init__(self, organization_id: str, cost: int, action: str = "generate insight"):
        self.organization_id = organization_id
        self.cost = cost
        super().__init__(f"Not enough credits to {action} (requires {cost})")


class PersistenceFailure(InsightPipelineError):
    """A database read or write failed"""


class GenerationError(InsightPipelineError):
    """Base class for text-generation backend errors"""


class UnsupportedModel(GenerationError):
    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Unsupported model: {model}")


class GenerationTimeout(GenerationError):
    def __init__(self, model: str, timeout_seconds: float):
        self.model = model
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Generation with {model} timed out after {timeout_seconds:g}s")


class GenerationFailed(GenerationError):
    """Backend returned no usable completion"""


class JobNotFound(InsightPipelineError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Scheduled insight job not found: {job_id}")


class JobAccessDenied(InsightPipelineError):
    def __init__(self, job_id: str, action: str = "access"):
        self.job_id = job_id
        super().__init__(f"You do not have permission to {action} this job")


class InvalidSchedule(InsightPipelineError):
    """Frequency or cron expression cannot be turned into run times"""
