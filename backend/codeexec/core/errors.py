class ExecutionServiceError(Exception):
    """Base class for errors raised by the execution service."""


class UnsupportedLanguage(ExecutionServiceError):
    def __init__(self, language: str):
        super().__init__(f"Unsupported language: {language}")
        self.language = language


class InvalidRequest(ExecutionServiceError):
    pass


class RequestTooLarge(ExecutionServiceError):
    pass


class JobNotFound(ExecutionServiceError):
    def __init__(self, job_id: str):
        super().__init__("job not found")
        self.job_id = job_id


class JobNotReady(ExecutionServiceError):
    def __init__(self, job_id: str, status: str):
        super().__init__(f"job is {status}; it must finish successfully first")
        self.job_id = job_id
        self.status = status


class InvalidTransition(ExecutionServiceError):
    pass


class JudgeError(ExecutionServiceError):
    pass


class JudgeSubmitError(JudgeError):
    """The remote judge could not accept a submission; callers fall back."""


class JudgePollError(JudgeError):
    pass
