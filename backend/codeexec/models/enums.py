import enum


class JobStatus(str, enum.Enum):
    pending = "pending"
    running = "running"
    success = "success"
    error = "error"
    timeout = "timeout"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def rank(self) -> int:
        return _RANK[self]


TERMINAL_STATES = frozenset({JobStatus.success, JobStatus.error, JobStatus.timeout})

_RANK = {JobStatus.pending: 0, JobStatus.running: 1}
_RANK.update({s: 2 for s in TERMINAL_STATES})


class Strategy(str, enum.Enum):
    remote = "remote"
    local = "local"
