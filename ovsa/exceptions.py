from typing import Optional


class ValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

    def __reduce__(self):
        return (type(self), (self.field, self.message))


class InvalidThresholdsError(ValueError):
    def __init__(self, message: str, member: Optional[int] = None) -> None:
        self.member = member
        self.message = message
        if member is not None:
            message = f"imputation {member + 1}: {message}"
        super().__init__(message)

    def __reduce__(self):
        return (type(self), (self.message, self.member))


class UnresolvedRowError(RuntimeError):
    def __init__(self, message: str, member: int, scenario: str, n_rows: int) -> None:
        self.member = member
        self.scenario = scenario
        self.n_rows = n_rows
        self.message = message
        super().__init__(f"imputation {member + 1}, {scenario}: {message}")

    # Worker processes send exceptions back pickled
    def __reduce__(self):
        return (type(self), (self.message, self.member, self.scenario, self.n_rows))


class EmptyCandidatePoolWarning(UserWarning):
    pass


__all__ = [
    "ValidationError",
    "InvalidThresholdsError",
    "UnresolvedRowError",
    "EmptyCandidatePoolWarning",
]
