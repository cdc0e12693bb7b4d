from dataclasses import dataclass


class ImportAborted(Exception):
    """Fatal to the whole batch; nothing may be written once raised."""


class StructuralError(ImportAborted):
    pass


class ConflictError(ImportAborted):
    pass


class CommitError(Exception):
    def __init__(self, message: str, *, committed: int = 0):
        super().__init__(message)
        self.committed = committed


@dataclass(frozen=True)
class RowError:
    row: int | None
    message: str

    def __str__(self) -> str:
        if self.row is None:
            return self.message
        return f"Row {self.row}: {self.message}"
