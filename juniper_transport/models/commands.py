"""Command-related data structures."""

from __future__ import annotations

from pydantic import BaseModel


class CommandResult(BaseModel):
    """Result of one CLI command; immutable once returned."""

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_status: int = 0
    elapsed_time: float = 0.0

    model_config = {"frozen": True}

    @property
    def failed(self) -> bool:
        return self.exit_status != 0
