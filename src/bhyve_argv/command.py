"""Built command: executable path plus ordered argument list."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class BuiltCommand:
    """A process invocation ready for execution.

    Argument order is significant to the consuming process and is preserved
    exactly as built.
    """

    executable: str
    args: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def create(cls, executable: str | Path, args: list[str]) -> BuiltCommand:
        return cls(executable=str(executable), args=tuple(args))

    @property
    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def to_dict(self) -> dict[str, object]:
        return {"executable": self.executable, "args": list(self.args)}

    def __str__(self) -> str:
        return shlex.join(self.argv)
