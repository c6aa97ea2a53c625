from __future__ import annotations

from dataclasses import dataclass
from typing import Union
from uuid import UUID


@dataclass(frozen=True)
class ClassScope:
    """A subscription to a whole live class."""

    class_id: str

    @property
    def module_id(self) -> None:
        return None


@dataclass(frozen=True)
class ModuleScope:
    """A subscription to one module of a live class."""

    class_id: str
    module_id: str


Scope = Union[ClassScope, ModuleScope]


def scope_for(class_id: str | UUID, module_id: str | UUID | None = None) -> Scope:
    if module_id is None:
        return ClassScope(str(class_id))
    return ModuleScope(str(class_id), str(module_id))


__all__ = ["ClassScope", "ModuleScope", "Scope", "scope_for"]
