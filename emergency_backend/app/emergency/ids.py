"""Identifier generation for calls and alert batches."""

from __future__ import annotations

import uuid
from typing import Protocol


class IdGenerator(Protocol):
    def new_id(self) -> str:
        ...


class UuidIdGenerator:
    """Random UUID4 strings (36 characters, hyphenated)."""

    def new_id(self) -> str:
        return str(uuid.uuid4())
