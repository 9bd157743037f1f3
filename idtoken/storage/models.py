from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class SetOp:
    key: str
    value: str
    ttl_seconds: int


@dataclass(frozen=True)
class DelOp:
    key: str


BatchOp = Union[SetOp, DelOp]
