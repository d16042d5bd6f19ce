from __future__ import annotations

from typing import TypedDict


class CommandResultDict(TypedDict):
    command: str
    stdout: str
    stderr: str
    exit_code: int
    success: bool
    output: str


class SetupResultDict(TypedDict):
    ok: bool
    config_file: str
    host: str
    port: int
    user: str
    auth: str
    message: str


class ErrorDict(TypedDict):
    kind: str
    error_type: str
    message: str
    details: dict[str, object]
