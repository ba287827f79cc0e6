#!/usr/bin/env python3
"""Parameters for the bash tool."""

from __future__ import annotations

from pydantic.v1 import BaseModel, Field, validator


class BashToolParameters(BaseModel):
    """Arguments accepted by the bash tool."""

    command: str = Field(description="Shell command to run in the sandbox.")

    class Config:
        """Ignore keys the bash tool does not understand."""

        extra = "ignore"

    @validator("command", pre=True)
    def _normalize_command(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()


__all__ = ["BashToolParameters"]
