#!/usr/bin/env python3
"""Shared type definitions for core components."""

from __future__ import annotations

from typing import Literal, TypedDict

AlertType = Literal["error", "info"]


class ActionAlert(TypedDict):
    """User-facing alert raised for classified command failures."""

    type: AlertType
    title: str
    description: str
    content: str
