#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from typing import Optional


class AttentionError(Exception):
    """Base class for attention engine errors."""


class InvalidInputError(AttentionError, ValueError):
    """A work item or context is malformed; rejected before scoring."""


class ConfigurationError(AttentionError, ValueError):
    """Configuration is inconsistent; raised at construction time."""


class ProcessingError(AttentionError, RuntimeError):
    """
    Unexpected failure inside scoring, focus management or allocation.
    Carries the cycle number and batch size it happened in.
    """

    def __init__(self, message: str, cycle: Optional[int] = None, item_count: int = 0):
        super().__init__(message)
        self.cycle = cycle
        self.item_count = item_count

    def __str__(self) -> str:
        base = super().__str__()
        if self.cycle is None:
            return base
        return f"cycle {self.cycle} ({self.item_count} items): {base}"
