#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import InvalidInputError

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


@dataclass(frozen=True)
class WorkItem:
    """A unit of incoming work to be prioritized."""
    id: Optional[str] = None
    content: Optional[str] = None
    keywords: Optional[Tuple[str, ...]] = None
    domain: Optional[str] = None
    deadline: Optional[float] = None  # absolute time, epoch seconds
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.id is not None and not isinstance(self.id, str):
            raise InvalidInputError(f"item id must be a string, got {type(self.id).__name__}")
        if self.content is not None and not isinstance(self.content, str):
            raise InvalidInputError(f"content must be a string, got {type(self.content).__name__}")
        if self.domain is not None and not isinstance(self.domain, str):
            raise InvalidInputError(f"domain must be a string, got {type(self.domain).__name__}")

        if self.keywords is not None:
            if isinstance(self.keywords, str) or not isinstance(self.keywords, Sequence):
                raise InvalidInputError("keywords must be a list of strings")
            if not all(isinstance(k, str) for k in self.keywords):
                raise InvalidInputError("keywords must be a list of strings")
            object.__setattr__(self, 'keywords', tuple(self.keywords))

        if self.deadline is not None:
            if isinstance(self.deadline, bool) or not isinstance(self.deadline, Real):
                raise InvalidInputError(f"deadline must be numeric, got {self.deadline!r}")
            if not math.isfinite(self.deadline) or self.deadline < 0:
                raise InvalidInputError(f"deadline must be a non-negative timestamp, got {self.deadline!r}")
            object.__setattr__(self, 'deadline', float(self.deadline))

        if self.payload is None:
            object.__setattr__(self, 'payload', {})
        elif not isinstance(self.payload, Mapping):
            raise InvalidInputError(f"payload must be a mapping, got {type(self.payload).__name__}")
        else:
            object.__setattr__(self, 'payload', dict(self.payload))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkItem":
        """
        Build a WorkItem from a plain mapping.

        Recognised keys are id, content (alias text), keywords, domain, deadline
        and payload (alias data). Any other key is folded into the payload.
        """
        if not isinstance(data, Mapping):
            raise InvalidInputError(f"work item must be a mapping, got {type(data).__name__}")

        known = {'id', 'content', 'text', 'keywords', 'domain', 'deadline', 'payload', 'data'}
        payload = data.get('payload', data.get('data'))
        if payload is not None and not isinstance(payload, Mapping):
            raise InvalidInputError(f"payload must be a mapping, got {type(payload).__name__}")
        payload = dict(payload or {})
        payload.update({k: v for k, v in data.items() if k not in known})

        item_id = data.get('id')
        return cls(
            id=str(item_id) if isinstance(item_id, int) and not isinstance(item_id, bool) else item_id,
            content=data.get('content', data.get('text')),
            keywords=data.get('keywords'),
            domain=data.get('domain'),
            deadline=data.get('deadline'),
            payload=payload,
        )

    @property
    def identity(self) -> str:
        """Stable key for focus tracking: the explicit id, else a content digest."""
        if self.id is not None:
            return self.id
        digest = hashlib.sha1()
        digest.update((self.content or "").encode('utf-8'))
        digest.update(b"\x00")
        digest.update((self.domain or "").encode('utf-8'))
        digest.update(b"\x00")
        digest.update("\x1f".join(sorted(k.lower() for k in self.keywords or ())).encode('utf-8'))
        return f"item_{digest.hexdigest()[:12]}"

    def terms(self) -> List[str]:
        """Keywords when supplied, otherwise lowercase word tokens of the content."""
        if self.keywords is not None:
            return [k.lower() for k in self.keywords]
        if self.content:
            return _WORD_PATTERN.findall(self.content.lower())
        return []

    def summary(self) -> Dict[str, Any]:
        return {
            'id': self.identity,
            'keywords': self.terms(),
            'domain': self.domain,
        }


def coerce_items(items: Sequence[Any]) -> List[WorkItem]:
    """Accept WorkItem instances or mappings; anything else is invalid input."""
    if items is None:
        return []
    if isinstance(items, (str, bytes, Mapping)) or not isinstance(items, Sequence):
        raise InvalidInputError("items must be a list of work items")

    coerced = []
    for index, item in enumerate(items):
        if isinstance(item, WorkItem):
            coerced.append(item)
        elif isinstance(item, Mapping):
            coerced.append(WorkItem.from_dict(item))
        else:
            raise InvalidInputError(f"item {index} is {type(item).__name__}, expected a mapping or WorkItem")
    return coerced
