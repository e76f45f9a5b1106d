from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel

QueryKey = tuple[Any, ...]

WEBHOOKS = ("webhooks",)
EXECUTIONS = ("executions",)
STATUS = ("status",)


def _stable(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_defaults=True)
    return json.dumps(value or {}, sort_keys=True, default=str)


def all_lists() -> QueryKey:
    return (*WEBHOOKS, "list")


def webhook_list(filters: Any = None, pagination: Any = None) -> QueryKey:
    return (*all_lists(), _stable(filters), _stable(pagination))


def webhook_detail(webhook_id: str) -> QueryKey:
    return (*WEBHOOKS, "detail", webhook_id)


def by_element(element_id: str, page_path: str | None = None) -> QueryKey:
    return (*WEBHOOKS, "element", element_id, page_path or "")


def by_page(page_path: str) -> QueryKey:
    return (*WEBHOOKS, "page", page_path)


def by_feature(feature_slug: str) -> QueryKey:
    return (*WEBHOOKS, "feature", feature_slug)


def executions(webhook_id: str | None = None) -> QueryKey:
    return EXECUTIONS if webhook_id is None else (*EXECUTIONS, webhook_id)


def element_status(element_id: str, page_path: str) -> QueryKey:
    return (*STATUS, element_id, page_path)


def list_prefixes() -> list[QueryKey]:
    """Every key family whose contents depend on the set of assignments."""

    return [
        all_lists(),
        (*WEBHOOKS, "element"),
        (*WEBHOOKS, "page"),
        (*WEBHOOKS, "feature"),
        STATUS,
    ]


def is_prefix(prefix: QueryKey, key: QueryKey) -> bool:
    return key[: len(prefix)] == tuple(prefix)


def is_persistable(key: QueryKey) -> bool:
    return bool(key) and key[0] == WEBHOOKS[0]
