"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import numbers
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping


__all__ = [
    "_collect_company_names",
    "_dedupe_preserve_order",
    "_first_token",
    "_format_name_list",
    "_normalize_whitespace",
    "_parse_iterable",
    "extract_release_year",
    "release_year_from_timestamp",
    "scheme_qualified_url",
]


_WHITESPACE_RE = re.compile(r"\s+")
_YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")


def _normalize_whitespace(value: Any) -> str:
    """Collapse runs of whitespace in ``value`` into single spaces."""

    if value is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(value)).strip()


def _first_token(value: Any) -> str:
    text = _normalize_whitespace(value)
    if not text:
        return ""
    return text.split(" ", 1)[0]


def extract_release_year(value: Any) -> str:
    """Return the first four-digit year in ``[1900, 2099]`` found in ``value``."""

    text = _normalize_whitespace(value)
    if not text:
        return ""
    match = _YEAR_RE.search(text)
    return match.group(1) if match else ""


def release_year_from_timestamp(value: Any) -> str:
    """Return the UTC year for a Unix timestamp, or ``""`` when unusable."""

    if value in (None, "", 0) or isinstance(value, bool):
        return ""
    try:
        timestamp = float(value)
    except (TypeError, ValueError):
        try:
            timestamp = float(str(value).strip())
        except (TypeError, ValueError):
            return ""
    if timestamp <= 0:
        return ""
    try:
        dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return ""
    return str(dt.year)


def scheme_qualified_url(value: Any, scheme: str = "https") -> str:
    """Return ``value`` with a scheme when it is protocol-relative."""

    text = str(value or "").strip()
    if not text:
        return ""
    if text.startswith("//"):
        return f"{scheme}:{text}"
    return text


def _dedupe_preserve_order(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        text = str(value).strip()
        if not text:
            continue
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(text)
    return result


def _format_name_list(value: Any) -> str:
    return ", ".join(_dedupe_preserve_order(_parse_iterable(value)))


def _collect_company_names(companies: Any, role_key: str) -> list[str]:
    names: list[str] = []
    if isinstance(companies, list):
        for company in companies:
            if not isinstance(company, Mapping):
                continue
            if not company.get(role_key):
                continue
            company_obj = company.get("company")
            name_value: Any = None
            if isinstance(company_obj, Mapping):
                name_value = company_obj.get("name")
            elif isinstance(company_obj, str):
                name_value = company_obj
            if not name_value:
                continue
            text = str(name_value).strip()
            if text:
                names.append(text)
    return _dedupe_preserve_order(names)


def _parse_iterable(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if isinstance(value, numbers.Number):
        return [str(value)]
    try:
        iterator = iter(value)
    except TypeError:
        return [str(value)]
    items: list[str] = []
    for element in iterator:
        if isinstance(element, Mapping):
            name = element.get("name")
            if isinstance(name, str) and name.strip():
                items.append(name.strip())
            else:
                items.append(str(element).strip())
        else:
            items.append(str(element).strip())
    return [item for item in items if item]
