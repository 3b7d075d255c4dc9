"""Translate flat HTTP query parameters into an Elasticsearch query.

Each parameter is a literal field-equality test against the indexed
document; dotted keys address nested fields. There are no FHIR search
modifiers or prefixes. Multiple parameters are AND-ed together.
"""

from collections.abc import Mapping
from typing import Any


def term_clause(field: str, value: str) -> dict[str, Any]:
    """Build an exact-match clause for one field."""
    return {"term": {field: value}}


def translate_query(params: Mapping[str, str]) -> dict[str, Any]:
    """Build a structured search query from query-string parameters.

    Clauses are emitted in sorted key order so that the same parameters
    always yield an identical query, whatever order the mapping iterates in.

    Args:
        params: Flat mapping of field path to required value.

    Returns:
        ``{"match_all": {}}`` for an empty mapping, otherwise a ``bool``
        query whose ``filter`` holds one ``term`` clause per parameter.
    """
    if not params:
        return {"match_all": {}}

    clauses = [term_clause(key, params[key]) for key in sorted(params)]
    return {"bool": {"filter": clauses}}
