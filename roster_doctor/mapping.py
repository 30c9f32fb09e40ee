"""
mapping.py - Column-mapping inference for roster imports

Public API:
    find_best_match(header)                -> {"field", "exactMatch", "score"} | None
    infer_mapping(headers)                 -> {source header: target field}
    set_mapping(mapping, header, field)    -> new mapping
    fields_available(mapping, for_header)  -> unclaimed target fields
    split_headers(mapping, headers)        -> {"mapped", "unmapped", "allMappings"}

Headers are normalised (lowercase, alphanumerics only) and looked up first in
an exact index built from the curated variations below, then fuzzily with
rapidfuzz. Scores follow the "lower is better" convention: 0.0 is an exact
match and anything above the threshold is rejected.

Mappings are plain dicts and are never mutated; every update returns a copy.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, Optional

from rapidfuzz import fuzz, process

from roster_doctor.schema import FIELDS, REQUIRED_FIELDS, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_FUZZY_THRESHOLD = 0.35
DEFAULT_MIN_MATCH_CHARS = 2

FIELD_VARIATIONS: dict[str, list[str]] = {
    "employeeId": [
        "employeeid", "employee id", "employee", "id", "emp id", "empid",
        "staff id", "staffid", "empno", "emp number",
    ],
    "firstName": [
        "firstname", "first name", "first", "givenname", "given name", "given",
        "forename", "fore name",
    ],
    "lastName": [
        "lastname", "last name", "last", "surname", "familyname", "family name", "family",
    ],
    "email": ["email", "email address", "e-mail", "e mail", "mail", "emailaddr"],
    "startDate": [
        "startdate", "start date", "start", "hiredate", "hire date", "hire",
        "employment date", "employmentdate",
    ],
    "department": ["department", "dept", "division", "div", "unit", "section"],
    "division": ["division", "div", "unit", "section", "business unit", "businessunit"],
    "position": [
        "position", "jobtitle", "job title", "title", "role", "job", "job role", "jobrole",
    ],
    "region": ["region", "area", "territory", "zone", "district"],
    "mobileNumber": [
        "phone number", "mobilenumber", "mobile number", "mobile", "cell", "cellphone",
        "cell phone", "cellphone number",
    ],
    "workPhoneNumber": [
        "workphonenumber", "work phone number", "work phone", "workphone", "office phone",
        "officephone", "business phone",
    ],
    "gender": ["gender", "sex", "biological sex"],
    "country": ["country", "nation", "country code", "nationality"],
    "city": ["city", "town", "municipality", "locality"],
    "dateOfBirth": [
        "dateofbirth", "date of birth", "dob", "birthdate", "birth date", "birth", "born",
        "birth day",
    ],
    "language": [
        "language", "lang", "preferred language", "preferredlanguage", "primary language",
        "primarylanguage",
    ],
}


def norm(text: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(text).lower())


@lru_cache(maxsize=1)
def _exact_index() -> dict[str, str]:
    # Later fields overwrite shared variations ("division" ends up on division).
    index: dict[str, str] = {}
    for field, variations in FIELD_VARIATIONS.items():
        for variation in variations:
            index[norm(variation)] = field
        index[norm(field)] = field
    return index


@lru_cache(maxsize=1)
def _fuzzy_corpus() -> tuple[tuple[str, ...], tuple[str, ...]]:
    choices: list[str] = []
    owners: list[str] = []
    for field, variations in FIELD_VARIATIONS.items():
        for variation in [*variations, field]:
            choices.append(norm(variation))
            owners.append(field)
    return tuple(choices), tuple(owners)


def find_best_match(
    header: Any,
    *,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    min_match_chars: int = DEFAULT_MIN_MATCH_CHARS,
) -> Optional[dict[str, Any]]:
    if header is None:
        return None
    normalized = norm(str(header).strip())
    if not normalized:
        return None

    exact = _exact_index().get(normalized)
    if exact:
        return {"field": exact, "exactMatch": True, "score": 0.0}

    if len(normalized) < min_match_chars:
        return None

    choices, owners = _fuzzy_corpus()
    best = process.extractOne(
        normalized,
        choices,
        scorer=fuzz.ratio,
        score_cutoff=(1.0 - threshold) * 100.0,
    )
    if best is None:
        logger.debug("No field match for header %r", header)
        return None
    _choice, similarity, position = best
    score = round(1.0 - similarity / 100.0, 4)
    logger.debug("Fuzzy match %r -> %s (score %.3f)", header, owners[position], score)
    return {"field": owners[position], "exactMatch": False, "score": score}


def _replaces(candidate: dict[str, Any], current: dict[str, Any]) -> bool:
    if candidate["exactMatch"] and not current["exactMatch"]:
        return True
    if not candidate["exactMatch"] and not current["exactMatch"]:
        return candidate["score"] < current["score"]
    return False


def infer_mapping(
    headers: list[Any],
    *,
    threshold: float = DEFAULT_FUZZY_THRESHOLD,
    min_match_chars: int = DEFAULT_MIN_MATCH_CHARS,
) -> dict[str, str]:
    claims: dict[str, tuple[str, dict[str, Any]]] = {}
    for header in headers:
        if header is None or not str(header).strip():
            continue
        match = find_best_match(header, threshold=threshold, min_match_chars=min_match_chars)
        if match is None:
            continue
        current = claims.get(match["field"])
        if current is None or _replaces(match, current[1]):
            if current is not None:
                logger.debug("Header %r takes %s from %r", header, match["field"], current[0])
            claims[match["field"]] = (str(header), match)

    winners = {source: field for field, (source, _match) in claims.items()}
    return {str(h): winners[str(h)] for h in headers if h is not None and str(h) in winners}


def set_mapping(mapping: dict[str, str], header: str, field: Optional[str]) -> dict[str, str]:
    """Assign (or clear with ``None``) one header's target, releasing the field elsewhere."""
    if field is not None and field not in FIELDS:
        raise ConfigurationError(f"Unknown target field: {field}")
    updated = {
        source: target
        for source, target in mapping.items()
        if source != header and (field is None or target != field)
    }
    if field is not None:
        updated[header] = field
    return updated


def fields_available(mapping: dict[str, str], for_header: Optional[str] = None) -> list[str]:
    claimed = set(mapping.values())
    if for_header is not None and for_header in mapping:
        claimed.discard(mapping[for_header])
    return [field for field in FIELDS if field not in claimed]


def missing_required(mapping: dict[str, str]) -> list[str]:
    claimed = set(mapping.values())
    return [field for field in REQUIRED_FIELDS if field not in claimed]


def split_headers(mapping: dict[str, str], headers: list[str]) -> dict[str, Any]:
    return {
        "mapped": dict(mapping),
        "unmapped": [header for header in headers if header not in mapping],
        "allMappings": {header: mapping.get(header) for header in headers},
    }


def map_row(row: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    return {field: row[source] for source, field in mapping.items() if source in row}


def map_row_hybrid(row: dict[str, Any], mapping: dict[str, str]) -> dict[str, Any]:
    """Mapped columns under their target names plus every unmapped column as-is."""
    out = map_row(row, mapping)
    for header, value in row.items():
        if header not in mapping:
            out[header] = value
    return out


def hybrid_headers(headers: list[str], mapping: dict[str, str]) -> list[str]:
    return [*mapping.values(), *[header for header in headers if header not in mapping]]


def header_quality(headers: list[Any]) -> int:
    if not headers:
        return 0
    non_empty = [str(h) for h in headers if h is not None and str(h).strip()]
    unique = {h.lower() for h in non_empty}
    quality = len(non_empty) * 2 + len(unique)
    quality -= (len(headers) - len(non_empty)) * 3
    common = [variation for variations in FIELD_VARIATIONS.values() for variation in variations]
    quality += sum(1 for variation in common if variation in unique)
    return quality
