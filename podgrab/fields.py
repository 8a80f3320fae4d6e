"""Rule-driven field projection over nested metadata.

Rules are glob patterns matched against dotted key paths such as
``enclosure.url``. ``*`` matches a single key segment, ``**`` matches across
segments. A leading ``!`` turns a rule into an exclusion; ``\\!`` escapes a
literal leading ``!``. Later rules take precedence over earlier ones.
"""

import re
from dataclasses import dataclass

# xml attribute and text keys of raw document elements; never filtered
ATTRIBUTES_KEY = "$"
TEXT_KEY = "_"
RESERVED_KEYS = (ATTRIBUTES_KEY, TEXT_KEY)

_MISSING = object()


@dataclass(frozen=True)
class FieldRule:
    """A compiled include/exclude rule."""

    include: bool
    pattern: re.Pattern


def glob_to_regex(glob: str) -> re.Pattern:
    """Compile a key-path glob into an anchored regex."""
    pattern = re.escape(glob).replace(r"\*\*", ".+").replace(r"\*", "[^.]+")
    return re.compile(f"^{pattern}$")


def compile_rules(patterns) -> list[FieldRule]:
    """Compile rule strings into a list ordered highest priority first.

    Priority follows declaration order in reverse: the last rule given is
    checked first, and the first rule that matches a key decides.
    """
    rules = []
    for pattern in patterns:
        include = True
        if pattern.startswith("!"):
            include = False
            pattern = pattern[1:]
        elif pattern.startswith("\\!"):
            pattern = pattern[1:]
        rules.append(FieldRule(include=include, pattern=glob_to_regex(pattern)))
    rules.reverse()
    return rules


def _matching_rule(rules: list[FieldRule], full_key: str) -> FieldRule | None:
    for rule in rules:
        if rule.pattern.match(full_key):
            return rule
    return None


def _project_value(value, rules: list[FieldRule], full_key: str):
    if isinstance(value, (list, tuple)):
        nested = [_project_value(item, rules, full_key) for item in value]
        nested = [item for item in nested if item is not _MISSING]
        return nested if nested else _MISSING
    if isinstance(value, dict):
        nested = _apply_rules(value, rules, f"{full_key}.")
        return nested if nested else _MISSING
    rule = _matching_rule(rules, full_key)
    if rule and rule.include:
        return value
    return _MISSING


def _apply_rules(obj: dict, rules: list[FieldRule], prefix: str) -> dict:
    result = {}
    for key, value in obj.items():
        if key in RESERVED_KEYS:
            result[key] = value
            continue
        projected = _project_value(value, rules, f"{prefix}{key}")
        if projected is not _MISSING:
            result[key] = projected
    return result


def project(obj: dict, patterns) -> dict:
    """Return a filtered copy of ``obj`` keeping only fields the rules include."""
    return _apply_rules(obj, compile_rules(patterns), "")
