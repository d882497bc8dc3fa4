"""
Agent query rule normalization.

Jobs and workers both describe capabilities as ``key=value`` strings. The
sorted, comma-joined form of a rule set is the capability key that shards
the job index.
"""

from collections.abc import Iterable

from custom_scheduler.constants import QUERY_RULE_SEPARATOR


def normalize_query_rules(rules: Iterable[str]) -> str:
    """
    Build the canonical capability key for a rule set.

    Args:
        rules: Agent query rules in any order.

    Returns:
        The rules sorted lexicographically and joined with commas.
        An empty rule set yields an empty string.
    """
    return QUERY_RULE_SEPARATOR.join(sorted(rules))


def parse_query_rules(normalized: str) -> list[str]:
    """Split a capability key back into its rules."""
    if not normalized:
        return []
    return normalized.split(QUERY_RULE_SEPARATOR)


def split_query_param(value: str) -> list[str]:
    """
    Split a comma-separated ``query`` parameter into rules.

    Whitespace around each rule is stripped; empty entries are kept so the
    caller can reject them.
    """
    return [rule.strip() for rule in value.split(QUERY_RULE_SEPARATOR)]
