"""
Rulepack lifecycle status.

Rulepacks are created ``pending`` by the installation pipeline, become
``active`` once regression passes (or the policy allows failures), and are
``deprecated`` when superseded.  Deprecated packs are terminal and
immutable.  There is no ``pending -> deprecated`` transition: a pack that
never activates stays pending until superseded.
"""

from enum import Enum, unique


@unique
class RulepackStatus(str, Enum):
    """Lifecycle status for a rulepack version."""

    PENDING = "pending"
    ACTIVE = "active"
    DEPRECATED = "deprecated"


# Allowed status transitions (from -> set of valid next states)
ALLOWED_TRANSITIONS: dict[RulepackStatus, frozenset[RulepackStatus]] = {
    RulepackStatus.PENDING: frozenset({RulepackStatus.ACTIVE}),
    RulepackStatus.ACTIVE: frozenset({RulepackStatus.DEPRECATED}),
    RulepackStatus.DEPRECATED: frozenset(),  # Terminal
}

# Statuses the store resolves unless inactive packs are requested
RESOLVABLE_STATUSES: frozenset[RulepackStatus] = frozenset(
    {RulepackStatus.ACTIVE, RulepackStatus.PENDING}
)


def validate_transition(current: RulepackStatus, target: RulepackStatus) -> bool:
    """Check if a status transition is valid."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_reinstall(current: RulepackStatus, target: RulepackStatus) -> bool:
    """
    Check if an install may overwrite a row in ``current`` with ``target``.

    Re-installing with the same status is allowed except for deprecated
    rows, which are immutable.
    """
    if current == RulepackStatus.DEPRECATED:
        return False
    return current == target or validate_transition(current, target)
