"""Threshold condition evaluation."""

from ratealerts.models import Above, AlertCondition, Below


def is_satisfied(condition: AlertCondition, rate: float) -> bool:
    """Check whether a rate satisfies an alert condition.

    Both directions are inclusive: a rate exactly equal to the threshold
    satisfies ``above`` as well as ``below``.

    Args:
        condition: The alert condition.
        rate: Current rate.

    Returns:
        True if the condition is met, False otherwise.
    """
    if isinstance(condition, Above):
        return rate >= condition.threshold
    if isinstance(condition, Below):
        return rate <= condition.threshold
    raise TypeError(f"Unsupported alert condition: {condition!r}")
