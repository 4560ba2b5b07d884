"""
The standard K8s status conditions (``metav1.Condition``).

The conditions are kept as plain dicts, the same as they come from the API,
so that they can be compared and patched without conversions.
"""
import datetime
from collections.abc import MutableSequence
from typing import Any

from typing_extensions import Literal, TypedDict

ConditionStatus = Literal['True', 'False', 'Unknown']


class Condition(TypedDict, total=False):
    type: str
    status: ConditionStatus
    observedGeneration: int
    lastTransitionTime: str
    reason: str
    message: str


def _now() -> str:
    now = datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace('+00:00', 'Z')


def find_condition(
        conditions: MutableSequence[Any],
        type: str,
) -> Condition | None:
    for condition in conditions:
        if condition.get('type') == type:
            return condition  # type: ignore
    return None


def set_condition(
        conditions: MutableSequence[Any],
        new: Condition,
) -> None:
    """
    Set the condition in the list, in place.

    The transition time is only bumped when the status actually changes;
    all other fields are updated unconditionally. Absent conditions are added.
    """
    existing = find_condition(conditions, new['type'])
    if existing is None:
        added = Condition(new)
        added.setdefault('lastTransitionTime', _now())
        conditions.append(added)
        return

    if existing.get('status') != new.get('status'):
        existing['status'] = new['status']
        existing['lastTransitionTime'] = new.get('lastTransitionTime') or _now()
    existing['reason'] = new.get('reason', '')
    existing['message'] = new.get('message', '')
    if 'observedGeneration' in new:
        existing['observedGeneration'] = new['observedGeneration']


def is_condition_true(
        conditions: Any,
        type: str,
) -> bool:
    """ Check a condition of an arbitrary (possibly malformed) object's status. """
    if not isinstance(conditions, list):
        return False
    condition = find_condition(conditions, type)
    return condition is not None and condition.get('status') == 'True'
