"""
All the structures needed for Kubernetes patching.

Currently, it is implemented via a JSON merge-patch (RFC 7386),
i.e. a simple dictionary with field overrides, and ``None`` for field deletions.

The patches are not accumulated while the handlers run. Instead, a snapshot
of the original body is taken once, a copy is mutated, and the merge-patch is
calculated from the snapshot to the copy at the end ("copy-on-read,
merge-on-write"). Lists are not merged by K8s in merge-patches, so they are
always replaced as a whole -- which is what we need for the status lists,
as this operator is their only writer.
"""
from collections.abc import Mapping
from typing import Any


class Patch(dict[str, Any]):
    """ A JSON merge-patch, as sent to the K8s API. """

    @property
    def status(self) -> Mapping[str, Any] | None:
        return self.get('status')


def diff(old: Any, new: Any) -> Any:
    """
    Calculate a JSON merge-patch that turns ``old`` into ``new``.

    Only mappings are recursed into. Lists and scalars are treated as a whole:
    if they differ, the new value replaces the old one entirely.
    Removed keys are marked with ``None``, as prescribed by RFC 7386.

    Returns an empty dict if there is nothing to patch.
    """
    if not isinstance(old, Mapping) or not isinstance(new, Mapping):
        return new
    result: dict[str, Any] = {}
    for key in old.keys() - new.keys():
        result[key] = None
    for key, val in new.items():
        if key not in old:
            result[key] = val
        elif old[key] != val:
            if isinstance(old[key], Mapping) and isinstance(val, Mapping):
                result[key] = diff(old[key], val)
            else:
                result[key] = val
    return result


def make_status_patch(
        old_status: Mapping[str, Any] | None,
        new_status: Mapping[str, Any] | None,
) -> Patch:
    """ A patch for the ``status`` stanza only, or an empty patch if no changes. """
    changes = diff(old_status or {}, new_status or {})
    return Patch({'status': changes}) if changes else Patch()
