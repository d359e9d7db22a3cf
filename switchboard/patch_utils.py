from __future__ import annotations

import copy
from typing import Any, Dict, List

import jsonpatch
import jsonpointer


class PatchError(ValueError):
    pass


def apply_patch(doc: Dict[str, Any], ops: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Apply an RFC 6902 JSON Patch ops array to a deep copy of doc.

    Raises PatchError for malformed ops or paths that do not resolve.
    """
    if not isinstance(ops, list):
        raise PatchError("ops must be an array")
    base = copy.deepcopy(doc)
    try:
        patch = jsonpatch.JsonPatch(ops)
        patched = patch.apply(base, in_place=False)
    except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException, TypeError, KeyError) as e:
        raise PatchError(str(e)) from e
    if not isinstance(patched, dict):
        raise PatchError("patch must leave an object at the root")
    return patched
