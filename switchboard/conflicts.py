from __future__ import annotations

from typing import Iterable, List, Tuple

from switchboard.matcher import triggers_match
from switchboard.models import MacroDefinition


def find_conflicts(candidate: MacroDefinition, active: Iterable[MacroDefinition]) -> List[MacroDefinition]:
    """Active macros that would collide with ``candidate``.

    Pure: no mutation, safe to call for previews. Members of the candidate's
    own group never conflict with it.
    """
    out: List[MacroDefinition] = []
    for m in active:
        if m.id == candidate.id:
            continue
        if candidate.group_id and m.group_id == candidate.group_id:
            continue
        if triggers_match(candidate.trigger, m.trigger):
            out.append(m)
    return out


def find_group_conflicts(members: Iterable[MacroDefinition], active: Iterable[MacroDefinition]) -> List[MacroDefinition]:
    """Union of conflicts over every member of a group, first-seen order."""
    active = list(active)
    members = list(members)
    member_ids = {m.id for m in members}
    seen = set()
    out: List[MacroDefinition] = []
    for member in members:
        for hit in find_conflicts(member, active):
            if hit.id in member_ids or hit.id in seen:
                continue
            seen.add(hit.id)
            out.append(hit)
    return out


def find_internal_conflicts(macros: Iterable[MacroDefinition]) -> List[Tuple[MacroDefinition, MacroDefinition]]:
    """Colliding pairs from different groups within one candidate set."""
    macros = list(macros)
    pairs: List[Tuple[MacroDefinition, MacroDefinition]] = []
    for i, a in enumerate(macros):
        for b in macros[i + 1:]:
            if a.group_key == b.group_key:
                continue
            if triggers_match(a.trigger, b.trigger):
                pairs.append((a, b))
    return pairs
