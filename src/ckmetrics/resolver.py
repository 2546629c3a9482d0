"""Reference resolution: raw call-sites / field accesses -> tagged relations.

Every record ends up with exactly one outcome:

``local``       target is a member of the caller's own class
``remote``      target is a member of another modeled class (ancestors included)
``external``    target type is named but not part of the model
``unresolved``  no matching member; carries the type when the record named one

Unknown identities never raise here; a lookup miss is the ``unresolved``
outcome. Whether external / typed-unresolved targets count toward CBO and RFC
is decided by the engines (``AnalysisOptions.count_external``).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from ckmetrics.model import (
    CallRecord,
    ClassEntity,
    EntityModel,
    FieldAccessRecord,
    FieldEntity,
    MethodEntity,
    type_names,
)


LOCAL = "local"
REMOTE = "remote"
EXTERNAL = "external"
UNRESOLVED = "unresolved"

OUTCOMES = (LOCAL, REMOTE, EXTERNAL, UNRESOLVED)


@dataclass(frozen=True)
class ResolvedCall:
    caller: str
    outcome: str
    # Modeled class for local/remote, the named type for external/unresolved.
    callee_class: str | None
    # Method identity; synthesized as ``Type#name(sig)`` when not modeled.
    callee: str | None

    @property
    def typed(self) -> bool:
        return self.callee_class is not None


@dataclass(frozen=True)
class ResolvedAccess:
    method: str
    outcome: str
    owner: str | None
    field: str


@dataclass(frozen=True)
class Resolution:
    calls: Mapping[str, tuple[ResolvedCall, ...]]
    accesses: Mapping[str, tuple[ResolvedAccess, ...]]
    # Method id -> ids of fields of its own class it touches (LCOM input).
    local_fields: Mapping[str, frozenset[str]]
    # Class -> other modeled classes named by its field/parameter/return/local types.
    type_refs: Mapping[str, tuple[str, ...]]
    model: EntityModel = field(compare=False, repr=False)

    def calls_of(self, class_name: str) -> tuple[ResolvedCall, ...]:
        return self.calls.get(class_name, ())

    def accesses_of(self, class_name: str) -> tuple[ResolvedAccess, ...]:
        return self.accesses.get(class_name, ())

    def outcome_counts(self) -> dict[str, int]:
        out = {o: 0 for o in OUTCOMES}
        for calls in self.calls.values():
            for c in calls:
                out[c.outcome] += 1
        return out


def _lookup_method(model: EntityModel, cls: ClassEntity, call: CallRecord) -> MethodEntity | None:
    chain = [cls] + [model.get_class(a) for a in model.graph.ancestors(cls.name)]
    for c in chain:
        m = c.find_method(call.method, call.signature)
        if m is not None:
            return m
    if call.signature is not None:
        # The front-end may not know parameter types; fall back to the name.
        for c in chain:
            m = c.find_method(call.method)
            if m is not None:
                return m
    return None


def _lookup_field(model: EntityModel, cls: ClassEntity, name: str) -> FieldEntity | None:
    f = cls.find_field(name)
    if f is not None:
        return f
    for a in model.graph.ancestors(cls.name):
        f = model.get_class(a).find_field(name)
        if f is not None:
            return f
    return None


def _synth_id(type_name: str, call: CallRecord) -> str:
    return f"{type_name}#{call.method}({call.signature or ''})"


def resolve_call(model: EntityModel, caller: MethodEntity, call: CallRecord) -> ResolvedCall:
    own = model.get_class(caller.owner)
    if call.target:
        target = model.find_class(call.target, context=own.name)
        if target is None:
            return ResolvedCall(caller.id, EXTERNAL, call.target, _synth_id(call.target, call))
    else:
        target = own

    m = _lookup_method(model, target, call)
    if m is None:
        # A miss on the caller's own type names no other class.
        if call.target and target.name != own.name:
            return ResolvedCall(caller.id, UNRESOLVED, target.name, _synth_id(target.name, call))
        return ResolvedCall(caller.id, UNRESOLVED, None, None)
    outcome = LOCAL if m.owner == own.name else REMOTE
    return ResolvedCall(caller.id, outcome, m.owner, m.id)


def resolve_access(model: EntityModel, method: MethodEntity, access: FieldAccessRecord) -> ResolvedAccess:
    own = model.get_class(method.owner)
    if access.owner:
        holder = model.find_class(access.owner, context=own.name)
        if holder is None:
            return ResolvedAccess(method.id, EXTERNAL, access.owner, f"{access.owner}.{access.field}")
    else:
        holder = own

    f = _lookup_field(model, holder, access.field)
    if f is None:
        owner = holder.name if access.owner and holder.name != own.name else None
        return ResolvedAccess(method.id, UNRESOLVED, owner, f"{holder.name}.{access.field}")
    # Cross-class access never feeds the accessed class's LCOM.
    outcome = LOCAL if f.owner == own.name else REMOTE
    return ResolvedAccess(method.id, outcome, f.owner, f.id)


def _class_type_refs(model: EntityModel, cls: ClassEntity) -> tuple[str, ...]:
    texts: list[str] = list(cls.type_refs)
    texts.extend(f.type for f in cls.fields)
    for m in cls.methods:
        texts.extend(m.parameter_types)
        texts.append(m.return_type)
        texts.extend(m.local_types)
    out: list[str] = []
    for text in texts:
        for name in type_names(text):
            hit = model.find_class(name, context=cls.name)
            if hit is None or hit.name == cls.name or hit.name in out:
                continue
            out.append(hit.name)
    return tuple(out)


def resolve(target: EntityModel | Resolution) -> Resolution:
    """Classify every call-site and field access of the model.

    Accepts a previous :class:`Resolution` as well and re-derives it from its
    model, so ``resolve(resolve(m)) == resolve(m)``.
    """
    model = target.model if isinstance(target, Resolution) else target

    calls: dict[str, tuple[ResolvedCall, ...]] = {}
    accesses: dict[str, tuple[ResolvedAccess, ...]] = {}
    local_fields: dict[str, frozenset[str]] = {}
    type_refs: dict[str, tuple[str, ...]] = {}

    for cls in model.classes():
        cls_calls: list[ResolvedCall] = []
        cls_accesses: list[ResolvedAccess] = []
        for m in cls.methods:
            cls_calls.extend(resolve_call(model, m, c) for c in m.calls)
            resolved = [resolve_access(model, m, a) for a in m.field_accesses]
            cls_accesses.extend(resolved)
            local_fields[m.id] = frozenset(r.field for r in resolved if r.outcome == LOCAL)
        calls[cls.name] = tuple(cls_calls)
        accesses[cls.name] = tuple(cls_accesses)
        type_refs[cls.name] = _class_type_refs(model, cls)

    return Resolution(
        calls=MappingProxyType(calls),
        accesses=MappingProxyType(accesses),
        local_fields=MappingProxyType(local_fields),
        type_refs=MappingProxyType(type_refs),
        model=model,
    )
