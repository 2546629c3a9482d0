"""Entity model: classes, methods, fields and the inheritance graph of one run.

The model is assembled by :class:`ModelBuilder` (single writer) and frozen by
:meth:`ModelBuilder.build`. Everything downstream (resolver, metric engines,
evaluator) only reads it, so engines can share one instance across threads.

Class order is the order of first appearance in the input. Reports use the
same order, which keeps output identical across runs with unchanged input.
"""
from __future__ import annotations

import re
from collections import defaultdict, deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping

from ckmetrics.errors import CKMetricsError, CycleError, ModelError, NotFoundError


_TYPE_TOKEN_RE = re.compile(r"[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*")

# Never class names, even when a type string mentions them.
_NON_CLASS_TYPES = {
    "void", "var", "boolean", "byte", "char", "short", "int", "long", "float", "double",
    "extends", "super", "final",
}


def type_names(text: str | None) -> list[str]:
    """Split a declared type into the names it mentions.

    ``"Map<String, List<User>>[]"`` -> ``["Map", "String", "List", "User"]``.
    """
    if not text:
        return []
    out = []
    for tok in _TYPE_TOKEN_RE.findall(text):
        if tok in _NON_CLASS_TYPES or tok in out:
            continue
        out.append(tok)
    return out


@dataclass(frozen=True)
class FieldEntity:
    owner: str
    name: str
    type: str = ""

    @property
    def id(self) -> str:
        return f"{self.owner}.{self.name}"


@dataclass(frozen=True)
class CallRecord:
    method: str
    signature: str | None = None
    # Declared/inferred receiver type; None means implicit ``this``.
    target: str | None = None


@dataclass(frozen=True)
class FieldAccessRecord:
    field: str
    # None means a field of the accessing method's own class.
    owner: str | None = None


@dataclass(frozen=True)
class MethodEntity:
    owner: str
    name: str
    signature: str = ""
    field_accesses: tuple[FieldAccessRecord, ...] = ()
    calls: tuple[CallRecord, ...] = ()
    parameter_types: tuple[str, ...] = ()
    return_type: str = ""
    local_types: tuple[str, ...] = ()
    complexity: int = 1

    @property
    def id(self) -> str:
        return f"{self.owner}#{self.name}({self.signature})"


@dataclass(frozen=True)
class ClassEntity:
    name: str
    kind: str = "class"
    methods: tuple[MethodEntity, ...] = ()
    fields: tuple[FieldEntity, ...] = ()
    superclasses: tuple[str, ...] = ()
    # Derived from the other classes' superclasses, never read from input.
    subclasses: tuple[str, ...] = ()
    type_refs: tuple[str, ...] = ()

    @property
    def package(self) -> str:
        return self.name.rpartition(".")[0]

    @property
    def simple_name(self) -> str:
        return self.name.rpartition(".")[2]

    def find_method(self, name: str, signature: str | None = None) -> MethodEntity | None:
        for m in self.methods:
            if m.name == name and (signature is None or m.signature == signature):
                return m
        return None

    def find_field(self, name: str) -> FieldEntity | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass(frozen=True)
class InheritanceGraph:
    """Explicit adjacency over class names, independent of the entities.

    ``parents`` only holds modeled classes; declared parents that are not part
    of the model are kept in ``external_parents`` and count as one edge to an
    external root.
    """

    parents: Mapping[str, tuple[str, ...]]
    external_parents: Mapping[str, tuple[str, ...]]
    children: Mapping[str, tuple[str, ...]]
    roots: tuple[str, ...]
    depths: Mapping[str, int]
    # Class -> the cycle it belongs to.
    cycles: Mapping[str, tuple[str, ...]]
    # Classes whose ancestry reaches a cycle (cycle members excluded).
    cycle_descendants: Mapping[str, tuple[str, ...]]

    @property
    def cycle_members(self) -> frozenset[str]:
        return frozenset(self.cycles)

    def in_cycle(self, name: str) -> bool:
        return name in self.cycles

    def reaches_cycle(self, name: str) -> bool:
        return name in self.cycles or name in self.cycle_descendants

    def cycle_error(self, name: str) -> CycleError:
        if name in self.cycles:
            cyc = self.cycles[name]
            return CycleError(
                f"inheritance cycle: {' -> '.join(cyc + cyc[:1])}",
                class_name=name,
                cycle=cyc,
            )
        cyc = self.cycle_descendants.get(name, ())
        return CycleError(
            f"ancestry of {name} reaches inheritance cycle: {' -> '.join(cyc + cyc[:1])}",
            class_name=name,
            cycle=cyc,
        )

    def depth(self, name: str) -> int:
        if self.reaches_cycle(name):
            raise self.cycle_error(name)
        try:
            return self.depths[name]
        except KeyError:
            raise NotFoundError(f"class not in inheritance graph: {name}", class_name=name) from None

    def ancestors(self, name: str) -> list[str]:
        """Modeled ancestors, nearest first (BFS), each listed once."""
        seen = {name}
        out: list[str] = []
        dq = deque(self.parents.get(name, ()))
        while dq:
            cur = dq.popleft()
            if cur in seen:
                continue
            seen.add(cur)
            out.append(cur)
            dq.extend(self.parents.get(cur, ()))
        return out


@dataclass(frozen=True)
class EntityModel:
    classes_by_name: Mapping[str, ClassEntity]
    graph: InheritanceGraph
    issues: Mapping[str, tuple[CKMetricsError, ...]] = field(default_factory=lambda: MappingProxyType({}))
    _simple_index: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}), repr=False)

    def __len__(self) -> int:
        return len(self.classes_by_name)

    def __contains__(self, name: object) -> bool:
        return name in self.classes_by_name

    def classes(self) -> Iterator[ClassEntity]:
        return iter(self.classes_by_name.values())

    def class_names(self) -> list[str]:
        return list(self.classes_by_name)

    def get_class(self, name: str) -> ClassEntity:
        try:
            return self.classes_by_name[name]
        except KeyError:
            raise NotFoundError(f"unknown class: {name}", class_name=name) from None

    def find_class(self, name: str | None, context: str | None = None) -> ClassEntity | None:
        """Resolve a possibly unqualified type name to a modeled class.

        Tries, in order: exact name, a nested class of ``context``, the same
        package as ``context``, then (for unqualified names only) a unique
        simple-name match.
        """
        if not name:
            return None
        base = name.split("<", 1)[0].replace("[]", "").strip()
        if not base:
            return None
        hit = self.classes_by_name.get(base)
        if hit is not None:
            return hit
        if context:
            hit = self.classes_by_name.get(f"{context}.{base}")
            if hit is not None:
                return hit
            pkg = context.rpartition(".")[0]
            while pkg:
                hit = self.classes_by_name.get(f"{pkg}.{base}")
                if hit is not None:
                    return hit
                pkg = pkg.rpartition(".")[0]
        if "." in base:
            return None
        cands = self._simple_index.get(base, ())
        if len(cands) == 1:
            return self.classes_by_name[cands[0]]
        return None

    def methods(self) -> Iterator[MethodEntity]:
        for cls in self.classes():
            yield from cls.methods


class ModelBuilder:
    """Collects entities, then freezes them into an :class:`EntityModel`."""

    def __init__(self) -> None:
        self._classes: dict[str, dict] = {}
        self._issues: dict[str, list[CKMetricsError]] = defaultdict(list)
        self._built = False

    def _check_open(self) -> None:
        if self._built:
            raise ModelError("model is frozen; no mutation after build()")

    def _cls(self, class_name: str) -> dict:
        try:
            return self._classes[class_name]
        except KeyError:
            raise NotFoundError(f"unknown class: {class_name}", class_name=class_name) from None

    def add_class(
        self,
        name: str,
        *,
        kind: str = "class",
        superclasses: Iterable[str] = (),
        type_refs: Iterable[str] = (),
    ) -> None:
        self._check_open()
        if not isinstance(name, str) or not name.strip():
            raise ModelError(f"class name must be a non-empty string, got {name!r}")
        if name in self._classes:
            raise ModelError(f"duplicate class: {name}", class_name=name)
        supers: list[str] = []
        for s in superclasses:
            if not isinstance(s, str) or not s.strip():
                # The bad edge is dropped; the class itself stays analyzable.
                self.add_issue(name, ModelError(f"malformed superclass {s!r} on {name} ignored", class_name=name))
                continue
            if s not in supers:
                supers.append(s)
        self._classes[name] = {
            "kind": kind,
            "superclasses": tuple(supers),
            "type_refs": tuple(type_refs),
            "methods": [],
            "method_ids": set(),
            "fields": [],
            "field_names": set(),
        }

    def has_class(self, name: str) -> bool:
        return name in self._classes

    def add_issue(self, class_name: str, error: CKMetricsError) -> None:
        self._check_open()
        self._issues[class_name].append(error)

    def add_field(self, class_name: str, name: str, type: str = "") -> None:
        self._check_open()
        c = self._cls(class_name)
        if name in c["field_names"]:
            self._issues[class_name].append(
                ModelError(f"duplicate field {class_name}.{name} ignored", class_name=class_name)
            )
            return
        c["field_names"].add(name)
        c["fields"].append(FieldEntity(owner=class_name, name=name, type=type or ""))

    def add_method(
        self,
        class_name: str,
        name: str,
        *,
        signature: str = "",
        field_accesses: Iterable[FieldAccessRecord] = (),
        calls: Iterable[CallRecord] = (),
        parameter_types: Iterable[str] = (),
        return_type: str = "",
        local_types: Iterable[str] = (),
        complexity: int = 1,
    ) -> None:
        self._check_open()
        c = self._cls(class_name)
        method = MethodEntity(
            owner=class_name,
            name=name,
            signature=signature or "",
            field_accesses=_dedupe(field_accesses),
            calls=_dedupe(calls),
            parameter_types=tuple(parameter_types),
            return_type=return_type or "",
            local_types=tuple(local_types),
            complexity=complexity,
        )
        if method.id in c["method_ids"]:
            self._issues[class_name].append(
                ModelError(f"duplicate method {method.id} ignored", class_name=class_name)
            )
            return
        c["method_ids"].add(method.id)
        c["methods"].append(method)

    def build(self) -> EntityModel:
        self._check_open()
        self._built = True

        names = list(self._classes)
        simple: dict[str, list[str]] = defaultdict(list)
        for n in names:
            simple[n.rpartition(".")[2]].append(n)
        simple_index = MappingProxyType({k: tuple(v) for k, v in simple.items()})

        # Superclass names may be unqualified; resolve them the same way the
        # resolver resolves types so parents point at real identities.
        probe = EntityModel(
            classes_by_name=MappingProxyType({n: ClassEntity(name=n) for n in names}),
            graph=_empty_graph(),
            _simple_index=simple_index,
        )
        parents: dict[str, tuple[str, ...]] = {}
        external: dict[str, tuple[str, ...]] = {}
        for n in names:
            modeled: list[str] = []
            ext: list[str] = []
            for s in self._classes[n]["superclasses"]:
                hit = probe.find_class(s, context=n)
                if hit is None:
                    if s not in ext:
                        ext.append(s)
                elif hit.name not in modeled:
                    modeled.append(hit.name)
            parents[n] = tuple(modeled)
            external[n] = tuple(ext)

        graph = build_inheritance_graph(names, parents, external)
        for n in names:
            if graph.reaches_cycle(n):
                self._issues[n].append(graph.cycle_error(n))

        classes: dict[str, ClassEntity] = {}
        for n in names:
            c = self._classes[n]
            classes[n] = ClassEntity(
                name=n,
                kind=c["kind"],
                methods=tuple(c["methods"]),
                fields=tuple(c["fields"]),
                superclasses=c["superclasses"],
                subclasses=graph.children.get(n, ()),
                type_refs=c["type_refs"],
            )

        return EntityModel(
            classes_by_name=MappingProxyType(classes),
            graph=graph,
            issues=MappingProxyType({k: tuple(v) for k, v in self._issues.items() if v}),
            _simple_index=simple_index,
        )


def _dedupe(items: Iterable) -> tuple:
    out: list = []
    seen: set = set()
    for it in items:
        if it in seen:
            continue
        seen.add(it)
        out.append(it)
    return tuple(out)


def _empty_graph() -> InheritanceGraph:
    empty = MappingProxyType({})
    return InheritanceGraph(
        parents=empty,
        external_parents=empty,
        children=empty,
        roots=(),
        depths=empty,
        cycles=empty,
        cycle_descendants=empty,
    )


def build_inheritance_graph(
    names: list[str],
    parents: dict[str, tuple[str, ...]],
    external_parents: dict[str, tuple[str, ...]],
) -> InheritanceGraph:
    """Pure graph pass: children, roots, depths and cycle classification.

    Depths are computed with Kahn's algorithm from the roots down; whatever
    is left unprocessed sits on a cycle or below one.
    """
    children: dict[str, list[str]] = {n: [] for n in names}
    for n in names:
        for p in parents.get(n, ()):
            children[p].append(n)

    roots = tuple(n for n in names if not parents.get(n) and not external_parents.get(n))

    pending = {n: len(parents.get(n, ())) for n in names}
    depths: dict[str, int] = {}
    dq = deque(n for n in names if pending[n] == 0)
    while dq:
        cur = dq.popleft()
        d = 1 if external_parents.get(cur) else 0
        for p in parents.get(cur, ()):
            d = max(d, depths[p] + 1)
        depths[cur] = d
        for ch in children[cur]:
            pending[ch] -= 1
            if pending[ch] == 0:
                dq.append(ch)

    stuck = [n for n in names if n not in depths]
    cycles: dict[str, tuple[str, ...]] = {}
    for n in stuck:
        if n in cycles:
            continue
        cyc = _find_cycle_through(n, parents)
        if cyc:
            for member in cyc:
                cycles.setdefault(member, cyc)

    descendants: dict[str, tuple[str, ...]] = {}
    for n in stuck:
        if n in cycles:
            continue
        # BFS up the parents until the first cycle member.
        seen = {n}
        dq = deque(parents.get(n, ()))
        while dq:
            cur = dq.popleft()
            if cur in cycles:
                descendants[n] = cycles[cur]
                break
            if cur in seen:
                continue
            seen.add(cur)
            dq.extend(parents.get(cur, ()))

    return InheritanceGraph(
        parents=MappingProxyType(dict(parents)),
        external_parents=MappingProxyType(dict(external_parents)),
        children=MappingProxyType({k: tuple(v) for k, v in children.items()}),
        roots=roots,
        depths=MappingProxyType(depths),
        cycles=MappingProxyType(cycles),
        cycle_descendants=MappingProxyType(descendants),
    )


def _find_cycle_through(start: str, parents: Mapping[str, tuple[str, ...]]) -> tuple[str, ...]:
    # Iterative DFS along parent edges looking for a path back to ``start``.
    stack: list[tuple[str, int]] = [(start, 0)]
    path: list[str] = [start]
    on_path = {start}
    visited: set[str] = set()
    while stack:
        node, idx = stack[-1]
        ps = parents.get(node, ())
        if idx >= len(ps):
            stack.pop()
            path.pop()
            on_path.discard(node)
            visited.add(node)
            continue
        stack[-1] = (node, idx + 1)
        nxt = ps[idx]
        if nxt == start:
            return tuple(path)
        if nxt in on_path or nxt in visited:
            continue
        stack.append((nxt, 0))
        path.append(nxt)
        on_path.add(nxt)
    return ()


# ---------------------------------------------------------------------------
# Raw entities -> model
# ---------------------------------------------------------------------------


def _parse_call(raw, where: str) -> CallRecord:
    if isinstance(raw, str):
        if not raw:
            raise ModelError(f"empty call record in {where}")
        return CallRecord(method=raw)
    if (
        not isinstance(raw, dict)
        or not isinstance(raw.get("method"), str)
        or not raw["method"]
        or not isinstance(raw.get("target") or "", str)
        or not isinstance(raw.get("signature") or "", str)
    ):
        raise ModelError(f"malformed call record in {where}: {raw!r}")
    return CallRecord(method=raw["method"], signature=raw.get("signature"), target=raw.get("target") or None)


def _parse_access(raw, where: str) -> FieldAccessRecord:
    if isinstance(raw, str):
        if not raw:
            raise ModelError(f"empty field access in {where}")
        return FieldAccessRecord(field=raw)
    if (
        not isinstance(raw, dict)
        or not isinstance(raw.get("field"), str)
        or not raw["field"]
        or not isinstance(raw.get("owner") or "", str)
    ):
        raise ModelError(f"malformed field access in {where}: {raw!r}")
    return FieldAccessRecord(field=raw["field"], owner=raw.get("owner") or None)


def _list(value, what: str, where: str, problems: list[str]) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        problems.append(f"{what} of {where} must be a list, got {type(value).__name__}; ignored")
        return []
    return list(value)


def _str_list(value, what: str, where: str, problems: list[str]) -> list[str]:
    out: list[str] = []
    for v in _list(value, what, where, problems):
        if isinstance(v, str):
            out.append(v)
        else:
            problems.append(f"non-string entry {v!r} in {what} of {where} ignored")
    return out


def _records(value, parse, what: str, where: str, problems: list[str]) -> list:
    out = []
    for item in _list(value, what, where, problems):
        try:
            out.append(parse(item, where))
        except ModelError as e:
            problems.append(f"{e.message}; ignored")
    return out


def build_model(raw: dict) -> EntityModel:
    """Build a frozen model from raw entities.

    Raises :class:`ModelError` only when the input as a whole is unusable: not
    a mapping, no ``classes`` list, or a class entry without a name. Problems
    inside one class (malformed superclasses or members, duplicates, cycles)
    drop the offending piece and are attached to ``model.issues`` for that
    class; its siblings are unaffected.
    """
    if not isinstance(raw, dict):
        raise ModelError(f"raw entities must be a mapping, got {type(raw).__name__}")
    entries = raw.get("classes")
    if not isinstance(entries, list):
        raise ModelError("raw entities must contain a 'classes' list")

    builder = ModelBuilder()
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ModelError(f"classes[{i}] must be a mapping")
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ModelError(f"classes[{i}] has no name")
        if builder.has_class(name):
            builder.add_issue(name, ModelError(f"duplicate class {name} at classes[{i}] ignored", class_name=name))
            continue

        problems: list[str] = []
        kind = entry.get("kind") or "class"
        if not isinstance(kind, str):
            problems.append(f"kind of {name} must be a string, got {kind!r}; ignored")
            kind = "class"
        builder.add_class(
            name,
            kind=kind,
            superclasses=_list(entry.get("superclasses"), "superclasses", name, problems),
            type_refs=_str_list(entry.get("type_refs"), "type_refs", name, problems),
        )
        for f in _list(entry.get("fields"), "fields", name, problems):
            if isinstance(f, str) and f:
                builder.add_field(name, f)
            elif isinstance(f, dict) and isinstance(f.get("name"), str) and f["name"]:
                ftype = f.get("type")
                builder.add_field(name, f["name"], ftype if isinstance(ftype, str) else "")
            else:
                problems.append(f"malformed field in {name} ignored: {f!r}")
        for m in _list(entry.get("methods"), "methods", name, problems):
            if isinstance(m, str):
                m = {"name": m}
            if not isinstance(m, dict) or not isinstance(m.get("name"), str) or not m["name"]:
                problems.append(f"malformed method in {name} ignored: {m!r}")
                continue
            where = f"{name}#{m['name']}"
            complexity = m.get("complexity", 1)
            if isinstance(complexity, bool) or not isinstance(complexity, int):
                problems.append(f"complexity of {where} must be an integer, got {complexity!r}; using 1")
                complexity = 1
            builder.add_method(
                name,
                m["name"],
                signature=m.get("signature") or "",
                field_accesses=_records(m.get("field_accesses"), _parse_access, "field_accesses", where, problems),
                calls=_records(m.get("calls"), _parse_call, "calls", where, problems),
                parameter_types=_str_list(m.get("parameter_types"), "parameter_types", where, problems),
                return_type=m.get("return_type") or "",
                local_types=_str_list(m.get("local_types"), "local_types", where, problems),
                complexity=complexity,
            )
        for msg in problems:
            builder.add_issue(name, ModelError(msg, class_name=name))
    return builder.build()
