"""Java front-end: ``.java`` files -> raw entities for :func:`ckmetrics.model.build_model`.

Extraction is syntactic (tree-sitter), so receiver types of calls are only
known when they are fields, parameters, locals, ``this``/``super`` or a
capitalised static receiver. Calls on anything else are dropped.
"""
from __future__ import annotations

import os
import re
from pathlib import Path

from tree_sitter_languages import get_parser


_JAVA_PARSER = get_parser("java")

_SKIP_DIRS = {".git", "target", "build", ".gradle", ".idea"}

_TYPE_DECLS = ("class_declaration", "interface_declaration", "enum_declaration", "record_declaration")

_CONTROL_TYPES = {
    "if_statement",
    "for_statement",
    "enhanced_for_statement",
    "while_statement",
    "do_statement",
    "switch_statement",
    "switch_expression",
    "catch_clause",
    "conditional_expression",
}


def _node_text(src: bytes, node) -> str:
    return src[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")


def _find_children(node, type_name: str) -> list:
    out = []
    stack = [node]
    while stack:
        n = stack.pop()
        if n.type == type_name:
            out.append(n)
        for ch in n.children:
            stack.append(ch)
    out.sort(key=lambda n: n.start_byte)
    return out


def _first_child(node, type_name: str):
    for ch in node.children:
        if ch.type == type_name:
            return ch
    return None


def _field_text(src: bytes, node, field_name: str) -> str:
    ch = node.child_by_field_name(field_name)
    if not ch:
        return ""
    return _node_text(src, ch).strip()


def _same(a, b) -> bool:
    return a is not None and b is not None and (a.start_byte, a.end_byte, a.type) == (b.start_byte, b.end_byte, b.type)


def _base_type(type_text: str) -> str:
    return re.split(r"[<\[\s]", type_text.strip(), maxsplit=1)[0]


def _package_name(src: bytes, root_node) -> str:
    for n in _find_children(root_node, "package_declaration"):
        m = re.search(r"package\s+([a-zA-Z0-9_.]+)\s*;", _node_text(src, n))
        if m:
            return m.group(1)
    return ""


def _imports(src: bytes, root_node) -> dict[str, str]:
    out: dict[str, str] = {}
    for n in _find_children(root_node, "import_declaration"):
        m = re.search(r"import\s+(?:static\s+)?([a-zA-Z0-9_.]+)\s*;", _node_text(src, n))
        if m:
            fq = m.group(1)
            out[fq.rsplit(".", 1)[-1]] = fq
    return out


def _class_kind(src: bytes, decl_node) -> str:
    if decl_node.type == "interface_declaration":
        return "interface"
    if decl_node.type == "class_declaration":
        modifiers = _first_child(decl_node, "modifiers")
        if modifiers and "abstract" in _node_text(src, modifiers).split():
            return "abstract"
    return "class"


def _declared_supertypes(src: bytes, decl_node) -> list[str]:
    out: list[str] = []
    for kind in ("superclass", "super_interfaces", "extends_interfaces"):
        holder = _first_child(decl_node, kind)
        if holder is None:
            continue
        type_list = _first_child(holder, "type_list")
        nodes = type_list.children if type_list is not None else holder.children
        for n in nodes:
            if n.is_named:
                out.append(_base_type(_node_text(src, n)))
    return [t for t in out if t]


def _method_complexity(body) -> int:
    # Rough cognitive complexity: +1 per control structure, +nesting level.
    if body is None:
        return 0

    def walk(node, depth: int) -> int:
        score = 0
        for ch in node.children:
            nd = depth
            if ch.type in _CONTROL_TYPES:
                score += 1 + depth
                nd = depth + 1
            score += walk(ch, nd)
        return score

    return walk(body, 0)


def _params(src: bytes, method_node) -> list[tuple[str, str]]:
    params = method_node.child_by_field_name("parameters")
    if params is None:
        return []
    out = []
    for p in params.children:
        if p.type not in ("formal_parameter", "spread_parameter"):
            continue
        tnode = p.child_by_field_name("type")
        name = _field_text(src, p, "name")
        if tnode is None:
            # spread_parameter exposes no fields in older grammars.
            named = [c for c in p.children if c.is_named]
            tnode = named[0] if named else None
            decl = _first_child(p, "variable_declarator")
            name = _field_text(src, decl, "name") if decl is not None else name
        if tnode is not None:
            out.append((_node_text(src, tnode).strip(), name))
    return out


def _locals(src: bytes, body) -> dict[str, str]:
    out: dict[str, str] = {}
    if body is None:
        return out
    for decl_type in ("local_variable_declaration", "enhanced_for_statement", "catch_formal_parameter"):
        for n in _find_children(body, decl_type):
            tnode = n.child_by_field_name("type")
            if tnode is None:
                continue
            type_text = _node_text(src, tnode).strip()
            if decl_type == "local_variable_declaration":
                for d in n.children:
                    if d.type == "variable_declarator":
                        name = _field_text(src, d, "name")
                        if name:
                            out[name] = type_text
            else:
                name = _field_text(src, n, "name")
                if name:
                    out[name] = type_text
    return out


class _ClassScope:
    def __init__(self, name: str, fields: dict[str, str], supertypes: list[str], imports: dict[str, str]) -> None:
        self.name = name
        self.fields = fields
        self.supertypes = supertypes
        self.imports = imports

    def qualify(self, type_name: str) -> str:
        return self.imports.get(type_name, type_name)


def _receiver_type(src: bytes, obj, scope: _ClassScope, variables: dict[str, str]) -> str | None:
    """Type name of a call receiver, ``""`` for implicit this, None if unknown."""
    if obj is None or obj.type == "this":
        return ""
    if obj.type == "super":
        return scope.qualify(scope.supertypes[0]) if scope.supertypes else ""
    if obj.type == "identifier":
        name = _node_text(src, obj)
        if name in variables:
            return scope.qualify(_base_type(variables[name]))
        if name in scope.fields:
            return scope.qualify(_base_type(scope.fields[name]))
        if name[:1].isupper():
            return scope.qualify(name)
        return None
    if obj.type == "field_access":
        inner = obj.child_by_field_name("object")
        if inner is not None and inner.type == "this":
            fname = _field_text(src, obj, "field")
            if fname in scope.fields:
                return scope.qualify(_base_type(scope.fields[fname]))
    return None


def _method_entry(src: bytes, m, scope: _ClassScope) -> dict | None:
    name = _field_text(src, m, "name")
    if not name:
        return None
    params = _params(src, m)
    body = m.child_by_field_name("body")
    variables = {pname: ptype for ptype, pname in params if pname}
    variables.update(_locals(src, body))

    calls: list[dict] = []
    accesses: list = []
    local_types = sorted(set(variables.values()) - {t for t, _ in params})

    if body is not None:
        for inv in _find_children(body, "method_invocation"):
            mname = _field_text(src, inv, "name")
            if not mname:
                continue
            target = _receiver_type(src, inv.child_by_field_name("object"), scope, variables)
            if target is None:
                continue
            call = {"method": mname}
            if target:
                call["target"] = target
            if call not in calls:
                calls.append(call)

        for fa in _find_children(body, "field_access"):
            obj = fa.child_by_field_name("object")
            fname = _field_text(src, fa, "field")
            if obj is None or not fname:
                continue
            if obj.type == "this":
                access = fname
            elif obj.type == "identifier":
                owner = _receiver_type(src, obj, scope, variables)
                if not owner:
                    continue
                access = {"owner": owner, "field": fname}
            else:
                continue
            if access not in accesses:
                accesses.append(access)

        for ident in _find_children(body, "identifier"):
            text = _node_text(src, ident)
            if text not in scope.fields or text in variables or text in accesses:
                continue
            parent = ident.parent
            if parent is not None:
                if parent.type == "field_access" and _same(parent.child_by_field_name("field"), ident):
                    continue
                if parent.type == "method_invocation" and _same(parent.child_by_field_name("name"), ident):
                    continue
            accesses.append(text)

        for new in _find_children(body, "object_creation_expression"):
            tnode = new.child_by_field_name("type")
            if tnode is not None:
                t = _node_text(src, tnode).strip()
                if t not in local_types:
                    local_types.append(t)

    return_type = _field_text(src, m, "type") if m.type == "method_declaration" else ""
    return {
        "name": name,
        "signature": ",".join(t for t, _ in params),
        "parameter_types": [t for t, _ in params],
        "return_type": return_type,
        "local_types": local_types,
        "complexity": max(1, _method_complexity(body)),
        "field_accesses": accesses,
        "calls": calls,
    }


def _body_members(decl_node) -> list:
    body = decl_node.child_by_field_name("body")
    if body is None:
        return []
    members = list(body.children)
    # Enum constants come first; members live in enum_body_declarations.
    for ch in body.children:
        if ch.type == "enum_body_declarations":
            members.extend(ch.children)
    return members


def _collect_class(src: bytes, decl, prefix: str, imports: dict[str, str], out: list[dict]) -> None:
    simple = _field_text(src, decl, "name")
    if not simple:
        return
    name = f"{prefix}.{simple}" if prefix else simple
    members = _body_members(decl)

    fields: dict[str, str] = {}
    field_entries: list[dict] = []
    for fd in members:
        if fd.type not in ("field_declaration", "constant_declaration"):
            continue
        type_text = _field_text(src, fd, "type")
        for d in fd.children:
            if d.type == "variable_declarator":
                fname = _field_text(src, d, "name")
                if fname and fname not in fields:
                    fields[fname] = type_text
                    field_entries.append({"name": fname, "type": type_text})
    if decl.type == "record_declaration":
        for ptype, pname in _params(src, decl):
            if pname and pname not in fields:
                fields[pname] = ptype
                field_entries.append({"name": pname, "type": ptype})

    supertypes = _declared_supertypes(src, decl)
    scope = _ClassScope(name, fields, supertypes, imports)

    methods: list[dict] = []
    for m in members:
        if m.type in ("method_declaration", "constructor_declaration"):
            entry = _method_entry(src, m, scope)
            if entry is not None:
                methods.append(entry)

    out.append(
        {
            "name": name,
            "kind": _class_kind(src, decl),
            "superclasses": [scope.qualify(s) for s in supertypes],
            "fields": field_entries,
            "methods": methods,
        }
    )
    for m in members:
        if m.type in _TYPE_DECLS:
            _collect_class(src, m, name, imports, out)


def extract_java_source(src: bytes) -> list[dict]:
    tree = _JAVA_PARSER.parse(src)
    root = getattr(tree, "root_node", None)
    if root is None:
        return []
    pkg = _package_name(src, root)
    imports = _imports(src, root)
    out: list[dict] = []
    for decl in root.children:
        if decl.type in _TYPE_DECLS:
            _collect_class(src, decl, pkg, imports, out)
    return out


def iter_java_files(repo_dir: Path, *, max_files: int | None = None) -> list[Path]:
    files = []
    for root, dirs, fns in os.walk(repo_dir):
        dirs[:] = sorted(d for d in dirs if d not in _SKIP_DIRS)
        for fn in sorted(fns):
            if fn.endswith(".java"):
                files.append(Path(root) / fn)
    if max_files is not None:
        files = files[:max_files]
    return files


def extract_java_entities(repo_dir: Path, *, max_files: int | None = None) -> dict:
    classes: list[dict] = []
    seen: set[str] = set()
    skipped: list[dict] = []
    for path in iter_java_files(repo_dir, max_files=max_files):
        try:
            src = path.read_bytes()
        except OSError as e:
            skipped.append({"file": str(path.relative_to(repo_dir)), "error": str(e)})
            continue
        try:
            found = extract_java_source(src)
        except Exception as e:
            # A single malformed file must not abort the whole repository scan.
            skipped.append({"file": str(path.relative_to(repo_dir)), "error": str(e)})
            continue
        for c in found:
            # Same qualified name in two files (e.g. generated sources): keep the first.
            if c["name"] in seen:
                continue
            seen.add(c["name"])
            classes.append(c)
    return {"classes": classes, "skipped_files": skipped}
