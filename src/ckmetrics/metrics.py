from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterator, Mapping

from ckmetrics.config import METRIC_NAMES, AnalysisOptions
from ckmetrics.errors import AnalysisCancelled, CKMetricsError
from ckmetrics.model import ClassEntity, EntityModel
from ckmetrics.resolver import EXTERNAL, REMOTE, UNRESOLVED, Resolution, resolve


@dataclass(frozen=True)
class MetricContext:
    model: EntityModel
    resolution: Resolution
    options: AnalysisOptions


class MetricEngine:
    """One metric, computed per class. Engines hold no per-run state."""

    name = ""

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        raise NotImplementedError


class WMCEngine(MetricEngine):
    name = "wmc"

    def __init__(self, weight: Callable | None = None) -> None:
        # Overrides AnalysisOptions.wmc_weight when given.
        self.weight = weight

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        weight = self.weight or ctx.options.weight_function()
        return sum(weight(m) for m in cls.methods)


class DITEngine(MetricEngine):
    name = "dit"

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        # Edges, not nodes: a root has DIT 0. Raises CycleError on cyclic ancestry.
        return ctx.model.graph.depth(cls.name)


class NOCEngine(MetricEngine):
    name = "noc"

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        graph = ctx.model.graph
        if graph.in_cycle(cls.name):
            raise graph.cycle_error(cls.name)
        return len(graph.children.get(cls.name, ()))


def _counts_as_external(ctx: MetricContext, outcome: str, typed: bool) -> bool:
    return ctx.options.count_external and typed and outcome in (EXTERNAL, UNRESOLVED)


def coupled_classes(ctx: MetricContext, cls: ClassEntity) -> list[str]:
    """Distinct other classes ``cls`` is coupled to, in first-seen order."""
    res = ctx.resolution
    out: list[str] = []

    def add(name: str | None) -> None:
        if name and name != cls.name and name not in out:
            out.append(name)

    for call in res.calls_of(cls.name):
        if call.outcome == REMOTE or _counts_as_external(ctx, call.outcome, call.typed):
            add(call.callee_class)
    for acc in res.accesses_of(cls.name):
        if acc.outcome == REMOTE or _counts_as_external(ctx, acc.outcome, acc.owner is not None):
            add(acc.owner)
    for name in res.type_refs.get(cls.name, ()):
        add(name)
    if ctx.options.cbo_include_inheritance:
        graph = ctx.model.graph
        for name in graph.parents.get(cls.name, ()):
            add(name)
        for name in graph.external_parents.get(cls.name, ()):
            add(name)
        for name in graph.children.get(cls.name, ()):
            add(name)
    return out


class CBOEngine(MetricEngine):
    name = "cbo"

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        return len(coupled_classes(ctx, cls))


def remote_callees(ctx: MetricContext, cls: ClassEntity) -> list[str]:
    """Depth-1 response set outside the class, deduplicated by callee identity."""
    out: list[str] = []
    seen: set[str] = set()
    for call in ctx.resolution.calls_of(cls.name):
        if call.outcome != REMOTE and not _counts_as_external(ctx, call.outcome, call.typed):
            continue
        if call.callee and call.callee not in seen:
            seen.add(call.callee)
            out.append(call.callee)
    return out


class RFCEngine(MetricEngine):
    name = "rfc"

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        return len(cls.methods) + len(remote_callees(ctx, cls))


def method_pairs(ctx: MetricContext, cls: ClassEntity) -> tuple[int, int]:
    """(P, Q): method pairs with disjoint / shared local field sets."""
    sets = [ctx.resolution.local_fields.get(m.id, frozenset()) for m in cls.methods]
    p = q = 0
    for i in range(len(sets)):
        for j in range(i + 1, len(sets)):
            if sets[i] & sets[j]:
                q += 1
            else:
                p += 1
    return p, q


class LCOMEngine(MetricEngine):
    """LCOM1 = P - Q, clamped at 0 (a cohesive class never goes negative)."""

    name = "lcom"

    def compute(self, ctx: MetricContext, cls: ClassEntity) -> int:
        if len(cls.methods) < 2 or not cls.fields:
            return 0
        local = ctx.resolution.local_fields
        if not any(local.get(m.id) for m in cls.methods):
            return 0
        p, q = method_pairs(ctx, cls)
        return max(0, p - q)


ENGINES: Mapping[str, MetricEngine] = MappingProxyType({
    e.name: e
    for e in (WMCEngine(), DITEngine(), NOCEngine(), CBOEngine(), RFCEngine(), LCOMEngine())
})


@dataclass(frozen=True)
class ClassError:
    kind: str
    message: str
    metrics: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "metrics": list(self.metrics)}


@dataclass(frozen=True)
class ClassMetrics:
    name: str
    values: Mapping[str, int | None]
    errors: tuple[ClassError, ...] = ()

    def get(self, metric: str) -> int | None:
        return self.values.get(metric)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class PerClassMetrics:
    classes: tuple[ClassMetrics, ...]
    options: AnalysisOptions = field(default_factory=AnalysisOptions)
    metric_names: tuple[str, ...] = METRIC_NAMES

    def __iter__(self) -> Iterator[ClassMetrics]:
        return iter(self.classes)

    def __len__(self) -> int:
        return len(self.classes)

    def get(self, name: str) -> ClassMetrics | None:
        for c in self.classes:
            if c.name == name:
                return c
        return None


def _run_engine(
    engine: MetricEngine,
    ctx: MetricContext,
    classes: list[ClassEntity],
    should_cancel: Callable[[], bool] | None,
) -> dict[str, int | Exception]:
    out: dict[str, int | Exception] = {}
    for cls in classes:
        if should_cancel is not None and should_cancel():
            raise AnalysisCancelled(f"cancelled while computing {engine.name}", class_name=cls.name)
        try:
            out[cls.name] = engine.compute(ctx, cls)
        except Exception as exc:
            # One broken class must not take its siblings down.
            out[cls.name] = exc
    return out


def _error_of(exc: Exception) -> tuple[str, str]:
    if isinstance(exc, CKMetricsError):
        return exc.kind, exc.message
    return type(exc).__name__, str(exc)


def compute_metrics(
    model: EntityModel,
    resolution: Resolution | None = None,
    *,
    options: AnalysisOptions | None = None,
    engines: Mapping[str, MetricEngine] | None = None,
    parallel: bool = True,
    should_cancel: Callable[[], bool] | None = None,
) -> PerClassMetrics:
    """Run every engine over every class of a frozen model.

    With ``parallel`` each engine gets its own worker thread; results are
    only assembled after all of them finished. ``should_cancel`` is polled
    before each class and aborts the run with :class:`AnalysisCancelled`.
    """
    options = options or AnalysisOptions()
    if resolution is None:
        resolution = resolve(model)
    engines = engines if engines is not None else ENGINES
    ctx = MetricContext(model=model, resolution=resolution, options=options)
    classes = list(model.classes())

    results: dict[str, dict[str, int | Exception]] = {}
    if parallel and len(engines) > 1:
        with ThreadPoolExecutor(max_workers=len(engines), thread_name_prefix="ck-engine") as pool:
            futures = {
                name: pool.submit(_run_engine, engine, ctx, classes, should_cancel)
                for name, engine in engines.items()
            }
            for name, fut in futures.items():
                results[name] = fut.result()
    else:
        for name, engine in engines.items():
            results[name] = _run_engine(engine, ctx, classes, should_cancel)

    names = tuple(n for n in METRIC_NAMES if n in engines) + tuple(n for n in engines if n not in METRIC_NAMES)
    rows: list[ClassMetrics] = []
    for cls in classes:
        values: dict[str, int | None] = {}
        # (kind, message) -> metrics it broke; keeps a cycle reported once.
        errors: dict[tuple[str, str], list[str]] = {}
        for issue in model.issues.get(cls.name, ()):
            errors.setdefault(_error_of(issue), [])
        for metric in names:
            val = results[metric][cls.name]
            if isinstance(val, Exception):
                values[metric] = None
                errors.setdefault(_error_of(val), []).append(metric)
            else:
                values[metric] = val
        rows.append(
            ClassMetrics(
                name=cls.name,
                values=MappingProxyType(values),
                errors=tuple(ClassError(k, msg, tuple(ms)) for (k, msg), ms in errors.items()),
            )
        )
    return PerClassMetrics(classes=tuple(rows), options=options, metric_names=names)
