from __future__ import annotations

from dataclasses import dataclass, field

from ckmetrics.config import METRIC_NAMES, AnalysisOptions, Thresholds
from ckmetrics.errors import ConfigError
from ckmetrics.metrics import ClassMetrics, PerClassMetrics, compute_metrics
from ckmetrics.model import build_model
from ckmetrics.resolver import resolve


@dataclass(frozen=True)
class Finding:
    class_name: str
    metric: str
    value: int
    threshold: float
    exceeded: bool = True

    def to_dict(self) -> dict:
        return {
            "class": self.class_name,
            "metric": self.metric,
            "value": self.value,
            "threshold": self.threshold,
            "exceeded": self.exceeded,
        }


@dataclass(frozen=True)
class Report:
    classes: tuple[ClassMetrics, ...]
    findings: tuple[Finding, ...]
    thresholds: Thresholds
    options: AnalysisOptions = field(default_factory=AnalysisOptions)

    def findings_for(self, class_name: str) -> list[Finding]:
        return [f for f in self.findings if f.class_name == class_name]

    def class_row(self, class_name: str) -> ClassMetrics | None:
        for c in self.classes:
            if c.name == class_name:
                return c
        return None

    def to_dict(self) -> dict:
        rows = []
        for c in self.classes:
            row: dict = {"name": c.name}
            for metric in METRIC_NAMES:
                row[metric] = c.get(metric)
            for metric, value in c.values.items():
                if metric not in row:
                    row[metric] = value
            row["errors"] = [e.to_dict() for e in c.errors]
            rows.append(row)
        return {
            "classes": rows,
            "findings": [f.to_dict() for f in self.findings],
            "config": {
                "thresholds": self.thresholds.to_dict(),
                "options": self.options.to_dict(),
            },
            "summary": {
                "classes": len(self.classes),
                "findings": len(self.findings),
                "classes_with_errors": sum(1 for c in self.classes if c.errors),
            },
        }


def evaluate(per_class: PerClassMetrics, thresholds: Thresholds | dict | None = None) -> Report:
    """Compare values against upper bounds (strict ``>``) and build the report.

    Classes keep the model order; findings follow class order, then metric
    order. A metric that failed for a class (value ``None``) yields no finding.
    """
    if thresholds is None:
        thresholds = Thresholds()
    elif isinstance(thresholds, dict):
        thresholds = Thresholds.from_mapping(thresholds)
    elif not isinstance(thresholds, Thresholds):
        raise ConfigError(f"thresholds must be Thresholds or a mapping, got {type(thresholds).__name__}")

    findings: list[Finding] = []
    for row in per_class:
        for metric in METRIC_NAMES:
            value = row.get(metric)
            if value is None:
                continue
            bound = thresholds.get(metric)
            if value > bound:
                findings.append(Finding(row.name, metric, value, bound))

    return Report(
        classes=tuple(per_class),
        findings=tuple(findings),
        thresholds=thresholds,
        options=per_class.options,
    )


def analyze(
    raw: dict,
    thresholds: Thresholds | dict | None = None,
    options: AnalysisOptions | dict | None = None,
    *,
    parallel: bool = True,
) -> Report:
    """Raw entities -> report. Configuration is validated before any model work."""
    if not isinstance(thresholds, Thresholds):
        thresholds = Thresholds.from_mapping(thresholds)
    if not isinstance(options, AnalysisOptions):
        options = AnalysisOptions.from_mapping(options)

    model = build_model(raw)
    resolution = resolve(model)
    per_class = compute_metrics(model, resolution, options=options, parallel=parallel)
    return evaluate(per_class, thresholds)
