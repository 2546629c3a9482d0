from __future__ import annotations

import json
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable

from ckmetrics.errors import ConfigError


# Report and finding order.
METRIC_NAMES: tuple[str, ...] = ("wmc", "dit", "noc", "cbo", "rfc", "lcom")

_TABLE_ROW_RE = re.compile(r"^\|\s*[*_`]*([A-Za-z]+)[*_`]*\s*\|(.+)$")
_INT_RE = re.compile(r"(?<![\w.])(\d+)(?![\w.])")


@dataclass(frozen=True)
class Thresholds:
    """Upper bounds per metric. A value exceeds its bound only if strictly greater."""

    wmc: float = 20
    dit: float = 5
    noc: float = 7
    cbo: float = 14
    rfc: float = 50
    lcom: float = 1

    def __post_init__(self) -> None:
        for f in fields(self):
            _check_bound(f.name, getattr(self, f.name))

    @classmethod
    def from_mapping(cls, data: dict | None) -> "Thresholds":
        if data is None:
            return cls()
        return cls().with_overrides(data)

    def with_overrides(self, data: dict) -> "Thresholds":
        if not isinstance(data, dict):
            raise ConfigError(f"thresholds must be a mapping, got {type(data).__name__}")
        changes: dict[str, float] = {}
        for key, value in data.items():
            name = str(key).strip().lower()
            if name not in METRIC_NAMES:
                raise ConfigError(f"unknown metric in thresholds: {key!r}")
            _check_bound(name, value)
            changes[name] = value
        return replace(self, **changes)

    def get(self, metric: str) -> float:
        return getattr(self, metric)

    def to_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in METRIC_NAMES}


def _check_bound(name: str, value: Any) -> None:
    # bool is an int subclass; "true" is never a meaningful bound.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"threshold for {name} must be a number, got {value!r}")
    if value != value or value < 0:
        raise ConfigError(f"threshold for {name} must be a non-negative number, got {value!r}")


def _constant_weight(method) -> int:
    return 1


def _complexity_weight(method) -> int:
    return max(1, method.complexity)


WMC_WEIGHTS: dict[str, Callable[[Any], int]] = {
    "constant": _constant_weight,
    "complexity": _complexity_weight,
}


@dataclass(frozen=True)
class AnalysisOptions:
    # Name from WMC_WEIGHTS or a callable taking a MethodEntity.
    wmc_weight: str | Callable[[Any], int] = "constant"
    cbo_include_inheritance: bool = False
    # External / typed-unresolved calls count toward CBO and RFC.
    count_external: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.wmc_weight, str):
            if self.wmc_weight not in WMC_WEIGHTS:
                raise ConfigError(
                    f"unknown wmc_weight {self.wmc_weight!r}; expected one of {sorted(WMC_WEIGHTS)}"
                )
        elif not callable(self.wmc_weight):
            raise ConfigError("wmc_weight must be a weight name or a callable")
        for flag in ("cbo_include_inheritance", "count_external"):
            if not isinstance(getattr(self, flag), bool):
                raise ConfigError(f"{flag} must be a boolean")

    @classmethod
    def from_mapping(cls, data: dict | None) -> "AnalysisOptions":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError(f"options must be a mapping, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown analysis options: {', '.join(unknown)}")
        return cls(**data)

    def weight_function(self) -> Callable[[Any], int]:
        if isinstance(self.wmc_weight, str):
            return WMC_WEIGHTS[self.wmc_weight]
        return self.wmc_weight

    def to_dict(self) -> dict:
        weight = self.wmc_weight
        if not isinstance(weight, str):
            weight = getattr(weight, "__name__", "custom")
        return {
            "wmc_weight": weight,
            "cbo_include_inheritance": self.cbo_include_inheritance,
            "count_external": self.count_external,
        }


def parse_threshold_table(text: str) -> dict[str, int]:
    """Collect ``| METRIC | ... | N |`` rows from a markdown threshold table.

    The first standalone integer after the metric name is taken as its bound.
    Rows naming something other than a CK metric (headers, separators) are
    ignored, and the first row for a metric wins.
    """
    found: dict[str, int] = {}
    for raw in text.splitlines():
        m = _TABLE_ROW_RE.match(raw.strip())
        if not m:
            continue
        name = m.group(1).lower()
        if name not in METRIC_NAMES or name in found:
            continue
        num = _INT_RE.search(m.group(2))
        if num:
            found[name] = int(num.group(1))
    return found


def load_thresholds(path: Path, *, base: Thresholds | None = None) -> Thresholds:
    base = base or Thresholds()
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read thresholds file {path}: {exc}") from exc

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"invalid JSON in {path}: {exc}") from exc
        if isinstance(data, dict) and isinstance(data.get("thresholds"), dict):
            data = data["thresholds"]
        return base.with_overrides(data)

    table = parse_threshold_table(text)
    if not table:
        raise ConfigError(f"no threshold rows found in {path}")
    return base.with_overrides(table)


def parse_override(text: str) -> tuple[str, float]:
    """``"wmc=25"`` -> ``("wmc", 25)``."""
    name, sep, value = text.partition("=")
    if not sep:
        raise ConfigError(f"expected METRIC=VALUE, got {text!r}")
    try:
        number: float = int(value)
    except ValueError:
        try:
            number = float(value)
        except ValueError:
            raise ConfigError(f"threshold value for {name.strip()!r} is not a number: {value!r}") from None
    return name.strip().lower(), number
