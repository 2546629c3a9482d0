import argparse
import json
import sys
import time
from pathlib import Path

from ckmetrics.config import AnalysisOptions, Thresholds, load_thresholds, parse_override
from ckmetrics.errors import CKMetricsError, ConfigError, ModelError
from ckmetrics.metrics import compute_metrics
from ckmetrics.model import build_model
from ckmetrics.report import evaluate
from ckmetrics.resolver import resolve
from ckmetrics.timing import Timings


EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_FATAL = 2


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CK metrics (WMC, DIT, NOC, CBO, RFC, LCOM) analyzer")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--entities", help="Raw entities JSON produced by a source adapter")
    src.add_argument("--java-src", help="Directory with .java sources (tree-sitter adapter)")
    parser.add_argument("--max-files", type=int, default=None, help="Limit of .java files to parse")
    parser.add_argument("--thresholds", help="Thresholds file: JSON mapping or markdown table")
    parser.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="METRIC=VALUE",
        help="Override one threshold (repeatable), e.g. --set wmc=25",
    )
    parser.add_argument("--wmc-weight", default="constant", help="WMC weight: constant | complexity")
    parser.add_argument("--cbo-include-inheritance", action="store_true", help="Count parents/children in CBO")
    parser.add_argument("--no-external", action="store_true", help="Ignore calls to types outside the model")
    parser.add_argument("--serial", action="store_true", help="Run metric engines one after another")
    parser.add_argument("--out", default="ck-report.json")
    parser.add_argument("--fail-on-findings", action="store_true", help="Exit with 1 when any finding exists")
    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> tuple[Thresholds, AnalysisOptions]:
    thresholds = Thresholds()
    if args.thresholds:
        thresholds = load_thresholds(Path(args.thresholds))
    if args.overrides:
        thresholds = thresholds.with_overrides(dict(parse_override(o) for o in args.overrides))
    options = AnalysisOptions(
        wmc_weight=args.wmc_weight,
        cbo_include_inheritance=args.cbo_include_inheritance,
        count_external=not args.no_external,
    )
    return thresholds, options


def load_entities(args: argparse.Namespace) -> dict:
    if args.java_src:
        # Imported here so JSON-only runs do not need the tree-sitter runtime.
        try:
            from ckmetrics.java_source import extract_java_entities
        except ImportError as e:
            raise ConfigError(
                f"--java-src needs the tree-sitter runtime ({e}); install it with: pip install 'ck-metrics[java]'"
            ) from e

        return extract_java_entities(Path(args.java_src), max_files=args.max_files)
    path = Path(args.entities)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ModelError(f"cannot read entities file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ModelError(f"invalid JSON in {path}: {e}") from e


def _write_json(path: Path, obj: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    timings = Timings()
    output: dict = {
        "meta": {"started_at_unix": time.time()},
        "errors": [],
    }
    out_path = Path(args.out)

    try:
        # Bad thresholds make every finding meaningless: fail before any work.
        thresholds, options = load_config(args)
        with timings.step("extract"):
            raw = load_entities(args)
        with timings.step("build"):
            model = build_model(raw)
        timings.count("classes", len(model))
        timings.count("methods", sum(len(c.methods) for c in model.classes()))
        with timings.step("resolve"):
            resolution = resolve(model)
        timings.count("calls", sum(resolution.outcome_counts().values()))
        with timings.step("metrics"):
            per_class = compute_metrics(model, resolution, options=options, parallel=not args.serial)
        with timings.step("evaluate"):
            report = evaluate(per_class, thresholds)
    except CKMetricsError as e:
        output["errors"].append(e.as_dict())
        output["meta"]["timings"] = timings.as_dict()
        _write_json(out_path, output)
        print(f"error: {e.message}", file=sys.stderr)
        print(json.dumps({"status": "error", "kind": e.kind, "out": str(out_path)}, ensure_ascii=False))
        return EXIT_FATAL

    output.update(report.to_dict())
    output["meta"]["resolution"] = resolution.outcome_counts()
    if raw.get("skipped_files"):
        output["meta"]["skipped_files"] = raw["skipped_files"]
    output["meta"]["timings"] = timings.as_dict()
    output["meta"]["resources"] = timings.resource_snapshot()

    _write_json(out_path, output)
    # One status line on stdout for wrappers.
    print(
        json.dumps(
            {
                "status": "ok",
                "out": str(out_path),
                "classes": len(report.classes),
                "findings": len(report.findings),
            },
            ensure_ascii=False,
        )
    )

    if args.fail_on_findings and report.findings:
        return EXIT_FINDINGS
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
