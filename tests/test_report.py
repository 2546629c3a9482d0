import json
import sys
import unittest
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from ckmetrics import report  # noqa: E402
from ckmetrics.config import Thresholds  # noqa: E402
from ckmetrics.errors import ConfigError, ModelError  # noqa: E402
from ckmetrics.metrics import compute_metrics  # noqa: E402
from ckmetrics.model import build_model  # noqa: E402


def sample_raw() -> dict:
    return {
        "classes": [
            {
                "name": "Zeta",
                "fields": ["a", "b"],
                "methods": [
                    {"name": "m1", "field_accesses": ["a"]},
                    {"name": "m2", "field_accesses": ["b"]},
                    {"name": "m3", "field_accesses": ["a"]},
                ],
            },
            {"name": "Alpha", "superclasses": ["Zeta"], "methods": ["x"]},
            {"name": "Loop1", "superclasses": ["Loop2"]},
            {"name": "Loop2", "superclasses": ["Loop1"]},
        ]
    }


class EvaluateTests(unittest.TestCase):
    def setUp(self) -> None:
        self.per_class = compute_metrics(build_model(sample_raw()))

    def test_strict_upper_bound(self) -> None:
        # Zeta: pairs (m1,m2) and (m2,m3) disjoint, (m1,m3) share -> LCOM 1.
        self.assertEqual(self.per_class.get("Zeta").get("lcom"), 1)
        rep = report.evaluate(self.per_class, Thresholds(lcom=1))
        self.assertEqual(rep.findings_for("Zeta"), [])
        rep = report.evaluate(self.per_class, Thresholds(lcom=0))
        self.assertEqual(
            [f.to_dict() for f in rep.findings_for("Zeta")],
            [{"class": "Zeta", "metric": "lcom", "value": 1, "threshold": 0, "exceeded": True}],
        )

    def test_findings_follow_class_then_metric_order(self) -> None:
        rep = report.evaluate(self.per_class, {"wmc": 0, "dit": 0, "noc": 0})
        self.assertEqual(
            [(f.class_name, f.metric) for f in rep.findings],
            [("Zeta", "wmc"), ("Zeta", "noc"), ("Alpha", "wmc"), ("Alpha", "dit")],
        )

    def test_classes_without_findings_stay_in_report(self) -> None:
        rep = report.evaluate(self.per_class)
        self.assertEqual(rep.findings, ())
        self.assertEqual([c.name for c in rep.classes], ["Zeta", "Alpha", "Loop1", "Loop2"])

    def test_errored_metrics_produce_no_findings(self) -> None:
        rep = report.evaluate(self.per_class, {"dit": 0, "noc": 0})
        self.assertEqual(rep.findings_for("Loop1"), [])
        self.assertEqual(rep.class_row("Loop1").errors[0].kind, "CycleError")

    def test_invalid_thresholds_raise_config_error(self) -> None:
        for bad in ({"wmc": -1}, {"speed": 3}, {"rfc": "high"}, ["wmc"]):
            with self.subTest(bad=bad):
                with self.assertRaises(ConfigError):
                    report.evaluate(self.per_class, bad)


class ReportShapeTests(unittest.TestCase):
    def test_to_dict_shape(self) -> None:
        rep = report.analyze(sample_raw(), {"wmc": 2})
        data = rep.to_dict()
        # Must survive a JSON round trip unchanged.
        self.assertEqual(json.loads(json.dumps(data)), data)
        self.assertEqual(set(data), {"classes", "findings", "config", "summary"})
        self.assertEqual(
            data["classes"][0],
            {"name": "Zeta", "wmc": 3, "dit": 0, "noc": 1, "cbo": 0, "rfc": 3, "lcom": 1, "errors": []},
        )
        loop = data["classes"][2]
        self.assertIsNone(loop["dit"])
        self.assertEqual(loop["errors"][0]["kind"], "CycleError")
        self.assertEqual(loop["errors"][0]["metrics"], ["dit", "noc"])
        self.assertEqual(data["findings"], [{"class": "Zeta", "metric": "wmc", "value": 3, "threshold": 2, "exceeded": True}])
        self.assertEqual(data["config"]["thresholds"], {"wmc": 2, "dit": 5, "noc": 7, "cbo": 14, "rfc": 50, "lcom": 1})
        self.assertEqual(data["summary"], {"classes": 4, "findings": 1, "classes_with_errors": 2})

    def test_same_input_same_report(self) -> None:
        a = report.analyze(sample_raw()).to_dict()
        b = report.analyze(sample_raw(), parallel=False).to_dict()
        self.assertEqual(a, b)


class AnalyzeTests(unittest.TestCase):
    def test_config_checked_before_model(self) -> None:
        with self.assertRaises(ConfigError):
            report.analyze({"classes": "broken"}, {"wmc": -5})
        with self.assertRaises(ConfigError):
            report.analyze({"classes": "broken"}, None, {"wmc_weight": "nope"})

    def test_malformed_superclass_does_not_abort_siblings(self) -> None:
        rep = report.analyze({"classes": [{"name": "A", "superclasses": [""]}, {"name": "B", "methods": ["m"]}]})
        data = rep.to_dict()
        self.assertEqual([c["name"] for c in data["classes"]], ["A", "B"])
        a, b = data["classes"]
        self.assertEqual(b["wmc"], 1)
        self.assertEqual(b["errors"], [])
        self.assertEqual(a["dit"], 0)
        self.assertEqual(a["errors"][0]["kind"], "ModelError")
        self.assertEqual(a["errors"][0]["metrics"], [])
        self.assertEqual(data["summary"]["classes_with_errors"], 1)

    def test_model_error_surfaces(self) -> None:
        with self.assertRaises(ModelError):
            report.analyze({"classes": "broken"})


if __name__ == "__main__":
    unittest.main()
