import contextlib
import io
import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from ckmetrics import main as cli  # noqa: E402


# Two methods on disjoint fields plus one touching none: P=3, Q=0.
SCATTERED = {
    "classes": [
        {
            "name": "app.Scattered",
            "fields": ["a", "b"],
            "methods": [
                {"name": "one", "field_accesses": ["a"]},
                {"name": "two", "field_accesses": ["b"]},
                {"name": "three", "calls": [{"target": "app.Helper", "method": "help"}]},
            ],
        },
        {"name": "app.Helper", "methods": ["help"]},
    ]
}


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.entities = self.tmp / "entities.json"
        self.entities.write_text(json.dumps(SCATTERED), encoding="utf-8")
        self.out = self.tmp / "out" / "report.json"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _run(self, *extra: str) -> tuple[int, str, dict]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
            code = cli.main(["--entities", str(self.entities), "--out", str(self.out), *extra])
        return code, stdout.getvalue(), json.loads(self.out.read_text(encoding="utf-8"))

    def test_report_is_written(self) -> None:
        code, stdout, data = self._run()
        self.assertEqual(code, cli.EXIT_OK)
        status = json.loads(stdout.strip().splitlines()[-1])
        self.assertEqual(status["status"], "ok")
        self.assertEqual(status["classes"], 2)
        self.assertEqual(status["findings"], 1)
        self.assertEqual([c["name"] for c in data["classes"]], ["app.Scattered", "app.Helper"])
        self.assertEqual(data["classes"][0]["lcom"], 3)
        self.assertEqual(data["classes"][0]["cbo"], 1)
        self.assertEqual(data["findings"][0]["metric"], "lcom")
        self.assertEqual(data["meta"]["resolution"]["remote"], 1)
        timings = data["meta"]["timings"]
        self.assertEqual(
            [k for k in timings if k.endswith("_sec")],
            ["extract_sec", "build_sec", "resolve_sec", "metrics_sec", "evaluate_sec", "total_wall_sec"],
        )
        self.assertEqual(timings["classes_count"], 2)
        self.assertEqual(timings["methods_count"], 4)
        self.assertEqual(timings["calls_count"], 1)
        self.assertEqual(data["errors"], [])

    def test_fail_on_findings(self) -> None:
        code, _, _ = self._run("--fail-on-findings")
        self.assertEqual(code, cli.EXIT_FINDINGS)
        code, _, data = self._run("--fail-on-findings", "--set", "lcom=3")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertEqual(data["findings"], [])
        self.assertEqual(data["config"]["thresholds"]["lcom"], 3)

    def test_options_flags(self) -> None:
        _, _, data = self._run("--no-external", "--serial", "--wmc-weight", "complexity")
        self.assertEqual(
            data["config"]["options"],
            {"wmc_weight": "complexity", "cbo_include_inheritance": False, "count_external": False},
        )

    def test_invalid_threshold_is_fatal(self) -> None:
        code, _, data = self._run("--set", "lcom=-1")
        self.assertEqual(code, cli.EXIT_FATAL)
        self.assertEqual(data["errors"][0]["kind"], "ConfigError")
        self.assertNotIn("classes", data)

    def test_unknown_weight_is_fatal(self) -> None:
        code, _, data = self._run("--wmc-weight", "cyclomatic")
        self.assertEqual(code, cli.EXIT_FATAL)
        self.assertEqual(data["errors"][0]["kind"], "ConfigError")

    def test_thresholds_file(self) -> None:
        table = self.tmp / "thresholds.md"
        table.write_text("| LCOM | cohesion | 5 |\n", encoding="utf-8")
        code, _, data = self._run("--thresholds", str(table), "--fail-on-findings")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertEqual(data["config"]["thresholds"]["lcom"], 5)

    def test_java_src_without_tree_sitter_is_fatal(self) -> None:
        # A None entry makes the import fail as if the java extra were missing.
        with mock.patch.dict(sys.modules, {"ckmetrics.java_source": None}):
            stdout, stderr = io.StringIO(), io.StringIO()
            with contextlib.redirect_stdout(stdout), contextlib.redirect_stderr(stderr):
                code = cli.main(["--java-src", str(self.tmp), "--out", str(self.out)])
        self.assertEqual(code, cli.EXIT_FATAL)
        data = json.loads(self.out.read_text(encoding="utf-8"))
        self.assertEqual(data["errors"][0]["kind"], "ConfigError")
        self.assertIn("ck-metrics[java]", data["errors"][0]["message"])
        self.assertIn("ck-metrics[java]", stderr.getvalue())

    def test_broken_entities_file_is_fatal(self) -> None:
        self.entities.write_text("{oops", encoding="utf-8")
        code, _, data = self._run()
        self.assertEqual(code, cli.EXIT_FATAL)
        self.assertEqual(data["errors"][0]["kind"], "ModelError")


if __name__ == "__main__":
    unittest.main()
