import dataclasses
import sys
import unittest
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from ckmetrics import model  # noqa: E402
from ckmetrics.errors import CycleError, ModelError, NotFoundError  # noqa: E402


def _chain_raw() -> dict:
    return {
        "classes": [
            {"name": "Level5Manager", "superclasses": ["Manager"]},
            {"name": "Entity"},
            {"name": "Person", "superclasses": ["Entity"]},
            {"name": "Employee", "superclasses": ["Person"]},
            {"name": "Manager", "superclasses": ["Employee"]},
        ]
    }


class BuildModelTests(unittest.TestCase):
    def test_classes_keep_input_order(self) -> None:
        m = model.build_model(_chain_raw())
        self.assertEqual(
            m.class_names(),
            ["Level5Manager", "Entity", "Person", "Employee", "Manager"],
        )
        self.assertEqual([c.name for c in m.classes()], m.class_names())

    def test_get_class_unknown_raises_not_found(self) -> None:
        m = model.build_model(_chain_raw())
        with self.assertRaises(NotFoundError):
            m.get_class("Nope")
        self.assertIsNone(m.find_class("Nope"))

    def test_shorthand_members(self) -> None:
        m = model.build_model(
            {
                "classes": [
                    {
                        "name": "a.Box",
                        "fields": ["size", {"name": "label", "type": "String"}],
                        "methods": [
                            "open",
                            {"name": "resize", "signature": "int", "field_accesses": ["size"], "calls": ["open"]},
                        ],
                    }
                ]
            }
        )
        box = m.get_class("a.Box")
        self.assertEqual([f.id for f in box.fields], ["a.Box.size", "a.Box.label"])
        self.assertEqual([mm.id for mm in box.methods], ["a.Box#open()", "a.Box#resize(int)"])
        resize = box.find_method("resize")
        self.assertEqual(resize.calls, (model.CallRecord(method="open"),))
        self.assertEqual(resize.field_accesses, (model.FieldAccessRecord(field="size"),))

    def test_subclasses_are_derived(self) -> None:
        m = model.build_model(_chain_raw())
        self.assertEqual(m.get_class("Entity").subclasses, ("Person",))
        self.assertEqual(m.get_class("Level5Manager").subclasses, ())
        self.assertEqual(m.graph.roots, ("Entity",))

    def test_unusable_input_raises_model_error(self) -> None:
        bad_inputs = [
            [],
            {"classes": "x"},
            {"classes": [{"methods": []}]},
            {"classes": [{"name": "  "}]},
            {"classes": ["A"]},
        ]
        for raw in bad_inputs:
            with self.subTest(raw=raw):
                with self.assertRaises(ModelError):
                    model.build_model(raw)

    def test_malformed_pieces_stay_with_their_class(self) -> None:
        m = model.build_model(
            {
                "classes": [
                    {
                        "name": "A",
                        "superclasses": ["", 7, "B"],
                        "fields": ["x", 3],
                        "methods": [
                            {"name": "m", "complexity": "high", "calls": [{"target": "B"}, "n"]},
                            {"oops": 1},
                        ],
                    },
                    {"name": "B", "methods": ["n"]},
                    {"name": "A", "methods": ["late"]},
                ]
            }
        )
        self.assertEqual(m.class_names(), ["A", "B"])
        a = m.get_class("A")
        self.assertEqual(m.graph.parents["A"], ("B",))
        self.assertEqual([f.name for f in a.fields], ["x"])
        self.assertEqual([mm.id for mm in a.methods], ["A#m()"])
        self.assertEqual(a.methods[0].complexity, 1)
        self.assertEqual(a.methods[0].calls, (model.CallRecord(method="n"),))
        issues = m.issues["A"]
        self.assertEqual(len(issues), 7)
        self.assertEqual({e.kind for e in issues}, {"ModelError"})
        self.assertTrue(any("duplicate class" in e.message for e in issues))
        self.assertNotIn("B", m.issues)

    def test_non_list_superclasses_are_dropped(self) -> None:
        m = model.build_model({"classes": [{"name": "A", "superclasses": "B"}, {"name": "B"}]})
        self.assertEqual(m.graph.parents["A"], ())
        self.assertEqual(m.graph.depth("A"), 0)
        self.assertEqual([e.kind for e in m.issues["A"]], ["ModelError"])

    def test_duplicate_member_becomes_class_issue(self) -> None:
        m = model.build_model(
            {"classes": [{"name": "A", "fields": ["x", "x"], "methods": ["m", "m"]}, {"name": "B"}]}
        )
        self.assertEqual(len(m.get_class("A").methods), 1)
        self.assertEqual(len(m.get_class("A").fields), 1)
        kinds = [e.kind for e in m.issues["A"]]
        self.assertEqual(kinds, ["ModelError", "ModelError"])
        self.assertNotIn("B", m.issues)

    def test_model_is_frozen_after_build(self) -> None:
        builder = model.ModelBuilder()
        builder.add_class("A")
        m = builder.build()
        with self.assertRaises(ModelError):
            builder.add_class("B")
        with self.assertRaises(TypeError):
            m.classes_by_name["B"] = model.ClassEntity(name="B")
        with self.assertRaises(dataclasses.FrozenInstanceError):
            m.get_class("A").name = "Z"

    def test_builder_records_blank_superclass(self) -> None:
        builder = model.ModelBuilder()
        builder.add_class("A", superclasses=["", "Base"])
        m = builder.build()
        self.assertEqual(m.graph.external_parents["A"], ("Base",))
        self.assertEqual([e.kind for e in m.issues["A"]], ["ModelError"])

    def test_builder_rejects_members_of_unknown_class(self) -> None:
        builder = model.ModelBuilder()
        with self.assertRaises(NotFoundError):
            builder.add_method("Ghost", "m")


class InheritanceGraphTests(unittest.TestCase):
    def test_depths_count_edges(self) -> None:
        m = model.build_model(_chain_raw())
        depths = {n: m.graph.depth(n) for n in m.class_names()}
        self.assertEqual(
            depths,
            {"Entity": 0, "Person": 1, "Employee": 2, "Manager": 3, "Level5Manager": 4},
        )

    def test_multiple_inheritance_takes_longest_path(self) -> None:
        m = model.build_model(
            {
                "classes": [
                    {"name": "D", "superclasses": ["B", "C"]},
                    {"name": "B", "superclasses": ["A"]},
                    {"name": "A"},
                    {"name": "C"},
                ]
            }
        )
        self.assertEqual(m.graph.depth("D"), 2)
        self.assertEqual(m.graph.ancestors("D"), ["B", "C", "A"])

    def test_external_parent_counts_one_edge(self) -> None:
        m = model.build_model({"classes": [{"name": "X", "superclasses": ["java.io.Serializable"]}]})
        self.assertEqual(m.graph.external_parents["X"], ("java.io.Serializable",))
        self.assertEqual(m.graph.depth("X"), 1)
        self.assertEqual(m.graph.roots, ())

    def test_unqualified_superclass_resolves_in_package(self) -> None:
        m = model.build_model(
            {"classes": [{"name": "zoo.Animal"}, {"name": "zoo.Cat", "superclasses": ["Animal"]}]}
        )
        self.assertEqual(m.graph.parents["zoo.Cat"], ("zoo.Animal",))
        self.assertEqual(m.get_class("zoo.Animal").subclasses, ("zoo.Cat",))

    def test_two_class_cycle_is_detected_for_both(self) -> None:
        m = model.build_model(
            {
                "classes": [
                    {"name": "A", "superclasses": ["B"]},
                    {"name": "B", "superclasses": ["A"]},
                    {"name": "C", "superclasses": ["A"]},
                    {"name": "D"},
                ]
            }
        )
        self.assertEqual(m.graph.cycle_members, frozenset({"A", "B"}))
        for name in ("A", "B", "C"):
            with self.subTest(name=name):
                with self.assertRaises(CycleError):
                    m.graph.depth(name)
                self.assertEqual([e.kind for e in m.issues[name]], ["CycleError"])
        self.assertEqual(m.graph.depth("D"), 0)
        self.assertIn("A -> B -> A", m.graph.cycle_error("A").message)

    def test_self_inheritance_is_a_cycle(self) -> None:
        m = model.build_model({"classes": [{"name": "Loop", "superclasses": ["Loop"]}]})
        self.assertTrue(m.graph.in_cycle("Loop"))
        self.assertEqual(m.graph.cycles["Loop"], ("Loop",))


class TypeNamesTests(unittest.TestCase):
    def test_generic_and_array_types(self) -> None:
        self.assertEqual(model.type_names("Map<String, List<User>>[]"), ["Map", "String", "List", "User"])
        self.assertEqual(model.type_names("int"), [])
        self.assertEqual(model.type_names(""), [])
        self.assertEqual(model.type_names("java.util.List<? extends a.B>"), ["java.util.List", "a.B"])


if __name__ == "__main__":
    unittest.main()
