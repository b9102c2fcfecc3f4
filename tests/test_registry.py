"""Tests for module reconciliation in ``relmod.runtime.registry``."""

import sys
import threading
import time
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from relmod.runtime.core import NamespaceTable  # noqa: E402
from relmod.runtime.reader import format_form, read_forms  # noqa: E402
from relmod.runtime.registry import (  # noqa: E402
    ModuleRegistry,
    RedefinitionError,
    collect_definitions,
    evaluate_module,
    expand_module,
)

FULL_MODULE = "(def x 10) (def y 20) (def z 42) (defn g [] (f)) (defn f [] 42)"


@pytest.fixture
def registry():
    return ModuleRegistry()


@pytest.fixture
def namespaces():
    table = NamespaceTable()
    table.find_or_create("core").intern("+", lambda *args: sum(args))
    return table


def test_first_evaluation_registers_and_declares(registry, namespaces):
    assert registry.get("M") == frozenset()
    assert "M" not in registry

    result = evaluate_module(registry, namespaces, "M", "core", read_forms(FULL_MODULE))

    assert result.definitions == {"x", "y", "z", "g", "f"}
    assert result.previous == frozenset()
    assert result.removed == frozenset()
    assert registry.get("M") == {"x", "y", "z", "g", "f"}
    assert registry.names() == ["M"]
    ns = namespaces.find("M")
    assert result.namespace is ns
    assert set(ns.publics()) == {"x", "y", "z", "g", "f"}
    assert not ns.resolve("g").is_bound
    assert ns.resolve("+") is namespaces.find("core").resolve("+")


def test_reevaluating_unchanged_forms_is_idempotent(registry, namespaces):
    forms = read_forms(FULL_MODULE)
    first = evaluate_module(registry, namespaces, "M", "core", forms)
    second = evaluate_module(registry, namespaces, "M", "core", forms)

    assert second.definitions == first.definitions
    assert second.previous == first.definitions
    assert second.removed == frozenset()
    assert second.added == frozenset()
    assert registry.get("M") == first.definitions


def test_duplicate_definition_fails_and_leaves_registry_absent(registry, namespaces):
    with pytest.raises(RedefinitionError) as excinfo:
        evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 10) (def x 20)"))

    assert excinfo.value.identifier == "x"
    assert str(excinfo.value) == "Redefinition of `x'"
    assert "M" not in registry


def test_duplicate_definition_leaves_previous_entry_unchanged(registry, namespaces):
    evaluate_module(registry, namespaces, "M", "core", read_forms("(def a 1) (def b 2)"))

    with pytest.raises(RedefinitionError):
        evaluate_module(
            registry, namespaces, "M", "core", read_forms("(def c 3) (def c 4)")
        )

    assert registry.get("M") == {"a", "b"}
    # placeholders from the failed attempt stay in the namespace
    assert "c" in namespaces.find("M")


def test_redefinition_is_detected_before_any_form_is_evaluated(registry, namespaces):
    seen = []

    def evaluate(form, ns):
        seen.append(format_form(form))

    with pytest.raises(RedefinitionError):
        evaluate_module(
            registry,
            namespaces,
            "M",
            "core",
            read_forms("(def a 1) (def x 1) (println a) (def x 2) (def b 3)"),
            evaluate=evaluate,
        )

    assert seen == []
    ns = namespaces.find("M")
    assert {"a", "x", "b"} <= set(ns.publics())
    assert not ns.resolve("a").is_bound


def test_retraction_happens_before_forms_are_evaluated(registry, namespaces):
    evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 1) (def z 2)"))
    visible = []

    def evaluate(form, ns):
        visible.append("z" in ns)

    result = evaluate_module(
        registry, namespaces, "M", "core", read_forms("(def x 1) (def w 3)"), evaluate=evaluate
    )

    assert visible == [False, False]
    assert result.removed == {"z"}
    assert registry.get("M") == {"x", "w"}


def test_failing_form_after_retraction_leaves_registry_untouched(registry, namespaces):
    evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 1) (def z 2)"))

    def evaluate(form, ns):
        if form[1] == "w":
            ns.resolve("z")

    with pytest.raises(KeyError):
        evaluate_module(
            registry, namespaces, "M", "core", read_forms("(def x 1) (def w z)"), evaluate=evaluate
        )

    assert registry.get("M") == {"x", "z"}
    assert "z" not in namespaces.find("M")


def test_removed_definition_is_unmapped(registry, namespaces):
    evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 1) (def y 2) (def z 3)"))

    result = evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 1) (def y 2)"))

    assert result.removed == {"z"}
    assert registry.get("M") == {"x", "y"}
    with pytest.raises(KeyError):
        namespaces.find("M").resolve("z")
    assert "Unmapping disappeared definition z" in result.log


def test_retraction_is_a_set_difference(registry, namespaces):
    evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 1) (def y 2)"))

    result = evaluate_module(registry, namespaces, "M", "core", read_forms("(def y 2) (def w 3)"))

    assert result.removed == {"x"}
    assert result.added == {"w"}
    ns = namespaces.find("M")
    assert "y" in ns and "w" in ns
    assert "x" not in ns


def test_forms_without_definitions_are_evaluated_but_not_recorded(registry, namespaces):
    seen = []
    result = evaluate_module(
        registry,
        namespaces,
        "M",
        "core",
        read_forms("(println 1) (def x 1)"),
        evaluate=lambda form, ns: seen.append(ns.name) or len(seen),
    )

    assert result.definitions == {"x"}
    assert result.values == [1, 2]
    assert seen == ["M", "M"]


def test_unknown_base_propagates_without_touching_state(registry, namespaces):
    with pytest.raises(KeyError):
        evaluate_module(registry, namespaces, "M", "nowhere", read_forms("(def x 1)"))

    assert "M" not in registry
    assert namespaces.find("M") is None


def test_trace_sink_and_home_handle(registry, namespaces):
    messages = []
    home = namespaces.find_or_create("workbench")

    result = evaluate_module(
        registry,
        namespaces,
        "M",
        "core",
        read_forms("(def x 1)"),
        home=home,
        trace=messages.append,
    )

    assert result.home is home
    assert messages == result.log
    assert messages[0] == "Expanding module M"
    assert messages[-1] == "Returning to workbench"


def test_default_home_is_the_user_namespace(registry, namespaces):
    result = evaluate_module(registry, namespaces, "M", "core", [])

    assert result.home is namespaces.find("user")
    assert registry.get("M") == frozenset()
    assert "M" in registry


def test_collect_definitions_folds_and_rejects_duplicates():
    assert collect_definitions(read_forms("(def a 1) (f) (defn b [] a)")) == {"a", "b"}
    with pytest.raises(RedefinitionError):
        collect_definitions(read_forms("(defn a [] 1) (defmacro a [] 2)"))


def test_lock_for_is_per_module(registry):
    assert registry.lock_for("M") is registry.lock_for("M")
    assert registry.lock_for("M") is not registry.lock_for("N")


def test_concurrent_evaluations_of_one_module_stay_consistent(registry, namespaces):
    variants = [read_forms("(def x 1) (def y 2)"), read_forms("(def x 1) (def z 3)")]

    def slow(form, ns):
        time.sleep(0.001)

    def worker(idx):
        evaluate_module(registry, namespaces, "M", "core", variants[idx % 2], evaluate=slow)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    committed = registry.get("M")
    assert committed in ({"x", "y"}, {"x", "z"})
    assert set(namespaces.find("M").publics()) == committed


def test_snapshot_is_a_copy(registry, namespaces):
    evaluate_module(registry, namespaces, "M", "core", read_forms("(def x 1)"))

    snapshot = registry.snapshot()
    snapshot["M"] = frozenset({"bogus"})

    assert registry.get("M") == {"x"}
    assert len(registry) == 1
    assert list(registry) == ["M"]


def test_expand_module_shows_the_evaluation_steps():
    forms = read_forms("(def x 10) (defn g [] (f)) (defn f [] 42)")

    expansion = expand_module("M", "core", forms)

    assert format_form(expansion) == (
        "(do (in-ns (quote M)) (refer (quote core)) (declare x g f) "
        "(reconcile-module (quote M) (quote ((def x 10) (defn g [] (f)) (defn f [] 42)))) "
        "(def x 10) (defn g [] (f)) (defn f [] 42) (in-ns (quote user)))"
    )
