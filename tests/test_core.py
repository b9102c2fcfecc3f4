import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from relmod import Namespace, NamespaceTable, Symbol, Var  # noqa: E402


def test_declare_creates_unbound_placeholder():
    ns = Namespace("M")
    var = ns.declare("x")

    assert isinstance(var, Var)
    assert var.ns is ns
    assert not var.is_bound
    assert repr(var.value) == "<unbound:M/x>"
    with pytest.raises(RuntimeError) as excinfo:
        ns.lookup("x")
    assert "declared but unbound" in str(excinfo.value)


def test_declare_keeps_existing_own_var_and_its_value():
    ns = Namespace("M")
    first = ns.intern("x", 10)

    again = ns.declare("x")

    assert again is first
    assert ns.lookup("x") == 10
    assert ns.intern("x", 20) is first
    assert ns.lookup("x") == 20


def test_refer_maps_only_public_vars_and_own_definitions_win():
    core = Namespace("core")
    core.intern("inc", lambda v: v + 1)
    core.intern("x", "core-x")
    other = Namespace("other")
    other.refer(core)
    ns = Namespace("M")
    ns.intern("x", "own-x")

    mapped = ns.refer(core)
    ns.refer(other)

    assert mapped == 1
    assert ns.lookup("x") == "own-x"
    assert ns.resolve("inc") is core.resolve("inc")
    assert set(ns.publics()) == {"x"}
    assert set(other.publics()) == set()
    assert ns.referred == [core, other]


def test_declare_shadows_a_referred_var():
    core = Namespace("core")
    core.intern("inc", "core-inc")
    ns = Namespace("M")
    ns.refer(core)

    var = ns.declare("inc")

    assert var.ns is ns
    assert not var.is_bound
    assert core.lookup("inc") == "core-inc"


def test_unmap_and_resolve():
    ns = Namespace("M")
    var = ns.intern("z", 42)

    assert ns.unmap("z") is var
    assert ns.unmap("z") is None
    assert "z" not in ns
    with pytest.raises(KeyError) as excinfo:
        ns.resolve("z")
    assert "Unable to resolve symbol z" in str(excinfo.value)


def test_namespace_table_find_or_create_and_require():
    table = NamespaceTable()
    ns = table.find_or_create("M")

    assert table.find_or_create("M") is ns
    assert table.find("M") is ns
    assert table.require("M") is ns
    assert table.require(ns) is ns
    assert table.find("missing") is None
    with pytest.raises(KeyError):
        table.require("missing")

    table.find_or_create("A")
    assert table.names() == ["A", "M"]
    assert table.remove("A").name == "A"
    assert "A" not in table


def test_symbol_qualification():
    assert Symbol("core/+").namespace == "core"
    assert Symbol("core/+").name == "+"
    assert Symbol("/").namespace is None
    assert Symbol("x").name == "x"
    assert Symbol("x") == "x"
