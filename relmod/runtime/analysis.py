"""Reference analysis and visualization for module definitions."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

try:
    import networkx as nx
except ModuleNotFoundError:  # pragma: no cover
    nx = None

try:
    import matplotlib.pyplot as plt
except ModuleNotFoundError:  # pragma: no cover
    plt = None

try:
    import pydot
except ModuleNotFoundError:  # pragma: no cover
    pydot = None

from ..constants import GRAPH_COLORS
from .classifier import DEFAULT_CLASSIFIER
from .core import Namespace, Symbol, Vector
from .registry import ModuleRegistry

_BINDING_FORMS = {"fn", "defn", "defmacro"}


def _param_names(params):
    return {p for p in params if isinstance(p, Symbol) and p != "&"}


def free_symbols(form: Any, bound: frozenset = frozenset()) -> set[Symbol]:
    """Symbols ``form`` refers to that it does not bind itself."""

    if isinstance(form, Symbol):
        return set() if form in bound else {form}
    if isinstance(form, Vector):
        found: set[Symbol] = set()
        for item in form:
            found |= free_symbols(item, bound)
        return found
    if not isinstance(form, list) or not form:
        return set()

    head = form[0]
    if head == "quote":
        return set()
    if head == "let" and len(form) > 1 and isinstance(form[1], Vector):
        found = set()
        inner = set(bound)
        pairs = form[1]
        for name, expr in zip(pairs[::2], pairs[1::2]):
            found |= free_symbols(expr, frozenset(inner))
            if isinstance(name, Symbol):
                inner.add(name)
        for item in form[2:]:
            found |= free_symbols(item, frozenset(inner))
        return found
    if head in _BINDING_FORMS or head == "def":
        rest = list(form[1:])
        inner = set(bound)
        if rest and isinstance(rest[0], Symbol):
            inner.add(rest.pop(0))
        if head != "def":
            if rest and isinstance(rest[0], str) and not isinstance(rest[0], Symbol):
                rest.pop(0)
            if rest and isinstance(rest[0], Vector):
                inner |= _param_names(rest.pop(0))
        found = set()
        for item in rest:
            found |= free_symbols(item, frozenset(inner))
        return found

    found = set()
    for item in form:
        found |= free_symbols(item, bound)
    return found


def definition_references(forms: Iterable[Any], classifier=DEFAULT_CLASSIFIER):
    """Map each defined identifier to the module identifiers its body uses."""

    forms = list(forms)
    defined = {ident for ident in map(classifier, forms) if ident is not None}
    references: dict[Symbol, set[Symbol]] = {}
    for form in forms:
        ident = classifier(form)
        if ident is None:
            continue
        used = free_symbols(form)
        references.setdefault(ident, set()).update(used & defined)
    return references


def forward_references(forms: Iterable[Any], classifier=DEFAULT_CLASSIFIER):
    """List ``(definer, referenced)`` pairs where ``referenced`` is defined later."""

    forms = list(forms)
    position: dict[Symbol, int] = {}
    for idx, form in enumerate(forms):
        ident = classifier(form)
        if ident is not None:
            position.setdefault(ident, idx)

    pairs = []
    for definer, used in definition_references(forms, classifier).items():
        for target in sorted(used):
            if position[target] > position[definer]:
                pairs.append((definer, target))
    return sorted(pairs)


def reference_graph(forms: Iterable[Any], classifier=DEFAULT_CLASSIFIER):
    """Build a directed graph of definitions and the definitions they use."""

    if nx is None:
        raise RuntimeError("Reference graphs require networkx to be installed")

    forms = list(forms)
    graph = nx.DiGraph()
    for idx, form in enumerate(forms):
        ident = classifier(form)
        if ident is not None and ident not in graph:
            graph.add_node(ident, kind=str(form[0]), position=idx)

    forward = set(forward_references(forms, classifier))
    for definer, used in definition_references(forms, classifier).items():
        for target in used:
            graph.add_edge(definer, target, forward=(definer, target) in forward)
    return graph


def export_graphviz(forms, output_path, *, name="module", classifier=DEFAULT_CLASSIFIER):
    """Write the reference graph as Graphviz; ``.dot`` paths get the raw source."""

    if pydot is None:
        raise RuntimeError("Graphviz export requires pydot to be installed")

    graph = reference_graph(forms, classifier)
    dot = pydot.Dot(
        f"relmod_{name}",
        graph_type="digraph",
        rankdir="LR",
        fontname="Helvetica",
        label=str(name),
    )
    for ident, data in graph.nodes(data=True):
        dot.add_node(
            pydot.Node(
                str(ident),
                label=f"{ident}\\n[{data['kind']}]",
                shape="box",
                style="filled",
                fillcolor=GRAPH_COLORS.get(data["kind"], "#B0BEC5"),
                fontname="Helvetica",
            )
        )
    for src, dst, data in graph.edges(data=True):
        if data["forward"]:
            edge = pydot.Edge(
                str(src), str(dst), style="dashed", color=GRAPH_COLORS["forward"]
            )
        else:
            edge = pydot.Edge(str(src), str(dst), color="#34495e")
        dot.add_edge(edge)

    output_path = Path(output_path)
    if output_path.parent and not output_path.parent.exists():
        output_path.parent.mkdir(parents=True, exist_ok=True)

    if output_path.suffix == ".dot":
        output_path.write_text(dot.to_string(), encoding="utf-8")
    else:  # pragma: no cover - needs the graphviz binaries
        dot.write_svg(str(output_path))
    print(f"  ✓ Reference graph exported → {output_path}")
    return output_path


def visualize_graph(forms, *, name="module", classifier=DEFAULT_CLASSIFIER):  # pragma: no cover
    """Draw the reference graph; forward references are dashed."""

    if plt is None:
        raise RuntimeError("Visualization requires networkx and matplotlib to be installed")

    graph = reference_graph(forms, classifier)
    positions = nx.spring_layout(graph, seed=0)
    colors = [
        GRAPH_COLORS.get(data["kind"], "#B0BEC5") for _, data in graph.nodes(data=True)
    ]
    solid = [(u, v) for u, v, d in graph.edges(data=True) if not d["forward"]]
    dashed = [(u, v) for u, v, d in graph.edges(data=True) if d["forward"]]

    plt.figure()
    nx.draw_networkx_nodes(graph, positions, node_color=colors)
    nx.draw_networkx_labels(graph, positions)
    nx.draw_networkx_edges(graph, positions, edgelist=solid)
    if dashed:
        nx.draw_networkx_edges(graph, positions, edgelist=dashed, style="dashed")
    plt.title(f"Definitions of {name}")
    plt.tight_layout()
    plt.show()


def print_namespace(namespace: Namespace, *, include_referred=False):
    print(f"{namespace.name}")
    for sym in sorted(namespace.mappings):
        var = namespace.mappings[sym]
        if var.ns is not namespace and not include_referred:
            continue
        state = "macro" if var.macro else ("bound" if var.is_bound else "unbound")
        origin = "" if var.ns is namespace else f"  (from {var.ns.name})"
        print(f"  {sym}  [{state}]{origin}")


def print_registry(registry: ModuleRegistry):
    names = registry.names()
    if not names:
        print("No modules evaluated yet.")
        return
    for name in names:
        idents = " ".join(sorted(registry.get(name)))
        print(f"  {name}: #{{{idents}}}")


__all__ = [
    "definition_references",
    "export_graphviz",
    "forward_references",
    "free_symbols",
    "print_namespace",
    "print_registry",
    "reference_graph",
    "visualize_graph",
]
