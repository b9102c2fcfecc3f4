"""Module registry and the reconciliation of re-evaluated modules.

A module is a namespace whose set of definitions is remembered between
evaluations. Evaluating a module:

1. creates (or re-enters) its namespace and refers the base namespace;
2. declares every identifier the forms are about to define, so definitions
   may reference each other regardless of order;
3. folds over the forms, rejecting an identifier defined twice and handing
   each form to the caller's evaluator;
4. unmaps identifiers defined by the previous evaluation but not this one;
5. commits the new identifier set.

Only the registry commit is all-or-nothing. A ``RedefinitionError`` leaves the
placeholders from step 2, and whatever the forms before the failing one bound,
in the live namespace.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import Any, Callable, Iterable, Iterator, Optional

from ..constants import HOME_NAMESPACE
from .classifier import DEFAULT_CLASSIFIER, DefinitionClassifier
from .core import Namespace, NamespaceTable, Symbol


class RedefinitionError(RuntimeError):
    """The same identifier was defined twice within one module evaluation."""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"Redefinition of `{identifier}'")


class ModuleRegistry:
    """Identifier sets committed by each module's last successful evaluation."""

    def __init__(self):
        self._modules: dict[Symbol, frozenset] = {}
        self._locks: dict[Symbol, threading.RLock] = {}
        self._guard = threading.Lock()

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<ModuleRegistry {len(self._modules)} modules>"

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self.names())

    def names(self) -> list[Symbol]:
        with self._guard:
            return sorted(self._modules)

    def get(self, name: str) -> frozenset:
        """Committed identifiers for ``name``; empty when never evaluated."""

        with self._guard:
            return self._modules.get(Symbol(name), frozenset())

    def lock_for(self, name: str) -> threading.RLock:
        """Lock serializing evaluations of the module ``name``."""

        with self._guard:
            return self._locks.setdefault(Symbol(name), threading.RLock())

    def commit(self, name: str, identifiers: Iterable) -> frozenset:
        committed = frozenset(identifiers)
        with self._guard:
            self._modules[Symbol(name)] = committed
        return committed

    def snapshot(self) -> dict[Symbol, frozenset]:
        with self._guard:
            return dict(self._modules)


@dataclass
class ModuleEvaluation:
    """Outcome of one successful module evaluation."""

    name: Symbol
    namespace: Namespace
    home: Namespace
    previous: frozenset
    definitions: frozenset
    removed: frozenset
    forms: list = field(default_factory=list)
    values: list = field(default_factory=list)
    log: list[str] = field(default_factory=list)

    @property
    def added(self) -> frozenset:
        return self.definitions - self.previous


def predeclare(
    namespace: Namespace, forms: Iterable[Any], classifier: DefinitionClassifier
) -> list:
    """Declare every identifier ``forms`` define, duplicates included."""

    declared = [ident for ident in map(classifier, forms) if ident is not None]
    for ident in declared:
        namespace.declare(ident)
    return declared


def collect_definition(
    identifiers: frozenset, form: Any, classifier: DefinitionClassifier
) -> frozenset:
    """One step of the reconciliation fold."""

    ident = classifier(form)
    if ident is None:
        return identifiers
    if ident in identifiers:
        raise RedefinitionError(ident)
    return identifiers | {ident}


def collect_definitions(
    forms: Iterable[Any], classifier: DefinitionClassifier = DEFAULT_CLASSIFIER
) -> frozenset:
    identifiers: frozenset = frozenset()
    for form in forms:
        identifiers = collect_definition(identifiers, form, classifier)
    return identifiers


def retract(
    namespace: Namespace,
    previous: Iterable,
    current: Iterable,
    emit: Callable[[str], None],
) -> frozenset:
    """Unmap identifiers present in ``previous`` but not in ``current``."""

    removed = frozenset(previous) - frozenset(current)
    for ident in sorted(removed, key=str):
        emit(f"Unmapping disappeared definition {ident}")
        namespace.unmap(ident)
    return removed


def evaluate_module(
    registry: ModuleRegistry,
    namespaces: NamespaceTable,
    name: str,
    base: "str | Namespace",
    forms: Iterable[Any],
    *,
    evaluate: Optional[Callable[[Any, Namespace], Any]] = None,
    home: Optional[Namespace] = None,
    classifier: Optional[DefinitionClassifier] = None,
    trace: Optional[Callable[[str], None]] = None,
) -> ModuleEvaluation:
    """Evaluate ``forms`` as the module ``name`` and reconcile its definitions.

    ``evaluate(form, namespace)`` is called for each form in order; it is what
    binds the declared identifiers. Without it only the registry and the
    namespace's declarations are maintained. Raises ``RedefinitionError`` when
    an identifier is defined twice, before any form is evaluated; the registry
    is then left untouched.

    Identifiers dropped since the last evaluation are unmapped before the forms
    run, so nothing in them can resolve a retracted definition.
    """

    name = Symbol(name)
    forms = list(forms)
    classifier = classifier or DEFAULT_CLASSIFIER
    log: list[str] = []

    def emit(message: str) -> None:
        log.append(message)
        if trace is not None:
            trace(message)

    with registry.lock_for(name):
        emit(f"Expanding module {name}")
        base_ns = namespaces.require(base)
        namespace = namespaces.find_or_create(name)
        namespace.refer(base_ns)
        if home is None:
            home = namespaces.find_or_create(HOME_NAMESPACE)

        declared = predeclare(namespace, forms, classifier)
        if declared:
            emit("Declared " + " ".join(str(ident) for ident in declared))

        definitions = collect_definitions(forms, classifier)
        previous = registry.get(name)
        removed = retract(namespace, previous, definitions, emit)

        values = []
        if evaluate is not None:
            for form in forms:
                values.append(evaluate(form, namespace))

        registry.commit(name, definitions)
        emit(f"Committed {name}: {len(definitions)} definitions")

    emit(f"Returning to {home.name}")
    return ModuleEvaluation(
        name=name,
        namespace=namespace,
        home=home,
        previous=previous,
        definitions=definitions,
        removed=removed,
        forms=forms,
        values=values,
        log=log,
    )


def expand_module(
    name: str,
    base: str,
    forms: Iterable[Any],
    *,
    classifier: Optional[DefinitionClassifier] = None,
    home: str = HOME_NAMESPACE,
) -> list:
    """Return the form a module evaluation is equivalent to, for display."""

    classifier = classifier or DEFAULT_CLASSIFIER
    forms = list(forms)
    quote = Symbol("quote")
    declared = [ident for ident in map(classifier, forms) if ident is not None]
    return [
        Symbol("do"),
        [Symbol("in-ns"), [quote, Symbol(name)]],
        [Symbol("refer"), [quote, Symbol(base)]],
        [Symbol("declare"), *declared],
        [Symbol("reconcile-module"), [quote, Symbol(name)], [quote, forms]],
        *forms,
        [Symbol("in-ns"), [quote, Symbol(home)]],
    ]


__all__ = [
    "ModuleEvaluation",
    "ModuleRegistry",
    "RedefinitionError",
    "collect_definition",
    "collect_definitions",
    "evaluate_module",
    "expand_module",
    "predeclare",
    "retract",
]
