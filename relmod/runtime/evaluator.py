"""Form evaluation and the session that owns modules."""

from __future__ import annotations

import functools
import operator
from pathlib import Path
from typing import Any, Callable, Optional

from ..constants import CORE_NAMESPACE, HOME_NAMESPACE, MODULE_FORM
from .classifier import DefinitionClassifier
from .core import Namespace, NamespaceTable, Symbol, Var, Vector
from .reader import format_form, read_forms
from .registry import ModuleEvaluation, ModuleRegistry, evaluate_module

REST_MARKER = Symbol("&")

CORE_PRELUDE = """
(defmacro when [test & body]
  (list 'if test (cons 'do body) nil))

(defmacro unless [test & body]
  (list 'if test nil (cons 'do body)))

(defn identity [x] x)
"""


class Procedure:
    """A closure created by ``fn``, ``defn`` or ``defmacro``."""

    def __init__(
        self, evaluator, name, params, body, namespace, local=None, *, self_bound=False
    ):
        self.evaluator = evaluator
        self.name = name
        self.self_bound = self_bound
        self.params, self.rest = _parse_params(params)
        self.body = list(body)
        self.namespace = namespace
        self.local = dict(local or {})

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        label = self.name or "fn"
        return f"<Procedure {self.namespace.name}/{label}>"

    def __call__(self, *args):
        if len(args) < len(self.params) or (
            self.rest is None and len(args) != len(self.params)
        ):
            raise TypeError(
                f"{self.name or 'fn'} expects {len(self.params)} argument(s), got {len(args)}"
            )
        frame = dict(self.local)
        frame.update(zip(self.params, args))
        if self.rest is not None:
            frame[self.rest] = list(args[len(self.params):])
        if self.self_bound:
            frame.setdefault(self.name, self)
        return self.evaluator.evaluate_body(self.body, self.namespace, frame)


def _parse_params(params):
    if not isinstance(params, Vector):
        raise ValueError(f"Parameter list must be a vector, got {format_form(params)}")
    names = list(params)
    rest = None
    if REST_MARKER in names:
        idx = names.index(REST_MARKER)
        if idx != len(names) - 2:
            raise ValueError("`&' must be followed by exactly one parameter")
        rest = names[idx + 1]
        names = names[:idx]
    for name in names + ([rest] if rest is not None else []):
        if not isinstance(name, Symbol):
            raise ValueError(f"Parameter names must be symbols, got {format_form(name)}")
    return names, rest


def _truthy(value) -> bool:
    return value is not None and value is not False


def _display(value) -> str:
    if isinstance(value, str) and not isinstance(value, Symbol):
        return value
    return format_form(value)


class Evaluator:
    """Evaluates forms against explicit namespace handles."""

    def __init__(self, namespaces: NamespaceTable):
        self.namespaces = namespaces
        self.special_forms: dict[Symbol, Callable] = {
            Symbol("quote"): self._eval_quote,
            Symbol("if"): self._eval_if,
            Symbol("do"): self._eval_do,
            Symbol("let"): self._eval_let,
            Symbol("fn"): self._eval_fn,
            Symbol("def"): self._eval_def,
            Symbol("defn"): self._eval_defn,
            Symbol("defmacro"): self._eval_defmacro,
        }

    def resolve_var(self, sym: Symbol, namespace: Namespace) -> Var:
        if sym.namespace is not None:
            return self.namespaces.require(sym.namespace).resolve(sym.name)
        return namespace.resolve(sym)

    def evaluate(self, form: Any, namespace: Namespace, local: Optional[dict] = None) -> Any:
        local = local if local is not None else {}
        if isinstance(form, Symbol):
            if form in local:
                return local[form]
            return self.resolve_var(form, namespace).deref()
        if isinstance(form, Vector):
            return Vector(self.evaluate(item, namespace, local) for item in form)
        if not isinstance(form, list):
            return form
        if not form:
            return []

        head = form[0]
        if isinstance(head, Symbol) and head not in local:
            special = self.special_forms.get(head)
            if special is not None:
                return special(form, namespace, local)
            var = self.resolve_var(head, namespace)
            if var.macro:
                expansion = var.deref()(*form[1:])
                return self.evaluate(expansion, namespace, local)

        fn = self.evaluate(head, namespace, local)
        args = [self.evaluate(arg, namespace, local) for arg in form[1:]]
        if not callable(fn):
            raise TypeError(f"{format_form(head)} is not callable")
        return fn(*args)

    def evaluate_body(self, body, namespace, local):
        result = None
        for form in body:
            result = self.evaluate(form, namespace, local)
        return result

    def _eval_quote(self, form, namespace, local):
        if len(form) != 2:
            raise ValueError("quote expects exactly one form")
        return form[1]

    def _eval_if(self, form, namespace, local):
        if len(form) not in (3, 4):
            raise ValueError("if expects a test, a then branch and an optional else")
        if _truthy(self.evaluate(form[1], namespace, local)):
            return self.evaluate(form[2], namespace, local)
        if len(form) == 4:
            return self.evaluate(form[3], namespace, local)
        return None

    def _eval_do(self, form, namespace, local):
        return self.evaluate_body(form[1:], namespace, local)

    def _eval_let(self, form, namespace, local):
        if len(form) < 2 or not isinstance(form[1], Vector) or len(form[1]) % 2:
            raise ValueError("let expects a vector of name/value pairs")
        frame = dict(local)
        bindings = form[1]
        for name, expr in zip(bindings[::2], bindings[1::2]):
            if not isinstance(name, Symbol):
                raise ValueError(f"let binding names must be symbols, got {format_form(name)}")
            frame[name] = self.evaluate(expr, namespace, frame)
        return self.evaluate_body(form[2:], namespace, frame)

    def _eval_fn(self, form, namespace, local):
        rest = form[1:]
        name = None
        if rest and isinstance(rest[0], Symbol):
            name, rest = rest[0], rest[1:]
        if not rest:
            raise ValueError("fn expects a parameter vector")
        return Procedure(
            self, name, rest[0], rest[1:], namespace, local, self_bound=name is not None
        )

    def _definition_name(self, form):
        if len(form) < 2 or not isinstance(form[1], Symbol):
            raise ValueError(f"{form[0]} expects a symbol name, got {format_form(form)}")
        if form[1].namespace is not None:
            raise ValueError(f"Cannot define qualified symbol {form[1]}")
        return form[1]

    def _eval_def(self, form, namespace, local):
        name = self._definition_name(form)
        if len(form) > 3:
            raise ValueError(f"def {name} expects at most one value")
        if len(form) == 2:
            return namespace.declare(name)
        return namespace.intern(name, self.evaluate(form[2], namespace, local))

    def _procedure_parts(self, form):
        name = self._definition_name(form)
        rest = form[2:]
        if rest and isinstance(rest[0], str) and not isinstance(rest[0], Symbol):
            rest = rest[1:]
        if not rest:
            raise ValueError(f"{form[0]} {name} expects a parameter vector")
        return name, rest[0], rest[1:]

    def _eval_defn(self, form, namespace, local):
        name, params, body = self._procedure_parts(form)
        return namespace.intern(name, Procedure(self, name, params, body, namespace, local))

    def _eval_defmacro(self, form, namespace, local):
        name, params, body = self._procedure_parts(form)
        proc = Procedure(self, name, params, body, namespace, local)
        return namespace.intern(name, proc, macro=True)


def _core_builtins() -> dict[str, Any]:
    def _compare(op):
        def compare(*args):
            return all(op(a, b) for a, b in zip(args, args[1:]))

        return compare

    def _subtract(first, *rest):
        return -first if not rest else functools.reduce(operator.sub, rest, first)

    def _divide(first, *rest):
        return functools.reduce(operator.truediv, rest, first) if rest else 1 / first

    def _println(*args):
        print(" ".join(_display(a) for a in args))

    return {
        "+": lambda *args: sum(args),
        "-": _subtract,
        "*": lambda *args: functools.reduce(operator.mul, args, 1),
        "/": _divide,
        "=": _compare(operator.eq),
        "<": _compare(operator.lt),
        ">": _compare(operator.gt),
        "<=": _compare(operator.le),
        ">=": _compare(operator.ge),
        "not": lambda x: not _truthy(x),
        "nil?": lambda x: x is None,
        "inc": lambda x: x + 1,
        "dec": lambda x: x - 1,
        "list": lambda *args: list(args),
        "vector": lambda *args: Vector(args),
        "cons": lambda x, seq: [x, *(seq or [])],
        "concat": lambda *seqs: [item for seq in seqs for item in (seq or [])],
        "first": lambda seq: seq[0] if seq else None,
        "rest": lambda seq: list(seq[1:]) if seq else [],
        "count": lambda seq: 0 if seq is None else len(seq),
        "apply": lambda fn, *args: fn(*args[:-1], *(args[-1] if args else [])),
        "str": lambda *args: "".join("" if a is None else _display(a) for a in args),
        "symbol": lambda name: Symbol(name),
        "println": _println,
    }


def create_core_namespace(
    namespaces: NamespaceTable, evaluator: Evaluator, name: str = CORE_NAMESPACE
) -> Namespace:
    """Create the base namespace holding builtins and the prelude."""

    core = namespaces.find_or_create(name)
    for sym, value in _core_builtins().items():
        core.intern(sym, value)
    for form in read_forms(CORE_PRELUDE):
        evaluator.evaluate(form, core)
    return core


class Session:
    """A build/session context: one registry, one set of namespaces."""

    def __init__(
        self,
        *,
        registry: Optional[ModuleRegistry] = None,
        namespaces: Optional[NamespaceTable] = None,
        classifier: Optional[DefinitionClassifier] = None,
        trace: Optional[Callable[[str], None]] = None,
        core: str = CORE_NAMESPACE,
        home: str = HOME_NAMESPACE,
    ):
        self.registry = registry if registry is not None else ModuleRegistry()
        self.namespaces = namespaces if namespaces is not None else NamespaceTable()
        self.classifier = classifier or DefinitionClassifier()
        self.trace = trace
        self.evaluator = Evaluator(self.namespaces)
        self.evaluator.special_forms[Symbol(MODULE_FORM)] = self._eval_module
        self.core = self.namespaces.find(core) or create_core_namespace(
            self.namespaces, self.evaluator, core
        )
        self.home = self.namespaces.find_or_create(home)
        self.home.refer(self.core)
        self.evaluations: list[ModuleEvaluation] = []

    @property
    def last_evaluation(self) -> Optional[ModuleEvaluation]:
        return self.evaluations[-1] if self.evaluations else None

    def evaluate_module(self, name, base, forms) -> ModuleEvaluation:
        evaluation = evaluate_module(
            self.registry,
            self.namespaces,
            name,
            base,
            forms,
            evaluate=self.evaluator.evaluate,
            home=self.home,
            classifier=self.classifier,
            trace=self.trace,
        )
        self.evaluations.append(evaluation)
        return evaluation

    def _eval_module(self, form, namespace, local):
        if len(form) < 3 or not isinstance(form[1], Symbol) or not isinstance(form[2], Symbol):
            raise ValueError("module expects a name symbol and a base namespace symbol")
        self.evaluate_module(form[1], form[2], form[3:])
        return None

    def evaluate(self, form: Any) -> Any:
        return self.evaluator.evaluate(form, self.home)

    def eval_string(self, text: str) -> list[Any]:
        """Evaluate every form in ``text`` in the home namespace."""

        return [self.evaluate(form) for form in read_forms(text)]

    def load_file(self, path) -> list[Any]:
        return self.eval_string(Path(path).read_text(encoding="utf-8"))

    def publics(self, name: str) -> dict[Symbol, Var]:
        return self.namespaces.require(name).publics()

    def lookup(self, name: str, identifier: str) -> Any:
        return self.namespaces.require(name).lookup(identifier)


__all__ = [
    "CORE_PRELUDE",
    "Evaluator",
    "Procedure",
    "Session",
    "create_core_namespace",
]
