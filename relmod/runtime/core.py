"""Core namespace and binding structures for relmod."""

from __future__ import annotations

import threading
from typing import Any, Iterable, Optional


class Symbol(str):
    """An identifier read from source. Compares equal to the plain string."""

    __slots__ = ()

    @property
    def namespace(self) -> Optional[str]:
        if "/" in self and len(self) > 1:
            return self.split("/", 1)[0]
        return None

    @property
    def name(self) -> str:
        if "/" in self and len(self) > 1:
            return self.split("/", 1)[1]
        return str(self)

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return str(self)


class Vector(tuple):
    """A bracketed ``[ ... ]`` sequence."""

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return "[" + " ".join(repr(item) for item in self) + "]"


class Unbound:
    """Sentinel stored in a var that has been declared but never bound."""

    def __init__(self, var_name: str):
        self.var_name = var_name

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<unbound:{self.var_name}>"


class Var:
    """A named, mutable binding owned by exactly one namespace."""

    def __init__(self, ns: "Namespace", name: str):
        self.ns = ns
        self.name = Symbol(name)
        self.value: Any = Unbound(self.qualified_name)
        self.macro = False

    @property
    def qualified_name(self) -> str:
        return f"{self.ns.name}/{self.name}"

    @property
    def is_bound(self) -> bool:
        return not isinstance(self.value, Unbound)

    def bind(self, value: Any, *, macro: bool = False) -> "Var":
        self.value = value
        self.macro = macro
        return self

    def deref(self) -> Any:
        if not self.is_bound:
            raise RuntimeError(f"Var {self.qualified_name} is declared but unbound")
        return self.value

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"#'{self.qualified_name}"


class Namespace:
    """A named mapping from symbols to vars, interned or referred."""

    def __init__(self, name: str):
        self.name = Symbol(name)
        self.mappings: dict[Symbol, Var] = {}
        self.referred: list["Namespace"] = []

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"Namespace({self.name})"

    def publics(self) -> dict[Symbol, Var]:
        """Vars interned in this namespace, excluding referred ones."""

        return {sym: var for sym, var in self.mappings.items() if var.ns is self}

    def refer(self, other: "Namespace") -> int:
        """Map every public var of ``other`` into this namespace.

        Vars interned here take precedence over referred ones. Returns the
        number of symbols mapped.
        """

        count = 0
        for sym, var in other.publics().items():
            existing = self.mappings.get(sym)
            if existing is not None and existing.ns is self:
                continue
            self.mappings[sym] = var
            count += 1
        if other not in self.referred:
            self.referred.append(other)
        return count

    def declare(self, name: str) -> Var:
        """Intern ``name`` without binding it, keeping an existing own var."""

        sym = Symbol(name)
        existing = self.mappings.get(sym)
        if existing is not None and existing.ns is self:
            return existing
        var = Var(self, sym)
        self.mappings[sym] = var
        return var

    def intern(self, name: str, value: Any, *, macro: bool = False) -> Var:
        return self.declare(name).bind(value, macro=macro)

    def unmap(self, name: str) -> Optional[Var]:
        return self.mappings.pop(Symbol(name), None)

    def resolve(self, name: str) -> Var:
        try:
            return self.mappings[Symbol(name)]
        except KeyError:
            raise KeyError(
                f"Unable to resolve symbol {name} in namespace {self.name}"
            ) from None

    def lookup(self, name: str) -> Any:
        return self.resolve(name).deref()

    def __contains__(self, name: object) -> bool:
        return name in self.mappings


class NamespaceTable:
    """All namespaces known to a session, keyed by name."""

    def __init__(self, namespaces: Iterable[Namespace] = ()):
        self._namespaces: dict[Symbol, Namespace] = {}
        self._lock = threading.Lock()
        for ns in namespaces:
            self._namespaces[ns.name] = ns

    def find(self, name: str) -> Optional[Namespace]:
        return self._namespaces.get(Symbol(name))

    def find_or_create(self, name: str) -> Namespace:
        sym = Symbol(name)
        with self._lock:
            ns = self._namespaces.get(sym)
            if ns is None:
                ns = Namespace(sym)
                self._namespaces[sym] = ns
            return ns

    def require(self, name: "str | Namespace") -> Namespace:
        if isinstance(name, Namespace):
            return name
        ns = self.find(name)
        if ns is None:
            raise KeyError(f"No namespace: {name}")
        return ns

    def remove(self, name: str) -> Optional[Namespace]:
        with self._lock:
            return self._namespaces.pop(Symbol(name), None)

    def names(self) -> list[Symbol]:
        return sorted(self._namespaces)

    def __contains__(self, name: object) -> bool:
        return name in self._namespaces


__all__ = [
    "Namespace",
    "NamespaceTable",
    "Symbol",
    "Unbound",
    "Var",
    "Vector",
]
