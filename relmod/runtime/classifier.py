"""Recognition of definition forms."""

from __future__ import annotations

from typing import Any, Iterable, Optional

from ..constants import DEFINITION_KEYWORDS
from .core import Symbol


class MalformedDefinitionError(ValueError):
    """A definition keyword with no identifier, raised only in strict mode."""

    def __init__(self, form):
        self.form = form
        keyword = form[0] if form else "?"
        super().__init__(f"Definition form `{keyword}' is missing an identifier")


class DefinitionClassifier:
    """Decide whether a form defines something and, if so, which identifier.

    A definition is a non-empty list of at least two elements whose head is one
    of ``keywords``; its identifier is the second element. Anything else,
    including a recognized keyword with nothing after it, classifies as
    ``None``. Pass ``strict=True`` to reject that last case instead.
    """

    def __init__(
        self, keywords: Iterable[str] = DEFINITION_KEYWORDS, *, strict: bool = False
    ):
        self.keywords = frozenset(Symbol(k) for k in keywords)
        self.strict = strict

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        kinds = " ".join(sorted(self.keywords))
        return f"<DefinitionClassifier {kinds}{' strict' if self.strict else ''}>"

    def is_definition_keyword(self, head: Any) -> bool:
        return isinstance(head, Symbol) and head in self.keywords

    def classify(self, form: Any) -> Optional[Symbol]:
        if not isinstance(form, list) or not form:
            return None
        if not self.is_definition_keyword(form[0]):
            return None
        if len(form) < 2:
            if self.strict:
                raise MalformedDefinitionError(form)
            return None
        return form[1]

    __call__ = classify

    def kind_of(self, form: Any) -> Optional[Symbol]:
        """Return the definition keyword of ``form`` when it classifies."""

        if self.classify(form) is None:
            return None
        return form[0]


DEFAULT_CLASSIFIER = DefinitionClassifier()


def definition_id(form: Any) -> Optional[Symbol]:
    """Classify ``form`` with the default definition keywords."""

    return DEFAULT_CLASSIFIER.classify(form)


__all__ = [
    "DEFAULT_CLASSIFIER",
    "DefinitionClassifier",
    "MalformedDefinitionError",
    "definition_id",
]
