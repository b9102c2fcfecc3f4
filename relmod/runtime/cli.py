"""Command-line interface for relmod."""
from __future__ import annotations

import argparse
from pathlib import Path
import sys

from ..constants import MODULE_FORM, REPL_HISTORY_LIMIT
from .analysis import (
    export_graphviz,
    forward_references,
    print_namespace,
    print_registry,
    visualize_graph,
)
from .classifier import DefinitionClassifier
from .evaluator import Session
from .logbook import record_evaluation, show_logbook
from .reader import format_form, read_forms
from .registry import expand_module

EVALUATION_ERRORS = (RuntimeError, KeyError, ValueError, TypeError)
# reader errors that more input can still resolve
INCOMPLETE_INPUT_ERRORS = ("Unclosed", "Unterminated string literal")


def _is_module_form(form):
    return isinstance(form, list) and len(form) >= 3 and form[0] == MODULE_FORM


def _print_trace(message):
    print(f"  · {message}")


def _describe_error(exc):
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


def report_evaluation(evaluation):
    defs = " ".join(sorted(evaluation.definitions)) or "(none)"
    print(f"module {evaluation.name}: {defs}")
    if evaluation.removed:
        print(f"  removed: {' '.join(sorted(evaluation.removed))}")
    for definer, target in forward_references(evaluation.forms):
        print(f"  forward reference: {definer} → {target}")


def evaluate_source(session, text, *, record=False, report=report_evaluation):
    """Evaluate ``text`` form by form, reporting each module evaluation."""

    values = []
    for form in read_forms(text):
        before = len(session.evaluations)
        values.append(session.evaluate(form))
        for evaluation in session.evaluations[before:]:
            report(evaluation)
            if record:
                record_evaluation(evaluation)
    return values


def print_expansions(text, classifier=None):
    found = False
    for form in read_forms(text):
        if not _is_module_form(form):
            continue
        found = True
        expansion = expand_module(form[1], form[2], form[3:], classifier=classifier)
        print(format_form(expansion))
    if not found:
        print("No module forms found.")


def _read_complete_source(prompt, continuation):
    """Read lines until they form complete source text."""

    lines = [input(prompt)]
    while True:
        text = "\n".join(lines)
        try:
            read_forms(text)
        except ValueError as exc:
            if not str(exc).startswith(INCOMPLETE_INPUT_ERRORS):
                return text
            lines.append(input(continuation))
            continue
        return text


def run_repl(session=None, history_limit=REPL_HISTORY_LIMIT):  # pragma: no cover
    """Interactive shell; re-entering a module form reconciles it."""

    session = session or Session()
    print("relmod REPL — enter forms or commands (:help for help)")

    while True:
        try:
            source = _read_complete_source(f"{session.home.name}=> ", "... ")
        except EOFError:
            print()
            break

        stripped = source.strip()
        if not stripped:
            continue

        if stripped.startswith(":"):
            parts = stripped.split()
            cmd = parts[0]

            if cmd in (":quit", ":exit"):
                break
            if cmd == ":help":
                print(
                    "Commands: :help, :quit, :registry, :publics NAME, :load FILE, "
                    ":graph NAME, :log"
                )
                continue
            if cmd == ":registry":
                print_registry(session.registry)
                continue
            if cmd == ":publics":
                if len(parts) != 2:
                    print("Usage: :publics NAME")
                    continue
                ns = session.namespaces.find(parts[1])
                if ns is None:
                    print(f"No namespace: {parts[1]}")
                else:
                    print_namespace(ns)
                continue
            if cmd == ":load":
                if len(parts) != 2:
                    print("Usage: :load FILE")
                    continue
                try:
                    evaluate_source(session, Path(parts[1]).read_text(encoding="utf-8"))
                except OSError as exc:
                    print(f"  ✗ {exc}")
                except EVALUATION_ERRORS as exc:
                    print(f"  ✗ {_describe_error(exc)}")
                continue
            if cmd == ":graph":
                if len(parts) != 2:
                    print("Usage: :graph NAME")
                    continue
                matches = [e for e in session.evaluations if e.name == parts[1]]
                if not matches:
                    print(f"Module {parts[1]} has not been evaluated.")
                    continue
                pairs = forward_references(matches[-1].forms)
                if not pairs:
                    print("  (no forward references)")
                for definer, target in pairs:
                    print(f"  {definer} → {target}")
                continue
            if cmd == ":log":
                recent = session.evaluations[-history_limit:]
                if not recent:
                    print("No module evaluations yet.")
                for evaluation in recent:
                    print(f"[{evaluation.name}]")
                    for entry in evaluation.log:
                        print("   ", entry)
                continue

            print(f"Unknown command: {cmd}")
            continue

        try:
            values = evaluate_source(session, source)
        except EVALUATION_ERRORS as exc:
            print(f"  ✗ {_describe_error(exc)}")
            continue
        for value in values:
            if value is not None:
                print(format_form(value) if not callable(value) else repr(value))


def parse_args(args):
    argp = argparse.ArgumentParser(description="relmod — reloadable modules")

    argp.add_argument("files", nargs="*", help="Source files to evaluate in order")
    argp.add_argument("--src", help="Inline source evaluated after the files")
    argp.add_argument(
        "--expand",
        action="store_true",
        help="Print the expansion of every module form instead of evaluating",
    )
    argp.add_argument(
        "--strict",
        action="store_true",
        help="Reject definition forms that are missing an identifier",
    )
    argp.add_argument(
        "--trace", action="store_true", help="Print reconciliation diagnostics"
    )
    argp.add_argument(
        "--record",
        action="store_true",
        help="Append each module evaluation to the logbook",
    )
    argp.add_argument("--logbook", action="store_true", help="Show the logbook")
    argp.add_argument(
        "--viz",
        metavar="OUTPUT",
        help="Export the last module's reference graph (.dot or .svg)",
    )
    argp.add_argument(
        "--visualize",
        action="store_true",
        help="Render the last module's reference graph with matplotlib",
    )
    argp.add_argument("--repl", action="store_true", help="Start an interactive REPL")

    return argp.parse_args(args)


def _sources(params):
    for path in params.files:
        yield path, Path(path).read_text(encoding="utf-8")
    if params.src:
        yield "<src>", params.src


def main(args):
    params = parse_args(args)

    if params.logbook:
        show_logbook()
        return 0

    classifier = DefinitionClassifier(strict=params.strict)

    if params.expand:
        for label, text in _sources(params):
            print(f";; {label}")
            print_expansions(text, classifier)
        return 0

    session = Session(
        classifier=classifier, trace=_print_trace if params.trace else None
    )
    for label, text in _sources(params):
        try:
            evaluate_source(session, text, record=params.record)
        except EVALUATION_ERRORS as exc:
            print(f"  ✗ {label}: {_describe_error(exc)}")
            return 1

    last = session.last_evaluation
    if (params.viz or params.visualize) and last is None:
        print("  ✗ No module was evaluated; nothing to draw")
        return 1
    if params.viz:
        export_graphviz(last.forms, params.viz, name=last.name, classifier=classifier)
    if params.visualize:  # pragma: no cover
        visualize_graph(last.forms, name=last.name, classifier=classifier)
    if params.repl:  # pragma: no cover
        run_repl(session)
    return 0


__all__ = [
    "evaluate_source",
    "main",
    "parse_args",
    "print_expansions",
    "report_evaluation",
    "run_repl",
]


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main(sys.argv[1:]))
