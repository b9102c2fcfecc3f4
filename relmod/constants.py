"""Shared constant values for the relmod runtime."""

DEFINITION_KEYWORDS = ("def", "defn", "defmacro")

MODULE_FORM = "module"

CORE_NAMESPACE = "core"
HOME_NAMESPACE = "user"

LOGBOOK_FILE = "relmod.logbook.jsonl"
REPL_HISTORY_LIMIT = 10

GRAPH_COLORS = {
    "def": "#8BC34A",
    "defn": "#FFEB3B",
    "defmacro": "#9575CD",
    "forward": "#FF7043",
}

__all__ = [
    "DEFINITION_KEYWORDS",
    "MODULE_FORM",
    "CORE_NAMESPACE",
    "HOME_NAMESPACE",
    "LOGBOOK_FILE",
    "REPL_HISTORY_LIMIT",
    "GRAPH_COLORS",
]
