"""
relmod — reloadable modules over a namespace/binding engine.

A module form names a namespace, refers a base namespace into it and defines
vars. Unlike a bare namespace, a module:

  1. resolves forward references without explicit declarations;
  2. rejects defining the same identifier twice in one evaluation;
  3. unmaps definitions that disappeared since its previous evaluation.
"""

from . import core as _core
from . import reader as _reader
from . import classifier as _classifier
from . import registry as _registry
from . import evaluator as _evaluator
from . import analysis as _analysis
from . import logbook as _logbook
from .cli import main, parse_args, run_repl

from .core import *
from .reader import *
from .classifier import *
from .registry import *
from .evaluator import *
from .analysis import *
from .logbook import *

__all__ = []
for module in (_core, _reader, _classifier, _registry, _evaluator, _analysis, _logbook):
    __all__.extend(getattr(module, '__all__', []))
__all__ += ['main', 'parse_args', 'run_repl']
__all__ = list(dict.fromkeys(__all__))
