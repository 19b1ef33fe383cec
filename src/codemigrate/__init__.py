"""codemigrate: find and rewrite deprecated code patterns with regex rules."""

from codemigrate._version import __version__
from codemigrate.core.errors import ErrorClassifier
from codemigrate.fix.engine import FixEngine
from codemigrate.rules.engine import RuleEngine

__all__ = [
    "__version__",
    "ErrorClassifier",
    "FixEngine",
    "RuleEngine",
]
