"""scopelog - nesting-aware scope logging.

Example:
    from scopelog import ScopeTracker

    tracker = ScopeTracker()

    class Loader:
        def load(self):
            tracker.begin(self)
            tracker.info("reading", "config.toml")
            tracker.end(self)

    Loader().load()
    assert tracker.warnings == 0
"""

__version__ = "0.3.0"

from scopelog.config import (  # noqa: E402
    BuildMode,
    TrackerConfig,
    configure,
    create_tracker,
    get_tracker,
    is_running_tests,
    reset_tracker,
)
from scopelog.emitter import SEVERITY_GLYPHS, Emitter, Severity  # noqa: E402
from scopelog.formatting import (  # noqa: E402
    FormattedMessage,
    MessageFormatter,
    is_describable,
)
from scopelog.tracker import (  # noqa: E402
    MismatchKind,
    Provenance,
    Reconciliation,
    ScopeGuard,
    ScopeId,
    ScopeTracker,
)
from scopelog.ui import accessibility_id  # noqa: E402

__all__ = [
    "__version__",
    # Configuration
    "BuildMode",
    "TrackerConfig",
    "configure",
    "create_tracker",
    "get_tracker",
    "is_running_tests",
    "reset_tracker",
    # Core
    "MismatchKind",
    "Provenance",
    "Reconciliation",
    "ScopeGuard",
    "ScopeId",
    "ScopeTracker",
    # Output
    "Emitter",
    "FormattedMessage",
    "MessageFormatter",
    "SEVERITY_GLYPHS",
    "Severity",
    "is_describable",
    # UI tests
    "accessibility_id",
]
