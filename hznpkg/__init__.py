"""hznpkg: signed, content-addressed packages built from container images.

Each image is exported, hashed over its uncompressed stream, compressed,
signed and registered as a part.  When every part succeeds, a signed
manifest is written and the part directory is published atomically
under the package id.
"""

__version__ = "0.3.0"
__description__ = "Create, sign and verify Horizon packages built from container images"

from hznpkg.core.orchestrator import BuildOrchestrator
from hznpkg.core.reporter import SynchronizedReporter
from hznpkg.models.outcome import BuildOutcome, BuildState

__all__ = [
    "BuildOrchestrator",
    "BuildOutcome",
    "BuildState",
    "SynchronizedReporter",
    "__version__",
]
