"""Build pipeline core: reporter, part workers, orchestrator."""
