"""Channel lifecycle: registry, store, validators, orchestration and health checks."""
