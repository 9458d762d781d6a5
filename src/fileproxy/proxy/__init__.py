"""Registration store, lifecycle rules and upstream fetch engine."""
