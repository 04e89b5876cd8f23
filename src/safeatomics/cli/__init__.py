"""kvsafe command-line interface."""
