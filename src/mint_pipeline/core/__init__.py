"""Core plumbing shared by the pipeline stages: the event bus and event names."""
