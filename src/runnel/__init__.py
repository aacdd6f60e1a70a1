"""Process execution toolkit: spawning, stream wiring, deadlines and pipelines."""

__version__ = "0.1.0"
