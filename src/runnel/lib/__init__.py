"""Core runnel library exports."""

from runnel.lib.process import Command, Output, Process, ProcessBuilder, Status

__all__ = ["Command", "Output", "Process", "ProcessBuilder", "Status"]
