"""Workspace collaborators: filesystem, processes and progress log."""

from lysis.workspace.filesystem import FileSystem, LocalFileSystem, MemoryFileSystem, format_listing
from lysis.workspace.processes import (
    AsyncioProcessRunner,
    ProcessHandle,
    ProcessRunner,
    ProcessTable,
    SubprocessHandle,
    TrackedProcess,
)
from lysis.workspace.progress import ProgressLog

__all__ = [
    "FileSystem",
    "LocalFileSystem",
    "MemoryFileSystem",
    "format_listing",
    "ProcessHandle",
    "ProcessRunner",
    "AsyncioProcessRunner",
    "SubprocessHandle",
    "ProcessTable",
    "TrackedProcess",
    "ProgressLog",
]
