from .dsl import command, pipe, pipeline, redirect_input, redirect_output, redirect_append, from_string, capture
from .runner import ProcessController
from .jobs import JobTable
from .dirs import DirectoryContext
from .registry import CommandRegistry
from .shell import Shell
from .model import Filter, Job, JobStatus, OutputBuffer
from .errors import (
    ShellError,
    CompositionError,
    PipelineSpawnError,
    CommandNotFound,
    InputFileMissing,
    OutputOpenError,
    DirectoryStackEmpty,
    JobNotFound,
    SignalDeliveryFailed,
)

__all__ = [
    "command", "pipe", "pipeline", "redirect_input", "redirect_output", "redirect_append",
    "from_string", "capture",
    "ProcessController", "JobTable", "DirectoryContext", "CommandRegistry", "Shell",
    "Filter", "Job", "JobStatus", "OutputBuffer",
    "ShellError", "CompositionError", "PipelineSpawnError", "CommandNotFound",
    "InputFileMissing", "OutputOpenError", "DirectoryStackEmpty", "JobNotFound",
    "SignalDeliveryFailed",
]
