"""Background worker: context, jobs, commands and channels."""

from volindex.worker.channel import MemoryChannel, StdioChannel
from volindex.worker.commands import handle_command, manual_scan
from volindex.worker.context import WorkerContext
from volindex.worker.jobs import create_manual_root_job, create_volume_job
from volindex.worker.runner import run_worker

__all__ = [
    "MemoryChannel",
    "StdioChannel",
    "WorkerContext",
    "create_manual_root_job",
    "create_volume_job",
    "handle_command",
    "manual_scan",
    "run_worker",
]
