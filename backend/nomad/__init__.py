"""
Nomad Module

Read-only access to the orchestrator's job API and event stream.
"""

from nomad.client import NomadAPIError, NomadClient
from nomad.event_stream import EventStream
from nomad.models import (
    DockerConfig,
    JobDetail,
    JobListEntry,
    OtherDriverConfig,
    RawExecConfig,
    TaskRef,
    flatten_tasks,
)

__all__ = [
    'NomadAPIError',
    'NomadClient',
    'EventStream',
    'DockerConfig',
    'JobDetail',
    'JobListEntry',
    'OtherDriverConfig',
    'RawExecConfig',
    'TaskRef',
    'flatten_tasks',
]
