"""
Nomad API Models
Pydantic models for the job list and job detail responses
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class DockerConfig(BaseModel):
    """Task run by the docker driver"""
    model_config = ConfigDict(extra="ignore")

    driver: Literal["docker"] = "docker"
    image: str


class RawExecConfig(BaseModel):
    """Task run by the raw_exec driver (no image to check)"""
    model_config = ConfigDict(extra="ignore")

    driver: Literal["raw_exec"] = "raw_exec"


class OtherDriverConfig(BaseModel):
    """Any driver without freshness support (exec, java, qemu, ...)"""
    model_config = ConfigDict(extra="ignore")

    driver: str


DriverConfig = Union[DockerConfig, RawExecConfig, OtherDriverConfig]


def build_driver_config(driver: Optional[str], config: Optional[Dict[str, Any]]) -> DriverConfig:
    """
    Combine a task's Driver and Config fields into a DriverConfig.

    Examples:
        ("docker", {"image": "nginx:1.25"}) → DockerConfig(image="nginx:1.25")
        ("raw_exec", {"command": "/bin/true"}) → RawExecConfig()
        ("exec", {...}) → OtherDriverConfig(driver="exec")
        ("docker", {"command": "x"}) → OtherDriverConfig(driver="docker")
    """
    config = config or {}
    if driver == "docker":
        image = config.get("image")
        if not isinstance(image, str) or not image:
            # Skipped like any unsupported task instead of failing the job
            logger.warning(f"Docker task config has no image: {config}")
            return OtherDriverConfig(driver="docker")
        return DockerConfig(image=image)
    if driver == "raw_exec":
        return RawExecConfig()
    return OtherDriverConfig(driver=driver or "unknown")


class JobListEntry(BaseModel):
    """Entry of GET /v1/jobs"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="ID")
    parent_id: Optional[str] = Field(default=None, alias="ParentID")
    name: str = Field(alias="Name")
    type: str = Field(default="", alias="Type")
    priority: int = Field(default=0, alias="Priority")

    @property
    def is_child(self) -> bool:
        return bool(self.parent_id)


class Task(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(alias="Name")
    config: DriverConfig

    @model_validator(mode="before")
    @classmethod
    def _combine_driver_and_config(cls, data: Any) -> Any:
        if isinstance(data, dict) and "config" not in data:
            data = dict(data)
            data["config"] = build_driver_config(data.get("Driver"), data.get("Config"))
        return data


class TaskGroup(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(alias="Name")
    count: int = Field(default=1, alias="Count")
    tasks: List[Task] = Field(default_factory=list, alias="Tasks")

    @model_validator(mode="before")
    @classmethod
    def _null_tasks(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("Tasks") is None:
            data = {**data, "Tasks": []}
        return data


class JobDetail(BaseModel):
    """Response of GET /v1/job/{id}"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default="", alias="ID")
    name: str = Field(alias="Name")
    parent_id: str = Field(default="", alias="ParentID")
    task_groups: List[TaskGroup] = Field(default_factory=list, alias="TaskGroups")

    @model_validator(mode="before")
    @classmethod
    def _null_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if data.get("TaskGroups") is None:
                data["TaskGroups"] = []
            if data.get("ParentID") is None:
                data["ParentID"] = ""
        return data

    @property
    def is_child(self) -> bool:
        """Dispatched/periodic instances carry their parent's ID"""
        return bool(self.parent_id)


@dataclass(frozen=True)
class TaskRef:
    """One task of one group of one job, as checked by the reconciler"""
    job: str
    group: str
    task: str
    driver_config: DriverConfig

    @property
    def key(self) -> tuple:
        return (self.job, self.group, self.task)

    def __str__(self) -> str:
        return f"{self.job}/{self.group}/{self.task}"


def flatten_tasks(job: JobDetail) -> List[TaskRef]:
    """Flatten job → group → task into TaskRefs"""
    return [
        TaskRef(job=job.name, group=group.name, task=task.name, driver_config=task.config)
        for group in job.task_groups
        for task in group.tasks
    ]
