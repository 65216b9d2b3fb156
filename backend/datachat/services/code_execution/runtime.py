"""Container runtime — the collaborator that builds and runs isolated images.

:class:`ContainerRuntime` is the boundary the sandbox engine talks to.  All
methods are blocking; the engine dispatches them to a thread-pool executor.
:class:`DockerRuntime` implements it with the Docker SDK.

Both ``remove_container`` and ``remove_image`` must be safe to call after a
failed build or run, including when the object never existed.
"""

from __future__ import annotations

import abc
import logging
import os
from dataclasses import dataclass
from typing import Optional

import docker
from docker.errors import DockerException, NotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceLimits:
    """Hard constraints applied to every sandbox container."""
    memory: str = "512m"
    cpu_shares: int = 512
    pids_limit: int = 128
    network_mode: str = "none"


class ContainerRuntime(abc.ABC):
    """Build / run / remove interface used by the sandbox engine."""

    @abc.abstractmethod
    def build_image(self, context_dir: str, tag: str) -> str:
        """Build an image from *context_dir* and return its tag."""

    @abc.abstractmethod
    def start_container(
        self, image: str, name: str, work_dir: str, limits: ResourceLimits
    ) -> str:
        """Start a detached container with *work_dir* bound; return a run handle."""

    @abc.abstractmethod
    def wait(self, handle: str) -> int:
        """Block until the container exits; return its exit status."""

    @abc.abstractmethod
    def logs(self, handle: str) -> str:
        """Return combined stdout/stderr captured so far."""

    @abc.abstractmethod
    def kill(self, handle: str) -> None:
        """Forcefully stop a running container."""

    @abc.abstractmethod
    def remove_container(self, handle: str) -> None:
        ...

    @abc.abstractmethod
    def remove_image(self, tag: str) -> None:
        ...

    def ping(self) -> bool:
        return True


class DockerRuntime(ContainerRuntime):
    """Docker SDK implementation.

    The client is created lazily so importing this module never requires a
    reachable daemon.
    """

    def __init__(self, client: Optional[docker.DockerClient] = None) -> None:
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def build_image(self, context_dir: str, tag: str) -> str:
        self.client.images.build(
            path=context_dir,
            tag=tag,
            rm=True,
            forcerm=True,
            pull=False,
        )
        logger.info("Built sandbox image %s", tag)
        return tag

    def start_container(
        self, image: str, name: str, work_dir: str, limits: ResourceLimits
    ) -> str:
        container = self.client.containers.run(
            image,
            name=name,
            detach=True,
            tty=False,
            working_dir="/app",
            network_mode=limits.network_mode,
            mem_limit=limits.memory,
            memswap_limit=limits.memory,
            cpu_shares=limits.cpu_shares,
            pids_limit=limits.pids_limit,
            cap_drop=["ALL"],
            security_opt=["no-new-privileges"],
            volumes={os.path.abspath(work_dir): {"bind": "/app", "mode": "rw"}},
        )

        # Network isolation must be observed on the live container, not assumed
        container.reload()
        actual = (container.attrs.get("HostConfig") or {}).get("NetworkMode")
        if actual != limits.network_mode:
            container.remove(force=True)
            raise RuntimeError(
                f"Container {name} started with network mode {actual!r}, "
                f"expected {limits.network_mode!r}"
            )
        return container.id

    def wait(self, handle: str) -> int:
        result = self.client.containers.get(handle).wait()
        return int(result.get("StatusCode", -1))

    def logs(self, handle: str) -> str:
        raw = self.client.containers.get(handle).logs(stdout=True, stderr=True)
        return raw.decode("utf-8", errors="replace")

    def kill(self, handle: str) -> None:
        try:
            self.client.containers.get(handle).kill()
        except NotFound:
            pass

    def remove_container(self, handle: str) -> None:
        try:
            self.client.containers.get(handle).remove(force=True)
        except NotFound:
            pass

    def remove_image(self, tag: str) -> None:
        try:
            self.client.images.remove(tag, force=True)
        except NotFound:
            pass

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except DockerException as exc:
            logger.warning("Docker ping failed: %s", exc)
            return False
