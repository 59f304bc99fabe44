from __future__ import annotations

import contextlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Dict
from urllib.parse import urlparse

import docker
from docker.errors import DockerException
from docker.models.containers import Container

from .errors import StoreConnectionError

LOGGER = logging.getLogger("mongoperf.docker")

MONGO_PORT = "27017/tcp"


@dataclass
class StoreContainerConfig:
    image: str
    environment: Dict[str, str]
    name_prefix: str = "mongoperf-store"


class StoreContainerManager:
    """Provision a throwaway store container for a run using the Docker API."""

    def __init__(
        self,
        startup_grace_seconds: float = 30.0,
        poll_interval_seconds: float = 1.0,
        client: docker.DockerClient | None = None,
    ) -> None:
        if client is None:
            try:
                client = docker.from_env()
            except DockerException as exc:
                raise StoreConnectionError(f"docker unavailable: {exc}") from exc
        self._client = client
        self._startup_grace_seconds = startup_grace_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._container: Container | None = None

    def run(self, config: StoreContainerConfig) -> contextlib.AbstractContextManager[str]:
        """Context manager yielding the URI of a started container."""
        return _StoreContext(self, config)

    def _start(self, config: StoreContainerConfig) -> str:
        name = f"{config.name_prefix}-{int(time.time())}"
        LOGGER.info("Starting store container %s from %s", name, config.image)
        try:
            self._container = self._client.containers.run(
                config.image,
                name=name,
                detach=True,
                environment=dict(config.environment),
                ports={MONGO_PORT: None},
            )
        except DockerException as exc:
            raise StoreConnectionError(f"cannot start store container from {config.image}: {exc}") from exc
        self._wait_for_startup(self._container)
        return f"mongodb://{self._docker_host()}:{self._host_port(self._container)}"

    def _stop(self) -> None:
        if self._container is None:
            return
        LOGGER.info("Stopping store container %s", self._container.name)
        with contextlib.suppress(Exception):
            self._container.stop(timeout=10)
        with contextlib.suppress(Exception):
            self._container.remove(force=True)
        self._container = None

    def _wait_for_startup(self, container: Container) -> None:
        deadline = time.time() + self._startup_grace_seconds
        while time.time() < deadline:
            if self._is_container_running(container):
                return
            time.sleep(self._poll_interval_seconds)
        raise StoreConnectionError(
            f"store container {container.name} not running after {self._startup_grace_seconds:g}s"
        )

    def _is_container_running(self, container: Container) -> bool:
        with contextlib.suppress(Exception):
            container.reload()
            status = container.attrs.get("State", {})
            if status.get("Health"):
                return status["Health"]["Status"] == "healthy"
            return status.get("Running", False)
        return False

    def _host_port(self, container: Container) -> str:
        ports = container.attrs.get("NetworkSettings", {}).get("Ports", {}) or {}
        bindings = ports.get(MONGO_PORT) or []
        if not bindings:
            raise StoreConnectionError(f"store container {container.name} publishes no {MONGO_PORT}")
        return bindings[0]["HostPort"]

    def _docker_host(self) -> str:
        docker_host = os.environ.get("DOCKER_HOST")
        if docker_host and docker_host.startswith("tcp://"):
            return urlparse(docker_host).hostname or "localhost"
        return "localhost"


class _StoreContext(contextlib.AbstractContextManager):
    def __init__(self, manager: StoreContainerManager, config: StoreContainerConfig) -> None:
        self._manager = manager
        self._config = config

    def __enter__(self) -> str:
        try:
            return self._manager._start(self._config)
        except BaseException:
            self._manager._stop()
            raise

    def __exit__(self, exc_type, exc, tb) -> None:
        self._manager._stop()


__all__ = ["StoreContainerConfig", "StoreContainerManager"]
