"""Instance lifecycle against the control plane."""

import socket
import time
from typing import Callable

from imagetaster.constants import (
    BOOT_PROBE_CONNECT_TIMEOUT,
    BOOT_PROBE_INTERVAL,
    POLL_INTERVAL,
    SSH_PORT,
    TIMEOUT_INSTANCE_STARTUP,
    TIMEOUT_INSTANCE_TO_BE_CREATED,
    TIMEOUT_SNAPSHOT_ACTIVE,
)
from imagetaster.errors import ProvisionError, ReadinessTimeout, SnapshotTimeout
from imagetaster.models import Flavor, Image, InstanceHandle, Network
from imagetaster.services.retry import poll_until


def probe_tcp_port(host: str, port: int, timeout: float = BOOT_PROBE_CONNECT_TIMEOUT) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class InstanceProvisioner:
    """Creates, waits for, snapshots and destroys tasting instances."""

    def __init__(
        self,
        client,
        console,
        network_name: str,
        poll_interval: float = POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        port_probe: Callable[[str, int], bool] = probe_tcp_port,
    ):
        self.client = client
        self.console = console
        self.network_name = network_name
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock
        self.port_probe = port_probe

    def create(
        self,
        name: str,
        image: Image,
        flavor: Flavor,
        network: Network,
        keypair: str,
        log,
    ) -> InstanceHandle:
        server = self.client.create_server(
            name=name,
            flavor_id=flavor.id,
            image_id=image.id,
            network_id=network.id,
            key_name=keypair,
        )
        if server is None:
            raise ProvisionError("Failed to create instance.")
        return InstanceHandle(server=server, log=log, network_name=self.network_name)

    def refresh(self, handle: InstanceHandle) -> InstanceHandle:
        server = self.client.get_server(handle.id)
        if server is not None:
            handle.server = server
        return handle

    def await_ready(self, handle: InstanceHandle, timeout: float = TIMEOUT_INSTANCE_TO_BE_CREATED):
        def ready() -> bool:
            self.refresh(handle)
            status = handle.server.status.upper()
            if status == "ERROR":
                raise ProvisionError(
                    f"Instance '{handle.name}' entered ERROR state: {handle.server.fault or 'no fault reported'}"
                )
            return status == "ACTIVE"

        if not poll_until(ready, timeout, self.poll_interval, sleep=self.sleep, clock=self.clock):
            raise ReadinessTimeout(
                f"Instance '{handle.name}' was not ready after {timeout} seconds.",
                fault=handle.server.fault,
            )

    def await_boot(self, handle: InstanceHandle, ceiling: float = TIMEOUT_INSTANCE_STARTUP) -> bool:
        """Wait until SSH answers on the instance, at most ``ceiling`` seconds.

        The control plane cannot see the guest OS start, so a port probe is
        the best signal available. Without an address the full ceiling is
        slept.
        """
        address = handle.address
        handle.log.info(f"Waiting up to {ceiling} seconds for OS startup...", dup_stdout=True)
        if not address:
            self.sleep(ceiling)
            return False

        booted = poll_until(
            lambda: self.port_probe(address, SSH_PORT),
            ceiling,
            BOOT_PROBE_INTERVAL,
            sleep=self.sleep,
            clock=self.clock,
        )
        if not booted:
            handle.log.warning(f"SSH port on {address} did not answer within {ceiling} seconds.")
        return booted

    def destroy(self, handle: InstanceHandle):
        if handle.destroyed:
            return
        handle.destroyed = True
        try:
            self.client.delete_server(handle.id)
            handle.log.info(f"Destroyed instance '{handle.id}'.")
        except Exception as exc:
            handle.log.error(f"Failed to destroy instance '{handle.id}': {exc}", dup_stdout=True)

    def source_image_name(self, handle: InstanceHandle) -> str:
        if not handle.server.image_id:
            return "unknown"
        image = self.client.get_image(handle.server.image_id)
        return image.name if image is not None else handle.server.image_id

    def create_snapshot(self, handle: InstanceHandle, timeout: float = TIMEOUT_SNAPSHOT_ACTIVE) -> str:
        """Snapshot the live instance and block until the image is active."""
        image_name = "_".join([handle.name, self.source_image_name(handle)])
        image_id = self.client.create_server_image(handle.id, image_name)
        handle.log.info(f"Requested snapshot '{image_name}' ({image_id}).", dup_stdout=True)

        def active() -> bool:
            image = self.client.get_image(image_id)
            return image is not None and image.status.lower() == "active"

        if not poll_until(active, timeout, self.poll_interval, sleep=self.sleep, clock=self.clock):
            raise SnapshotTimeout(f"Snapshot '{image_name}' was not active after {timeout} seconds.")
        handle.log.info(f"Snapshot '{image_name}' is active.", dup_stdout=True)
        return image_id
