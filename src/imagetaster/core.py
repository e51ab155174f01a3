import logging
import re
import uuid
from datetime import datetime
from typing import List, Optional

from rich.console import Console

from .constants import (
    DEFAULT_NETWORK_NAME,
    INSTANCE_FLAVOR_NAME,
    INSTANCE_NAME_PREFIX,
    MAX_SSH_RETRY,
    SESSION_ID_FORMAT,
    TIME_SLUG_FORMAT,
    TIMEOUT_SSH_RETRY,
)
from .errors import (
    ControlPlaneError,
    ImageNotFoundError,
    ProvisionError,
    ReadinessTimeout,
    RemoteConnectionError,
    SuiteConnectionError,
    TasterError,
)
from .models import Image, InstanceHandle, SessionState, Settings, SshKeys, TastingSession
from .services.command_runner import CommandRunner
from .services.compliance import DEFAULT_PROFILE_PATH, ComplianceTestRunner, InspecSuiteRunner
from .services.provisioner import InstanceProvisioner
from .services.remote_session import RemoteSession, is_connection_refused
from .services.retry import RetryPolicy
from .services.session_log import SessionLog
from .services.volume_tests import VolumeTestEngine

console = Console()
logger = logging.getLogger("imagetaster")


def new_session_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{now.strftime(SESSION_ID_FORMAT)}-{uuid.uuid4().hex[:8]}"


def distro_tag(image_name: str) -> str:
    """Leading alphabetic run of the lower-cased image name ('ubuntu2004-x86' -> 'ubuntu')."""
    return re.match(r"[a-z]*", image_name.lower()).group(0)


def build_instance_name(image_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{INSTANCE_NAME_PREFIX}-{now.strftime(TIME_SLUG_FORMAT)}-{distro_tag(image_name)}"


class ImageTaster:
    """Provisions an instance from an image, tests it, and always tears it down."""

    def __init__(
        self,
        client,
        ssh_keys: SshKeys,
        log_dir: str,
        network_name: Optional[str] = None,
        flavor_name: str = INSTANCE_FLAVOR_NAME,
        suite_path: str = DEFAULT_PROFILE_PATH,
        suite_runner=None,
        provisioner: Optional[InstanceProvisioner] = None,
        volume_engine: Optional[VolumeTestEngine] = None,
        ssh_retry_policy: Optional[RetryPolicy] = None,
        suite_retry_policy: Optional[RetryPolicy] = None,
        console: Console = console,
    ):
        self.client = client
        self.ssh_keys = ssh_keys
        self.network_name = network_name or DEFAULT_NETWORK_NAME
        self.suite_path = suite_path
        self.console = console

        self.log_dir = log_dir

        self.instance_flavor = next(
            (flavor for flavor in client.list_flavors() if flavor.name == flavor_name),
            None,
        )
        if self.instance_flavor is None:
            raise TasterError(f"Flavor '{flavor_name}' is not available.")

        self.instance_network = next(
            (network for network in client.list_networks() if network.name == self.network_name),
            None,
        )
        if self.instance_network is None:
            raise TasterError(f"Network '{self.network_name}' is not available.")

        self.ssh_retry_policy = ssh_retry_policy or RetryPolicy(
            max_retries=MAX_SSH_RETRY,
            backoff_seconds=TIMEOUT_SSH_RETRY,
            is_transient=is_connection_refused,
        )
        self.suite_retry_policy = suite_retry_policy or RetryPolicy(
            max_retries=MAX_SSH_RETRY,
            backoff_seconds=TIMEOUT_SSH_RETRY,
            transient=(SuiteConnectionError,),
        )
        self.suite_runner = suite_runner or InspecSuiteRunner(CommandRunner(logger=logger))
        self.provisioner = provisioner or InstanceProvisioner(
            client=client,
            console=console,
            network_name=self.network_name,
        )
        self.volume_engine = volume_engine or VolumeTestEngine(
            client=client,
            console=console,
            session_factory=self.open_remote_session,
        )

    @staticmethod
    def _transition(session: TastingSession, state: SessionState):
        logger.debug("Session %s: %s -> %s", session.session_id, session.state, state.value)
        session.state = state

    def open_remote_session(self, handle: InstanceHandle, username: str) -> RemoteSession:
        if not handle.address:
            raise RemoteConnectionError(
                f"Instance '{handle.name}' has no address on network '{self.network_name}'."
            )
        return RemoteSession.open(
            host=handle.address,
            user=username,
            key_file=self.ssh_keys.private_key,
            retry_policy=self.ssh_retry_policy,
            log=handle.log,
            console=self.console,
        )

    def resolve_image(self, image_name: str) -> Image:
        image = next(
            (image for image in self.client.list_images(name=image_name) if image.name == image_name),
            None,
        )
        if image is None:
            raise ImageNotFoundError(f"{image_name} is not an available image.")
        return image

    def compliance_runner(self, settings: Settings) -> ComplianceTestRunner:
        return ComplianceTestRunner(
            suite_runner=self.suite_runner,
            retry_policy=self.suite_retry_policy,
            private_key=self.ssh_keys.private_key,
            console=self.console,
            suite_path=self.suite_path,
            pass_on_error=settings.pass_on_suite_error,
        )

    def new_session(self, image_name: str, settings: Settings) -> TastingSession:
        return TastingSession(session_id=new_session_id(), image_name=image_name, settings=settings)

    def taste(self, image_name: str, settings: Settings) -> bool:
        """Provision, test and destroy one instance of ``image_name``.

        Returns True when every enabled suite passed.
        """
        return self.run(self.new_session(image_name, settings))

    def run(self, session: TastingSession) -> bool:
        """Drive ``session`` through its states.

        The instance is destroyed on every exit path; KeyboardInterrupt and
        fatal SSH errors are re-raised after teardown.
        """
        settings = session.settings
        self._transition(session, SessionState.RESOLVING)
        image = self.resolve_image(session.image_name)
        instance_name = build_instance_name(image.name)

        session_log = SessionLog(self.log_dir, session.session_id, console=self.console)
        log = session_log.instance_log(instance_name)
        log.info(
            f"Tasting {image.name} as '{instance_name}' with username '{settings.ssh_user}'.\nBuilding...",
            dup_stdout=True,
        )

        handle: Optional[InstanceHandle] = None
        try:
            self._transition(session, SessionState.PROVISIONING)
            handle = self.provisioner.create(
                name=instance_name,
                image=image,
                flavor=self.instance_flavor,
                network=self.instance_network,
                keypair=self.ssh_keys.keypair,
                log=log,
            )

            self._transition(session, SessionState.AWAITING_READY)
            self.provisioner.await_ready(handle)
            self.provisioner.await_boot(handle)
            log.info(f"Testing for instance '{handle.id}'.", dup_stdout=True)

            self._transition(session, SessionState.TESTING)
            session.passed = all(self._run_suites(handle, settings))

            self._transition(session, SessionState.CONCLUDING)
            if settings.create_snapshot and not session.passed:
                log.info(f"Tests failed for instance '{handle.id}'. Creating image...", dup_stdout=True)
                self._create_snapshot(handle)
            return session.passed

        except ProvisionError as exc:
            log.error(str(exc), dup_stdout=True)
            return False
        except ReadinessTimeout as exc:
            self.console.print("Instance creation timed out.")
            log.error(f"Instance fault: {exc.fault or 'none reported'}")
            return False
        except RemoteConnectionError as exc:
            log.error(str(exc), dup_stdout=True, context="SSH")
            raise
        except ControlPlaneError as exc:
            log.error(f"Control plane error: {exc}", dup_stdout=True)
            return False
        except KeyboardInterrupt:
            self.console.print("\nCaught interrupt")
            self.console.print(f"Exiting session {session.session_id}")
            raise
        finally:
            if handle is not None:
                self.console.print(f"Destroying instance for session {session.session_id}.\n")
                self.provisioner.destroy(handle)
            self._transition(session, SessionState.DESTROYED)
            log.close()

    def _run_suites(self, handle: InstanceHandle, settings: Settings) -> List[bool]:
        suites = []
        if settings.security:
            suites.append(("security", lambda: self.compliance_runner(settings).run(handle, settings.ssh_user)))
        if settings.volumes:
            suites.append(("volume", lambda: self.volume_engine.run(handle, settings.ssh_user)))

        return_values: List[bool] = []
        for name, suite in suites:
            try:
                return_values.append(suite().passed)
            except ControlPlaneError as exc:
                handle.log.error(f"Control plane error during {name} suite: {exc}", dup_stdout=True)
                return_values.append(False)
        return return_values

    def _create_snapshot(self, handle: InstanceHandle):
        try:
            self.provisioner.create_snapshot(handle)
        except TasterError as exc:
            handle.log.error(f"Snapshot of instance '{handle.id}' failed: {exc}", dup_stdout=True)
