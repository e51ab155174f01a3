"""Shared domain models for imagetaster."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Settings:
    """Per-session switches for the test phases."""

    ssh_user: str
    security: bool = True
    volumes: bool = True
    create_snapshot: bool = False
    pass_on_suite_error: bool = True


@dataclass(frozen=True)
class SshKeys:
    keypair: str
    private_key: str
    public_key: Optional[str] = None


@dataclass(frozen=True)
class Flavor:
    id: str
    name: str


@dataclass(frozen=True)
class Network:
    id: str
    name: str


@dataclass(frozen=True)
class Image:
    id: str
    name: str
    status: str = ""


@dataclass(frozen=True)
class VolumeAttachment:
    server_id: str
    device: str


@dataclass(frozen=True)
class Volume:
    id: str
    name: str
    attachments: List[VolumeAttachment] = field(default_factory=list)

    def device_for(self, server_id: str) -> Optional[str]:
        for attachment in self.attachments:
            if attachment.server_id == server_id:
                return attachment.device
        if self.attachments:
            return self.attachments[0].device
        return None


@dataclass(frozen=True)
class Server:
    id: str
    name: str
    status: str = ""
    addresses: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    fault: Optional[str] = None
    image_id: Optional[str] = None

    def address(self, network_name: str) -> Optional[str]:
        entries = self.addresses.get(network_name) or []
        if entries:
            return entries[0].get("addr")
        return None


@dataclass
class InstanceHandle:
    """Pairs a provider server with the log it reports to for its whole life."""

    server: Server
    log: Any
    network_name: str
    destroyed: bool = False

    @property
    def id(self) -> str:
        return self.server.id

    @property
    def name(self) -> str:
        return self.server.name

    @property
    def address(self) -> Optional[str]:
        return self.server.address(self.network_name)


class SessionState(str, Enum):
    RESOLVING = "resolving"
    PROVISIONING = "provisioning"
    AWAITING_READY = "awaiting_ready"
    TESTING = "testing"
    CONCLUDING = "concluding"
    DESTROYED = "destroyed"


@dataclass
class TastingSession:
    """One tasting of one image; owns a single instance and log directory."""

    session_id: str
    image_name: str
    settings: Settings
    state: Optional[SessionState] = None
    passed: bool = False


class VolumeState(str, Enum):
    DETACHED = "detached"
    ATTACHING = "attaching"
    ATTACHED = "attached"
    MOUNTED = "mounted"
    UNMOUNTED = "unmounted"


_VOLUME_TRANSITIONS = {
    VolumeState.DETACHED: {VolumeState.ATTACHING},
    VolumeState.ATTACHING: {VolumeState.ATTACHED, VolumeState.DETACHED},
    VolumeState.ATTACHED: {VolumeState.MOUNTED, VolumeState.DETACHED},
    VolumeState.MOUNTED: {VolumeState.UNMOUNTED, VolumeState.DETACHED},
    VolumeState.UNMOUNTED: {VolumeState.DETACHED},
}


@dataclass(frozen=True)
class MountStep:
    """A remote command and the output it must produce (None logs only)."""

    command: str
    expected: Optional[str] = None


@dataclass(frozen=True)
class MountStepFailure:
    command: str
    expected: str
    actual: str


@dataclass
class VolumeOutcome:
    """Per-volume record kept by the volume test workflow."""

    volume: Volume
    state: VolumeState = VolumeState.DETACHED
    skipped: bool = False
    mount_error: Optional[str] = None
    mount_failure: Optional[MountStepFailure] = None
    detach_error: Optional[str] = None

    def advance(self, new_state: VolumeState):
        if new_state not in _VOLUME_TRANSITIONS[self.state]:
            raise ValueError(
                f"Volume '{self.volume.name}' cannot move from {self.state.value} to {new_state.value}."
            )
        self.state = new_state

    @property
    def mount_failed(self) -> bool:
        return not self.skipped and (
            self.mount_error is not None or self.mount_failure is not None
        )

    @property
    def detach_failed(self) -> bool:
        return self.detach_error is not None


@dataclass
class VolumeSuiteResult:
    outcomes: List[VolumeOutcome] = field(default_factory=list)

    @property
    def mount_failures(self) -> List[Volume]:
        return [outcome.volume for outcome in self.outcomes if outcome.mount_failed]

    @property
    def detach_failures(self) -> List[Volume]:
        return [outcome.volume for outcome in self.outcomes if outcome.detach_failed]

    @property
    def passed(self) -> bool:
        return not self.mount_failures and not self.detach_failures


class CheckStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class CheckResult:
    id: str
    status: CheckStatus
    message: str = ""


@dataclass
class SuiteResult:
    """Ordered check outcomes of one suite run."""

    suite: str
    checks: List[CheckResult] = field(default_factory=list)
    fallback_passed: Optional[bool] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        if self.fallback_passed is not None:
            return self.fallback_passed
        return not any(check.status == CheckStatus.FAILED for check in self.checks)


@dataclass(frozen=True)
class ConnectionOptions:
    host: str
    port: int
    user: str
    key_files: List[str]
    sudo: bool = True
