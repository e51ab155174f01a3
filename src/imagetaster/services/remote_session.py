"""SSH command sessions against tasting instances."""

import logging
from typing import Optional

import paramiko
from paramiko.ssh_exception import NoValidConnectionsError

from imagetaster.constants import SSH_PORT
from imagetaster.errors import RemoteCommandError, RemoteConnectionError
from imagetaster.services.retry import RetryPolicy, RetryState

logger = logging.getLogger("imagetaster")


def is_connection_refused(exc: BaseException) -> bool:
    return isinstance(exc, (ConnectionRefusedError, NoValidConnectionsError))


def _chomp(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith(("\n", "\r")):
        return text[:-1]
    return text


class RemoteSession:
    """An authenticated SSH channel to one host.

    Use :meth:`open` as a context manager; the connection is closed on exit.
    """

    def __init__(self, client: paramiko.SSHClient, host: str, log=None):
        self.client = client
        self.host = host
        self.log = log

    @classmethod
    def open(
        cls,
        host: str,
        user: str,
        key_file: str,
        retry_policy: RetryPolicy,
        port: int = SSH_PORT,
        log=None,
        console=None,
        client_factory=paramiko.SSHClient,
    ) -> "RemoteSession":
        def connect() -> paramiko.SSHClient:
            client = client_factory()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                client.connect(
                    hostname=host,
                    port=port,
                    username=user,
                    key_filename=key_file,
                    look_for_keys=False,
                    allow_agent=False,
                )
            except Exception:
                client.close()
                raise
            return client

        def announce(state: RetryState, exc: Exception):
            message = f"Encountered {exc} while connecting to the instance."
            if console is not None:
                console.print(message, markup=False)
                console.print(
                    f"Initiating SSH attempt {state.attempt} in {retry_policy.backoff_seconds} seconds"
                )
            logger.warning(message)

        try:
            client = retry_policy.call(connect, on_retry=announce)
        except (paramiko.SSHException, OSError) as exc:
            if log is not None:
                log.error(str(exc), context="SSH")
            raise RemoteConnectionError(f"Could not open SSH session to {user}@{host}:{port}: {exc}") from exc

        return cls(client, host, log=log)

    def exec(self, command: str, timeout: Optional[float] = None) -> str:
        try:
            _stdin, stdout, _stderr = self.client.exec_command(command, timeout=timeout)
            # stderr arrives interleaved on stdout
            stdout.channel.set_combine_stderr(True)
            output = stdout.read().decode("utf-8", errors="replace")
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteCommandError(f"Failed to run '{command}' on {self.host}: {exc}") from exc
        return _chomp(output)

    def close(self):
        self.client.close()

    def __enter__(self) -> "RemoteSession":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
