"""Command execution on the machine being provisioned.

``LocalRunner`` runs commands through the local shell; ``SSHRunner`` runs them
on a remote machine over paramiko. Both expose the same small interface so the
collaborators never need to know where the machine lives.
"""

import logging
import shlex
import socket
import subprocess
import threading
from dataclasses import dataclass
from typing import Optional, Union

import paramiko
from paramiko.ssh_exception import (
    AuthenticationException,
    NoValidConnectionsError,
    SSHException,
)

from .errors import CollaboratorError, CommandError

logger = logging.getLogger("kubeprov.runner")


@dataclass
class CommandResult:
    """Outcome of a single command."""
    command: str
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Base class for command runners."""

    host = 'localhost'

    def __init__(self, sudo: bool = False, timeout: Optional[int] = None):
        self.sudo = sudo
        self.timeout = timeout

    def _wrap(self, command: str) -> str:
        if self.sudo:
            return f"sudo -n sh -c {shlex.quote(command)}"
        return command

    def _execute(self, command: str, input: Optional[bytes], timeout: Optional[int]) -> CommandResult:
        raise NotImplementedError

    def run(
        self,
        command: str,
        check: bool = True,
        input: Optional[Union[str, bytes]] = None,
        timeout: Optional[int] = None,
        display: Optional[str] = None,
    ) -> CommandResult:
        """Run a shell command.

        Args:
            command: Shell command line
            check: Raise ``CommandError`` on a non-zero exit code
            input: Optional data written to the command's stdin
            timeout: Command timeout in seconds (defaults to the runner's)
            display: Text logged and reported in place of a command line
                that carries secrets

        Returns:
            CommandResult with decoded output

        Raises:
            CommandError: If check=True and the command fails
            CollaboratorError: If the command could not be started at all
        """
        if isinstance(input, str):
            input = input.encode('utf-8')
        shown = display or command
        logger.debug(f"[{self.host}] $ {shown}")
        try:
            result = self._execute(self._wrap(command), input, timeout or self.timeout)
        except CollaboratorError as e:
            if display:
                raise CollaboratorError(f"Command '{display}' could not be run") from e
            raise
        result.command = shown
        if result.returncode != 0:
            logger.debug(f"[{self.host}] exit {result.returncode}: {result.stderr.strip()}")
            if check:
                raise CommandError(shown, result.returncode, result.stdout, result.stderr)
        return result

    def output(self, command: str) -> str:
        """Run a command that must succeed and return its stripped stdout."""
        return self.run(command).stdout.strip()

    def succeeds(self, command: str) -> bool:
        """Run a command as a probe; True when it exits 0."""
        return self.run(command, check=False).ok

    def file_exists(self, path: str) -> bool:
        return self.succeeds(f"test -e {shlex.quote(path)}")

    def read_file(self, path: str) -> Optional[str]:
        """Return a file's content, or None if it does not exist."""
        quoted = shlex.quote(path)
        result = self.run(f"if [ -e {quoted} ]; then cat {quoted}; else exit 3; fi", check=False)
        if result.returncode == 3:
            return None
        if not result.ok:
            raise CommandError(f"cat {path}", result.returncode, result.stdout, result.stderr)
        return result.stdout

    def write_file(self, path: str, content: Union[str, bytes], mode: int = 0o644) -> None:
        """Write content to a file, creating parent directories."""
        quoted = shlex.quote(path)
        self.run(
            f"mkdir -p \"$(dirname {quoted})\" && cat > {quoted} && chmod {mode:o} {quoted}",
            input=content,
        )

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class LocalRunner(CommandRunner):
    """Runs commands on the local machine."""

    def __init__(self, sudo: bool = False, timeout: Optional[int] = None):
        super().__init__(sudo=sudo, timeout=timeout)
        self.host = socket.gethostname()

    def _execute(self, command: str, input: Optional[bytes], timeout: Optional[int]) -> CommandResult:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CollaboratorError(f"Command '{command}' timed out after {e.timeout}s")
        except OSError as e:
            raise CollaboratorError(f"Failed to execute '{command}': {e}")
        return CommandResult(
            command=command,
            returncode=proc.returncode,
            stdout=proc.stdout.decode('utf-8', errors='replace'),
            stderr=proc.stderr.decode('utf-8', errors='replace'),
        )


class SSHRunner(CommandRunner):
    """Runs commands on a remote machine over SSH."""

    def __init__(
        self,
        host: str,
        username: str,
        key_path: Optional[str] = None,
        port: int = 22,
        connect_timeout: int = 10,
        sudo: bool = False,
        timeout: Optional[int] = None,
    ):
        super().__init__(sudo=sudo, timeout=timeout)
        self.host = host
        self.username = username
        self.key_path = key_path
        self.port = port
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None
        self._lock = threading.Lock()

    def _connect(self) -> paramiko.SSHClient:
        with self._lock:
            if self._client is not None:
                transport = self._client.get_transport()
                if transport is not None and transport.is_active():
                    return self._client
            logger.debug(f"Connecting to {self.username}@{self.host}:{self.port}")
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            try:
                client.connect(
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    key_filename=self.key_path,
                    timeout=self.connect_timeout,
                )
            except (AuthenticationException, NoValidConnectionsError, SSHException, socket.error) as e:
                client.close()
                raise CollaboratorError(f"SSH connection to {self.host}:{self.port} failed: {e}")
            self._client = client
            return client

    def _execute(self, command: str, input: Optional[bytes], timeout: Optional[int]) -> CommandResult:
        client = self._connect()
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            if input is not None:
                stdin.write(input)
                stdin.channel.shutdown_write()
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
            returncode = stdout.channel.recv_exit_status()
        except (SSHException, socket.timeout) as e:
            raise CollaboratorError(f"Command '{command}' on {self.host} failed: {e}")
        return CommandResult(command=command, returncode=returncode, stdout=out, stderr=err)

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
