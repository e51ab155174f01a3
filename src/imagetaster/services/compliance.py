"""Compliance suite execution against a tasting instance."""

import json
import logging
import os
from typing import Any, Dict, List

from imagetaster.constants import SSH_PORT
from imagetaster.errors import SuiteConnectionError, SuiteExecutionError
from imagetaster.models import CheckResult, CheckStatus, ConnectionOptions, InstanceHandle, SuiteResult
from imagetaster.services.retry import RetryPolicy, RetryState

logger = logging.getLogger("imagetaster")

DEFAULT_PROFILE_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "profiles", "security")


class InspecSuiteRunner:
    """Runs an InSpec profile through the ``inspec`` binary and parses its JSON report."""

    # 100: some controls failed, 101: some controls skipped
    RESULT_EXIT_CODES = (0, 100, 101)
    CONNECTION_REFUSED_PATTERNS = ("connection refused", "econnrefused", "errno::econnrefused")

    def __init__(self, command_runner, inspec_bin: str = "inspec", timeout: float = 1800.0):
        self.command_runner = command_runner
        self.inspec_bin = inspec_bin
        self.timeout = timeout

    def build_command(self, suite_path: str, options: ConnectionOptions) -> List[str]:
        cmd = [
            self.inspec_bin,
            "exec",
            suite_path,
            "-t",
            f"ssh://{options.user}@{options.host}:{options.port}",
        ]
        for key_file in options.key_files:
            cmd.extend(["-i", key_file])
        if options.sudo:
            cmd.append("--sudo")
        cmd.extend(["--input", f"ssh_user={options.user}"])
        cmd.extend(["--reporter", "json", "--no-color", "--chef-license", "accept-silent"])
        return cmd

    def run(self, suite_path: str, options: ConnectionOptions) -> List[CheckResult]:
        result = self.command_runner.run(
            self.build_command(suite_path, options),
            check=False,
            capture_output=True,
            timeout=self.timeout,
        )

        if result.returncode not in self.RESULT_EXIT_CODES:
            output = f"{result.stderr or ''}\n{result.stdout or ''}".strip()
            if any(pattern in output.lower() for pattern in self.CONNECTION_REFUSED_PATTERNS):
                raise SuiteConnectionError(output or "Connection refused")
            raise SuiteExecutionError(
                f"inspec exited with {result.returncode}: {output or 'no output'}"
            )

        try:
            report = json.loads(result.stdout)
        except (TypeError, ValueError) as exc:
            raise SuiteExecutionError(f"inspec produced an unreadable report: {exc}") from exc
        return self.parse_report(report)

    @staticmethod
    def parse_report(report: Dict[str, Any]) -> List[CheckResult]:
        checks: List[CheckResult] = []
        for profile in report.get("profiles", []):
            for control in profile.get("controls", []):
                control_id = control.get("id") or "unknown"
                for item in control.get("results", []):
                    try:
                        status = CheckStatus(item.get("status", "error"))
                    except ValueError:
                        status = CheckStatus.ERROR
                    message = item.get("code_desc") or ""
                    if item.get("message"):
                        message = f"{message}\n{item['message']}" if message else item["message"]
                    checks.append(CheckResult(id=control_id, status=status, message=message))
        return checks


class ComplianceTestRunner:
    """Runs the security suite and folds its checks into one result."""

    SUITE_NAME = "security"

    def __init__(
        self,
        suite_runner,
        retry_policy: RetryPolicy,
        private_key: str,
        console,
        suite_path: str = DEFAULT_PROFILE_PATH,
        pass_on_error: bool = True,
    ):
        self.suite_runner = suite_runner
        self.retry_policy = retry_policy
        self.private_key = private_key
        self.console = console
        self.suite_path = suite_path
        self.pass_on_error = pass_on_error

    def connection_options(self, handle: InstanceHandle, username: str) -> ConnectionOptions:
        if not handle.address:
            raise SuiteExecutionError(f"Instance '{handle.name}' has no address on '{handle.network_name}'.")
        return ConnectionOptions(
            host=handle.address,
            port=SSH_PORT,
            user=username,
            key_files=[self.private_key],
            sudo=True,
        )

    def run(self, handle: InstanceHandle, username: str) -> SuiteResult:
        log = handle.log

        def announce(state: RetryState, exc: Exception):
            self.console.print(f'Encountered error "{exc}" while testing the instance.', markup=False)
            self.console.print(
                f"Initiating SSH attempt {state.attempt} in {self.retry_policy.backoff_seconds} seconds"
            )

        try:
            options = self.connection_options(handle, username)
            checks = self.retry_policy.call(
                lambda: self.suite_runner.run(self.suite_path, options),
                on_retry=announce,
            )
        except SuiteConnectionError as exc:
            log.error(str(exc), context="Inspec Runner")
            return self._fallback(str(exc))
        except Exception as exc:
            self.console.print(f'Encountered error "{exc}". Aborting test.', markup=False)
            log.error(str(exc), context="Inspec Runner")
            return self._fallback(str(exc))

        result = SuiteResult(suite=self.SUITE_NAME, checks=checks)
        summary = "\n".join(
            f"{check.status.value.upper()}: {check.message}" for check in checks
        )
        log.info(f"Inspec Test Results\n{summary}")

        if not result.passed:
            log.warning("Image failed security test suite")
        return result

    def _fallback(self, error: str) -> SuiteResult:
        if self.pass_on_error:
            logger.warning("Security suite could not run; counting it as passed: %s", error)
        return SuiteResult(suite=self.SUITE_NAME, fallback_passed=self.pass_on_error, error=error)
