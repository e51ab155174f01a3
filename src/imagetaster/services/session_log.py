"""Per-session log directory and per-instance log files."""

import logging
import os
from typing import Optional, Union

from rich.console import Console

DEFAULT_CONTEXT = "taster"
SOURCE_CONTEXT = "imagetaster"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(context)s: %(message)s"


class SessionLog:
    """Owns the log directory of one tasting session."""

    def __init__(self, log_dir: str, session_id: str, console: Console):
        self.session_id = session_id
        self.directory = os.path.join(log_dir, session_id)
        self.console = console
        os.makedirs(self.directory, exist_ok=True)

    def instance_log(self, instance_name: str) -> "InstanceLog":
        path = os.path.join(self.directory, f"{instance_name}.log")
        return InstanceLog(
            path=path,
            logger_name=f"imagetaster.session-{self.session_id}-{instance_name}",
            console=self.console,
        )


class InstanceLog:
    """Writes structured entries for one instance and optionally echoes to the console."""

    def __init__(self, path: str, logger_name: str, console: Console):
        self.path = path
        self.console = console
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        self._handler = logging.FileHandler(path, encoding="utf-8")
        self._handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(self._handler)

    @staticmethod
    def resolve_level(level: Union[str, int]) -> Optional[int]:
        if isinstance(level, int):
            return level
        resolved = logging.getLevelName(str(level).upper())
        if isinstance(resolved, int):
            return resolved
        return None

    def log(
        self,
        level: Union[str, int],
        message: str,
        dup_stdout: bool = False,
        context: Optional[str] = None,
    ):
        if dup_stdout:
            self.console.print(message, markup=False, highlight=False)

        numeric_level = self.resolve_level(level)
        if numeric_level is not None:
            self.logger.log(numeric_level, message, extra={"context": context or DEFAULT_CONTEXT})
            return

        self.console.print(
            f"\n[red]{level} is not a severity. Make sure that you use the correct "
            "string for logging severity![/red]\n"
        )
        self.logger.error(
            "%s is not a logging severity name. Defaulting to INFO.",
            level,
            extra={"context": SOURCE_CONTEXT},
        )
        self.logger.info(
            message,
            extra={"context": f"{context or DEFAULT_CONTEXT} (severity={level})"},
        )

    def info(self, message: str, dup_stdout: bool = False, context: Optional[str] = None):
        self.log(logging.INFO, message, dup_stdout=dup_stdout, context=context)

    def warning(self, message: str, dup_stdout: bool = False, context: Optional[str] = None):
        self.log(logging.WARNING, message, dup_stdout=dup_stdout, context=context)

    def error(self, message: str, dup_stdout: bool = False, context: Optional[str] = None):
        self.log(logging.ERROR, message, dup_stdout=dup_stdout, context=context)

    def close(self):
        self.logger.removeHandler(self._handler)
        self._handler.close()
        # per-instance loggers are not reused, drop them from the logging registry
        logging.Logger.manager.loggerDict.pop(self.logger.name, None)
