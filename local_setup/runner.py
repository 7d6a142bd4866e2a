"""Thin wrapper around subprocess used for every external tool call."""

import logging
import os
import shlex
import shutil
import subprocess
from typing import Dict, List, Optional

from local_setup.logs import BootstrapError


class CommandRunner:
    def __init__(self, logger: logging.Logger, env: Optional[Dict[str, str]] = None) -> None:
        self.logger = logger
        self.env = dict(env if env is not None else os.environ)

    def has_command(self, name: str) -> bool:
        return shutil.which(name, path=self.env.get("PATH")) is not None

    def run(
        self,
        cmd: List[str],
        *,
        check: bool = True,
        capture_output: bool = False,
        env: Optional[Dict[str, str]] = None,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess[str]:
        merged_env = self.env.copy()
        if env:
            merged_env.update(env)
        # Equivalent of `set -x` when DEBUG=true
        self.logger.debug(f"+ {shlex.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                check=check,
                text=True,
                capture_output=capture_output,
                env=merged_env,
                input=input,
            )
        except OSError as exc:
            raise BootstrapError(f"[Exec] Cannot run command cmd={cmd[0]} detail={exc.strerror or exc}") from exc

    def succeeds(self, cmd: List[str]) -> bool:
        """Run a check command quietly and report whether it exited 0."""
        try:
            return self.run(cmd, check=False, capture_output=True).returncode == 0
        except BootstrapError:
            return False
