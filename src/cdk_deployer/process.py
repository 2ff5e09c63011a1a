"""
Subprocess execution for synthesis and docker commands.

Usage:
    from cdk_deployer.process import SubprocessRunner

    runner = SubprocessRunner()
    exit_code = runner.run(["node", "bin/app.js"], environment=env, cwd="/work/my-app")
"""

import logging
import subprocess
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class SubprocessRunner:
    """
    Runs commands with ``subprocess.Popen`` and streams their output.

    Standard output and standard error are merged and forwarded line by line
    to the logger, so long-running commands (synthesis, docker builds) show
    progress while they run.
    """

    def __init__(self, log_level: int = logging.INFO):
        self.log_level = log_level

    def run(
        self,
        command: List[str],
        environment: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        input_text: Optional[str] = None
    ) -> int:
        """
        Run a command to completion.

        Args:
            command: Executable and arguments
            environment: Full environment for the child; inherits ours when None
            cwd: Working directory for the child
            input_text: Text written to the child's stdin, which is then closed

        Returns:
            The exit code of the process (127 if the executable does not exist).
        """
        logger.debug(f"Running: {' '.join(command)}")

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=environment,
                cwd=cwd,
                text=True,
                bufsize=1
            )
        except FileNotFoundError:
            logger.error(f"Command not found: {command[0]}")
            return 127

        if input_text is not None:
            process.stdin.write(input_text)
            process.stdin.close()

        for line in process.stdout:
            logger.log(self.log_level, line.rstrip("\n"))

        process.wait()
        logger.debug(f"Exit code {process.returncode}: {command[0]}")
        return process.returncode
