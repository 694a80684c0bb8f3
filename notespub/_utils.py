from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import sys
from typing import Iterable, Literal

logger = logging.getLogger(__name__)


def run_logged(
    cmd: Iterable[str],
    *,
    capture_output: bool = False,
    text: bool = True,
    check: bool = True,
    echo: Literal["always", "on_error", "never"] = "always",
    **kwargs: object,
) -> subprocess.CompletedProcess[str]:
    """
    Run a subprocess, mirroring stdout/stderr to the caller even on failure.
    Returns the CompletedProcess; raises CalledProcessError when check=True.
    """
    cmd_list = list(cmd)
    logger.debug("$ %s", shlex.join(cmd_list))
    result = subprocess.run(
        cmd_list,
        capture_output=capture_output,
        text=text,
        **kwargs,  # type: ignore[arg-type]
    )
    if capture_output and (
        echo == "always" or (echo == "on_error" and result.returncode != 0)
    ):
        if result.stdout:
            sys.stdout.write(result.stdout)
        if result.stderr:
            sys.stderr.write(result.stderr)
    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(
            result.returncode, result.args, output=result.stdout, stderr=result.stderr
        )
    return result


def ensure(commands: Iterable[str]) -> None:
    for name in commands:
        if shutil.which(name) is None:
            sys.stderr.write(f"missing dependency: {name}\n")
            sys.exit(1)
