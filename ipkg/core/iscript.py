# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
IScript - package install/remove scripts

A package ships ``.ira/iscript``, a YAML document with one step list per
mode:

    install:
      - mkdir: bin
      - copy: {from: build/testpkg, to: bin/testpkg}
      - copy: README.md
      - link: {target: bin/testpkg, path: ~/.local/bin/testpkg}
    remove:
      - unlink: ~/.local/bin/testpkg

Steps:
    copy: rel | {from, to}    copy from the working dir into the install dir
    mkdir: rel                create a directory in the install dir
    link: {target, path}      symlink path -> <install dir>/target, recorded
                              in the activation log
    delete: rel               delete a path inside the install dir
    unlink: path              delete a symlink

Relative paths may not leave their base directory. Link paths expand ``~``
and environment variables.

The lifecycle engine only depends on the ScriptRunner protocol, so another
interpreter can be plugged in.
"""

import logging
import os
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

import yaml

from .activation import ActivationLog
from .exceptions import IpkgError, ScriptFailedError

logger = logging.getLogger("ipkg.iscript")


class ScriptMode(Enum):
    """Which step list of the script to run"""
    INSTALL = "install"
    REMOVE = "remove"


class ScriptRunner(Protocol):
    """Anything able to run a package script."""

    def run(
        self,
        script: Path,
        work_dir: Path,
        install_dir: Path,
        mode: ScriptMode,
    ) -> None:
        """Run the script; raise ScriptFailedError on failure."""
        ...


class StepError(Exception):
    """A single step could not be carried out"""


def _inside(base: Path, rel: Any, allow_base: bool = False) -> Path:
    if not isinstance(rel, str) or not rel:
        raise StepError(f"expected a relative path, got {rel!r}")
    if os.path.isabs(rel):
        raise StepError(f"path {rel!r} must be relative")
    base_str = os.path.normpath(os.path.abspath(base))
    target = os.path.normpath(os.path.join(base_str, rel))
    if target == base_str and allow_base:
        return Path(target)
    if not target.startswith(base_str + os.sep):
        raise StepError(f"path {rel!r} escapes {base}")
    return Path(target)


def _expand(path: Any) -> Path:
    if not isinstance(path, str) or not path:
        raise StepError(f"expected a path, got {path!r}")
    return Path(os.path.expandvars(os.path.expanduser(path)))


def _remove_path(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


class IScriptRunner:
    """
    Default ScriptRunner: interprets the YAML step language above.

    Usage:
        runner = IScriptRunner()
        runner.run(work_dir / ".ira" / "iscript", work_dir, install_dir, ScriptMode.INSTALL)
    """

    def __init__(self, metadata_dir: str = ".ira"):
        self.metadata_dir = metadata_dir

    # ==========================================================================
    # Loading
    # ==========================================================================

    @staticmethod
    def load(script: Union[str, Path]) -> Dict[str, List[Dict[str, Any]]]:
        """Parse a script file into ``{"install": [...], "remove": [...]}``."""
        script = Path(script)
        try:
            with open(script, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ScriptFailedError(f"script {script} not found", cause=e) from e
        except (OSError, yaml.YAMLError) as e:
            raise ScriptFailedError(f"reading script {script}", cause=e) from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ScriptFailedError(f"script {script} must be a mapping of step lists")

        steps: Dict[str, List[Dict[str, Any]]] = {}
        for mode in ScriptMode:
            mode_steps = data.get(mode.value) or []
            if not isinstance(mode_steps, list):
                raise ScriptFailedError(f"'{mode.value}' in {script} must be a list of steps")
            steps[mode.value] = mode_steps
        return steps

    # ==========================================================================
    # Execution
    # ==========================================================================

    def run(
        self,
        script: Path,
        work_dir: Path,
        install_dir: Path,
        mode: ScriptMode,
    ) -> None:
        steps = self.load(script)[mode.value]
        work_dir = Path(work_dir)
        install_dir = Path(install_dir)
        activation_log = ActivationLog(install_dir / self.metadata_dir)

        logger.debug(f"Running {len(steps)} {mode.value} step(s) from {script}")
        for number, step in enumerate(steps, 1):
            if not isinstance(step, dict) or len(step) != 1:
                raise ScriptFailedError(
                    f"step {number}: expected a single 'action: argument' mapping",
                    step=number,
                )
            action, arg = next(iter(step.items()))
            handler = getattr(self, f"_step_{action}", None)
            if handler is None:
                raise ScriptFailedError(f"step {number}: unknown action {action!r}", step=number)

            try:
                handler(arg, work_dir, install_dir, activation_log)
            except (StepError, OSError, IpkgError) as e:
                raise ScriptFailedError(
                    f"step {number} ({action}) failed",
                    step=number,
                    details={"script": str(script), "mode": mode.value},
                    cause=e,
                ) from e
            logger.debug(f"step {number}: {action} {arg}")

    def _step_copy(self, arg, work_dir: Path, install_dir: Path, activation_log: ActivationLog):
        if isinstance(arg, dict):
            if set(arg) != {"from", "to"}:
                raise StepError("copy takes 'from' and 'to'")
            src = _inside(work_dir, arg["from"], allow_base=True)
            dst = _inside(install_dir, arg["to"], allow_base=True)
        else:
            src = _inside(work_dir, arg)
            dst = _inside(install_dir, arg)

        if src.is_dir():
            shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)
        elif src.exists():
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
        else:
            raise StepError(f"nothing to copy at {src}")

    def _step_mkdir(self, arg, work_dir: Path, install_dir: Path, activation_log: ActivationLog):
        _inside(install_dir, arg).mkdir(parents=True, exist_ok=True)

    def _step_link(self, arg, work_dir: Path, install_dir: Path, activation_log: ActivationLog):
        if not isinstance(arg, dict) or set(arg) != {"target", "path"}:
            raise StepError("link takes 'target' and 'path'")
        target = _inside(install_dir, arg["target"])
        link = _expand(arg["path"])

        if link.is_symlink():
            link.unlink()
        elif link.exists():
            raise StepError(f"{link} exists and is not a symlink")
        link.parent.mkdir(parents=True, exist_ok=True)
        link.symlink_to(target)
        activation_log.append(target, link)

    def _step_delete(self, arg, work_dir: Path, install_dir: Path, activation_log: ActivationLog):
        _remove_path(_inside(install_dir, arg))

    def _step_unlink(self, arg, work_dir: Path, install_dir: Path, activation_log: ActivationLog):
        link = _expand(arg)
        if link.is_symlink():
            link.unlink()
        elif link.exists():
            raise StepError(f"{link} is not a symlink")
