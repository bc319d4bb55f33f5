"""
Utility functions for driving OpenFOAM utilities
"""

import subprocess
import re
import logging
from pathlib import Path

import psutil

logger = logging.getLogger(__name__)

# Utilities that get a virtual memory ceiling inside the shell
MEMORY_LIMITED_COMMANDS = ('snappyHexMesh', 'simpleFoam', 'pimpleFoam')

def run_command(cmd, cwd=None, env_setup=None, timeout=None, max_memory_gb=4):
    """
    Run OpenFOAM command with proper environment setup and resource management

    Args:
        cmd: Command to run (list or string)
        cwd: Working directory
        env_setup: OpenFOAM environment setup command (e.g. "source .../bashrc")
        timeout: Timeout in seconds (None or 0 lets the command run to completion)
        max_memory_gb: Memory the host must have free before the command starts
    """
    # Check available system resources before starting
    available_memory_gb = psutil.virtual_memory().available / (1024**3)
    if available_memory_gb < max_memory_gb:
        raise RuntimeError(f"Insufficient memory: need {max_memory_gb}GB, have {available_memory_gb:.1f}GB")

    if env_setup:
        cmd_str = " ".join(str(c) for c in cmd) if isinstance(cmd, list) else cmd

        if any(of_cmd in cmd_str for of_cmd in MEMORY_LIMITED_COMMANDS):
            cmd_str = f"ulimit -v {int(max_memory_gb * 1024 * 1024)} && {cmd_str}"

        cmd = ["bash", "-c", f"{env_setup} && {cmd_str}"]

    try:
        return subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout if timeout and timeout > 0 else None,
            shell=isinstance(cmd, str) and not env_setup
        )
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"Command timed out after {timeout} seconds: {cmd}")
    except OSError as e:
        raise RuntimeError(f"Command failed: {e}")

def run_logged(cmd, case_dir, log_name, env_setup=None, timeout=None, max_memory_gb=4):
    """Run a utility and keep its combined output under <case>/logs/log.<log_name>"""
    case_dir = Path(case_dir)
    log_file = case_dir / "logs" / f"log.{log_name}"
    log_file.parent.mkdir(parents=True, exist_ok=True)

    logger.debug(f"Running {cmd} in {case_dir}")
    result = run_command(cmd, cwd=case_dir, env_setup=env_setup,
                         timeout=timeout, max_memory_gb=max_memory_gb)
    log_file.write_text((result.stdout or "") + (result.stderr or ""))
    return result

def check_mesh_quality(mesh_dir, openfoam_env, max_memory_gb=4, timeout=None, patch_names=()):
    """
    Run checkMesh and parse quality metrics

    Args:
        mesh_dir: Path to the case directory
        openfoam_env: OpenFOAM environment setup command
        max_memory_gb: Memory guard passed to run_command
        timeout: Timeout in seconds
        patch_names: Patch names whose face counts should be extracted
    """
    mesh_dir = Path(mesh_dir)
    result = run_logged("checkMesh", mesh_dir, "checkMesh", env_setup=openfoam_env,
                        timeout=timeout, max_memory_gb=max_memory_gb)
    return parse_check_mesh(result.stdout + result.stderr, result.returncode, patch_names)

def parse_check_mesh(output, returncode=0, patch_names=()):
    """Parse checkMesh text into a metrics dictionary"""
    metrics = {
        "maxNonOrtho": 0.0,
        "maxSkewness": 0.0,
        "maxAspectRatio": 0.0,
        "cells": 0,
        "meshOK": False,
        "patch_nFaces": {}
    }

    match = re.search(r"Max non-orthogonality = ([\d.eE+-]+)", output)
    if match:
        metrics["maxNonOrtho"] = float(match.group(1))

    match = re.search(r"Max skewness = ([\d.eE+-]+)", output)
    if match:
        metrics["maxSkewness"] = float(match.group(1))

    match = re.search(r"aspect ratio = ([\d.eE+-]+)", output)
    if match:
        metrics["maxAspectRatio"] = float(match.group(1))

    match = re.search(r"^\s*cells:\s+(\d+)", output, re.MULTILINE)
    if match:
        metrics["cells"] = int(match.group(1))

    # checkMesh patch table: "    PoreWallSurface   152523   154493  ..."
    for name in patch_names:
        patch_match = re.search(rf"^\s*{re.escape(name)}\s+(\d+)\s+\d+", output, re.MULTILINE)
        if patch_match:
            metrics["patch_nFaces"][name] = int(patch_match.group(1))

    # Trust OpenFOAM's checkMesh to determine if mesh is acceptable
    metrics["meshOK"] = "Mesh OK" in output and returncode == 0

    return metrics
