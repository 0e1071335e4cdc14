# assembler.py
"""ACME assembly of .asm inputs into runnable CBM .prg files."""

import shlex
import subprocess
from pathlib import Path
from typing import Callable, Optional, Sequence

from capture_config import CaptureError, CaptureJob, find_tool

ASSEMBLER_FORMAT = "cbm"  # two-byte load address header, what VICE autostarts


class AssemblyError(CaptureError):
    """The assembler is missing or rejected the source."""


def assemble_command(acme: str, source: Path, output: Path, defines: Sequence[str] = ()) -> list[str]:
    command = [acme, "-f", ASSEMBLER_FORMAT, "-o", str(output)]
    command.extend(f"-D{define}" for define in defines)
    command.append(str(source))
    return command


def assemble(source: Path, output: Path, defines: Sequence[str] = (),
             runner: Optional[Callable[..., subprocess.CompletedProcess]] = None) -> Path:
    runner = runner or subprocess.run
    acme = find_tool("acme")
    if acme is None:
        raise AssemblyError("acme not found on PATH")

    command = assemble_command(acme, source, output, defines)
    print(f"[Assembler] {shlex.join(command)}")
    result = runner(command, capture_output=True, text=True)
    for stream in (result.stdout, result.stderr):
        if stream and stream.strip():
            print(stream.rstrip())
    if result.returncode != 0:
        raise AssemblyError("Assembly failed")
    if not output.is_file():
        raise AssemblyError(f"Assembler produced no output file: {output}")
    return output


def prepare_program(job: CaptureJob, scratch_dir: Path,
                    runner: Optional[Callable[..., subprocess.CompletedProcess]] = None) -> Path:
    """The .prg to autostart: the input itself, or a scratch build of it."""
    if not job.is_source:
        return job.input_path
    return assemble(job.input_path, scratch_dir / f"{job.input_path.stem}.prg", job.defines, runner)
