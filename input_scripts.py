# input_scripts.py
"""
Input-injection scripts for the video workflow.

Two flavours are accepted:

* Shell scripts (*.sh / *.bash, executable files, or a #! first line) are run
  with bash. The emulator window id is exported as VICE_WINDOW; the script
  drives xdotool itself. Its exit status is reported but otherwise ignored.
* Key scripts (everything else) are parsed here and played back through
  xdotool, one command per line, '#' lines are comments:

      activate              focus the emulator window
      key space             press + release keys on the focused window
      windowkey space       same, but sent straight to the emulator window
      keydown z / keyup z   hold / release a key
      type LOAD"*",8,1      type literal text
      sleep 0.5             pause for 0.5 seconds
      repeat 3              repeat the block up to the matching `end`
        ...
      end

Key scripts are parsed before anything is launched, so a typo fails the
run up front instead of halfway through a recording.
"""

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from capture_config import CaptureError, find_tool
from process_registry import ProcessRegistry

SHELL_SUFFIXES = (".sh", ".bash")
WINDOW_ENV_VAR = "VICE_WINDOW"
POST_SCRIPT_SETTLE_SECONDS = 0.5

# command -> (min args, max args); None means unbounded
KEY_COMMANDS = {
    "activate": (0, 0),
    "key": (1, None),
    "windowkey": (1, None),
    "keydown": (1, 1),
    "keyup": (1, 1),
    "type": (1, None),
    "sleep": (1, 1),
}


class InputScriptError(CaptureError):
    """A key script could not be parsed or cannot be played back."""


@dataclass(frozen=True)
class KeyAction:
    command: str
    args: tuple[str, ...] = ()
    line_no: int = 0


@dataclass(frozen=True)
class RepeatBlock:
    count: int
    body: tuple
    line_no: int = 0


Step = Union[KeyAction, RepeatBlock]


def _parse_action(command: str, rest: str, line_no: int, source: str) -> KeyAction:
    if command not in KEY_COMMANDS:
        raise InputScriptError(f"{source}:{line_no}: unknown command '{command}'")

    # `type` keeps its text verbatim, spaces included
    args = (rest,) if command == "type" and rest else tuple(rest.split())
    min_args, max_args = KEY_COMMANDS[command]
    if len(args) < min_args or (max_args is not None and len(args) > max_args):
        raise InputScriptError(f"{source}:{line_no}: wrong number of arguments for '{command}'")

    if command == "sleep":
        try:
            seconds = float(args[0])
        except ValueError:
            raise InputScriptError(f"{source}:{line_no}: sleep needs a number, got '{args[0]}'")
        if seconds < 0:
            raise InputScriptError(f"{source}:{line_no}: sleep must not be negative")
    return KeyAction(command, args, line_no)


def parse_key_script(text: str, source: str = "<script>") -> tuple[Step, ...]:
    # Each frame: [repeat count, opening line, collected steps]
    stack: list[list] = [[1, 0, []]]

    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        command, _, rest = line.partition(" ")
        command = command.lower()
        rest = rest.strip()

        if command == "repeat":
            try:
                count = int(rest)
            except ValueError:
                raise InputScriptError(f"{source}:{line_no}: repeat needs a count, got '{rest}'")
            if count < 1:
                raise InputScriptError(f"{source}:{line_no}: repeat count must be at least 1")
            stack.append([count, line_no, []])
        elif command == "end":
            if rest:
                raise InputScriptError(f"{source}:{line_no}: 'end' takes no arguments")
            if len(stack) == 1:
                raise InputScriptError(f"{source}:{line_no}: 'end' without 'repeat'")
            count, opened_at, body = stack.pop()
            stack[-1][2].append(RepeatBlock(count, tuple(body), opened_at))
        else:
            stack[-1][2].append(_parse_action(command, rest, line_no, source))

    if len(stack) > 1:
        raise InputScriptError(f"{source}:{stack[-1][1]}: 'repeat' is never closed with 'end'")
    return tuple(stack[0][2])


class KeyScriptPlayer:
    """Plays parsed key-script steps through xdotool."""

    def __init__(self, xdotool: str, window_id: Optional[int], env: dict,
                 runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.xdotool = xdotool
        self.window_id = window_id
        self.env = env
        self.runner = runner or subprocess.run
        self.sleep = sleep

    def play(self, steps):
        for step in steps:
            if isinstance(step, RepeatBlock):
                for _ in range(step.count):
                    self.play(step.body)
            else:
                self.perform(step)

    def command_for(self, action: KeyAction) -> Optional[list[str]]:
        """xdotool argv for one action, None when there is nothing to send."""
        window = [] if self.window_id is None else ["--window", str(self.window_id)]
        if action.command == "activate":
            if self.window_id is None:
                return None
            return [self.xdotool, "windowactivate", "--sync", str(self.window_id)]
        if action.command == "key":
            return [self.xdotool, "key", *action.args]
        if action.command == "windowkey":
            return [self.xdotool, "key", *window, *action.args]
        if action.command in ("keydown", "keyup"):
            return [self.xdotool, action.command, *action.args]
        if action.command == "type":
            return [self.xdotool, "type", "--", *action.args]
        raise InputScriptError(f"line {action.line_no}: cannot play '{action.command}'")

    def perform(self, action: KeyAction):
        if action.command == "sleep":
            self.sleep(float(action.args[0]))
            return
        command = self.command_for(action)
        if command is None:
            print(f"WARNING: line {action.line_no}: no emulator window, skipping '{action.command}'")
            return
        result = self.runner(command, env=self.env, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
        if result.returncode != 0:
            stderr = (result.stderr or b"").decode('utf-8', errors='ignore').strip()
            print(f"WARNING: line {action.line_no}: xdotool {action.command} failed: {stderr}")


def is_shell_script(path: Path) -> bool:
    if path.suffix.lower() in SHELL_SUFFIXES or os.access(path, os.X_OK):
        return True
    with open(path, 'rb') as f:
        return f.read(2) == b"#!"


@dataclass(frozen=True)
class InputScript:
    path: Path
    kind: str  # "shell" or "keys"
    steps: tuple = ()
    xdotool: Optional[str] = None

    def run(self, registry: ProcessRegistry, window_id: Optional[int], env: dict):
        if self.kind == "shell":
            run_shell_script(registry, self.path, window_id, env)
        else:
            KeyScriptPlayer(self.xdotool, window_id, env).play(self.steps)


def load_input_script(path: Path) -> InputScript:
    if is_shell_script(path):
        return InputScript(path, "shell")

    try:
        text = path.read_text(encoding='utf-8')
    except UnicodeDecodeError:
        raise InputScriptError(f"{path}: not a text file")
    steps = parse_key_script(text, str(path))

    xdotool = find_tool("xdotool")
    if xdotool is None:
        raise InputScriptError("xdotool not found on PATH, needed to play key scripts")
    return InputScript(path, "keys", steps, xdotool)


def run_shell_script(registry: ProcessRegistry, path: Path, window_id: Optional[int], env: dict) -> int:
    """Run a shell input script with VICE_WINDOW set; its output is echoed with an [Input] tag."""
    script_env = dict(env)
    script_env[WINDOW_ENV_VAR] = "" if window_id is None else str(window_id)
    bash = find_tool("bash") or "bash"
    managed = registry.spawn("input script", [bash, str(path)], env=script_env,
                             stdout=subprocess.PIPE, stderr=subprocess.STDOUT)
    for line in iter(managed.popen.stdout.readline, b''):
        print(f"[Input] {line.decode('utf-8', errors='ignore').rstrip()}")
    managed.popen.stdout.close()
    code = managed.popen.wait()
    if code != 0:
        print(f"WARNING: Input script exited with code {code}")
    return code
