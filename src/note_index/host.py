"""Bridge to the host note application through AppleScript.

Only two commands are used here: ``getVersion`` for feature gating and
``embedText`` for embedding query text with the host's built-in key. Both run
through ``osascript`` in a subprocess with a hard timeout.
"""

from __future__ import annotations

import json
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from note_index.errors import HostScriptError

APP_NAME = "NotePlan"
SCRIPT_TIMEOUT_SECONDS = 15.0
PROBE_TIMEOUT_SECONDS = 3.0
VERSION_CACHE_TTL_SECONDS = 60.0

# First host build that ships the embedText command
MIN_BUILD_EMBED_TEXT = 1491

KNOWN_APP_PATHS = (
    Path("/Applications/NotePlan 3.app"),
    Path("/Applications/NotePlan.app"),
    Path.home() / "Applications/NotePlan 3.app",
    Path.home() / "Applications/NotePlan.app",
    Path("/Applications/Setapp/NotePlan 3.app"),
    Path("/Applications/Setapp/NotePlan.app"),
)

_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
_LEADING_DIGITS = re.compile(r"\d+")


@dataclass(frozen=True)
class HostVersion:
    version: str
    build: int
    source: str  # "applescript" | "plist" | "unknown"


UNKNOWN_VERSION = HostVersion(version="0.0.0", build=0, source="unknown")


def escape_applescript(text: str) -> str:
    """Escape text for embedding in a double-quoted AppleScript string.

    Control characters (newlines included) become spaces.
    """
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return _CONTROL_CHARS.sub(" ", escaped)


def run_script(script: str, timeout: float = SCRIPT_TIMEOUT_SECONDS) -> str:
    """Run an AppleScript snippet and return its trimmed stdout.

    Raises:
        HostScriptError: On timeout, a missing ``osascript`` binary, or a
            non-zero exit (stderr is used as the message)
    """
    try:
        proc = subprocess.run(
            ["osascript", "-e", script], capture_output=True, text=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        raise HostScriptError("AppleScript timed out") from e
    except OSError as e:
        raise HostScriptError(f"AppleScript unavailable: {e}") from e

    if proc.returncode != 0:
        raise HostScriptError(proc.stderr.strip() or "AppleScript execution failed")
    return proc.stdout.strip()


class HostApp:
    """Version-gated access to the host application's scripting hooks."""

    def __init__(self, app_name: str = APP_NAME, app_paths: tuple[Path, ...] = KNOWN_APP_PATHS):
        self.app_name = app_name
        self.app_paths = app_paths
        self._cached_version: HostVersion | None = None
        self._cached_at = 0.0

    def version(self, force_refresh: bool = False) -> HostVersion:
        """Detected host version, cached for 60 seconds."""
        now = time.monotonic()
        if (
            not force_refresh
            and self._cached_version is not None
            and now - self._cached_at < VERSION_CACHE_TTL_SECONDS
        ):
            return self._cached_version

        detected = self._detect_via_applescript() or self._detect_via_plist() or UNKNOWN_VERSION
        logger.debug(f"Host version {detected.version} (build {detected.build}, {detected.source})")
        self._cached_version = detected
        self._cached_at = now
        return detected

    def supports_embed_text(self) -> bool:
        return self.version().build >= MIN_BUILD_EMBED_TEXT

    def _detect_via_applescript(self) -> HostVersion | None:
        try:
            # Never launch the app as a side effect of probing
            running = run_script(f'application "{self.app_name}" is running', PROBE_TIMEOUT_SECONDS)
            if running != "true":
                return None
            raw = run_script(
                f'tell application "{self.app_name}" to getVersion', PROBE_TIMEOUT_SECONDS
            )
            parsed = json.loads(raw)
        except (HostScriptError, ValueError):
            return None
        if isinstance(parsed, dict) and isinstance(parsed.get("version"), str):
            build = parsed.get("build")
            if isinstance(build, int):
                return HostVersion(version=parsed["version"], build=build, source="applescript")
        return None

    def _detect_via_plist(self) -> HostVersion | None:
        for app_path in self.app_paths:
            if not (app_path / "Contents/Info.plist").exists():
                continue
            domain = str(app_path / "Contents/Info")
            try:
                version = _read_default(domain, "CFBundleShortVersionString")
                build_str = _read_default(domain, "CFBundleVersion")
            except HostScriptError:
                continue
            if version:
                return HostVersion(version=version, build=parse_build(build_str), source="plist")
        return None

    def embed_text(self, text: str) -> list[float]:
        """Embed ``text`` with the host's ``embedText`` command.

        Raises:
            HostScriptError: When the script fails or the reply has no
                embedding array
        """
        raw = run_script(
            f'tell application "{self.app_name}" to embedText for "{escape_applescript(text)}"'
        )
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise HostScriptError(f"Unexpected embedText response: {raw[:120]}") from e
        if isinstance(parsed, dict) and parsed.get("success") is True:
            embedding = parsed.get("embedding")
            if isinstance(embedding, list):
                try:
                    return [float(v) for v in embedding]
                except (TypeError, ValueError) as e:
                    raise HostScriptError("embedText returned a non-numeric embedding") from e
        error = parsed.get("error") if isinstance(parsed, dict) else None
        raise HostScriptError(error or "Unexpected embedText response: missing embedding array")


def parse_build(value: str) -> int:
    """Leading digits of a build string ("1491.1" is 1491); 0 when there are none."""
    match = _LEADING_DIGITS.match(value.strip())
    return int(match.group()) if match else 0


def _read_default(domain: str, key: str) -> str:
    try:
        proc = subprocess.run(
            ["defaults", "read", domain, key],
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_SECONDS,
        )
    except (subprocess.TimeoutExpired, OSError) as e:
        raise HostScriptError(f"Could not read {key} from {domain}") from e
    if proc.returncode != 0:
        raise HostScriptError(proc.stderr.strip() or f"Could not read {key} from {domain}")
    return proc.stdout.strip()
