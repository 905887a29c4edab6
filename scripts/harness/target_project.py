"""The project under test: its configuration file, build and built binary.

The configuration file is a flat ``key=value`` file in ISO-8859-1, the
encoding Java reads ``.properties`` files in. Only the feature flag line is
rewritten; every other line is kept exactly as it was.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import dotenv_values, set_key

from .logger import logger

if TYPE_CHECKING:
    from collections.abc import Iterator

    from .models import HarnessConfig
    from .process_runner import ProcessRunner

PROPERTIES_ENCODING = "latin-1"


def resolve_inside(root: Path, relative: str, key: str) -> Path:
    """Resolve a configured path, refusing anything outside the project root.

    Returns:
        The resolved absolute path.

    Raises:
        ValueError: If the path is absolute, escapes the root or is the root itself.
    """
    base = root.resolve()
    path = (base / relative).resolve()
    if Path(relative).is_absolute() or path == base or not path.is_relative_to(base):
        msg = f"{key} must be a path inside {base}, got {relative!r}"
        raise ValueError(msg)
    return path


class TargetProject:
    """Paths and operations for the service project being benchmarked."""

    def __init__(
        self,
        root: Path,
        properties_path: str = "src/main/resources/application.properties",
        flag_key: str = "spring.threads.virtual.enabled",
        build_wrapper: str = "gradlew",
        build_task: str = "nativeCompile",
        build_dir: str = "build",
        binary_path: str = "build/native/nativeCompile/service",
        build_timeout: float | None = None,
    ) -> None:
        """Initialise the project rooted at ``root``.

        Raises:
            ValueError: If a layout path points outside the project root.
        """
        self.root = Path(root)
        self.properties = resolve_inside(self.root, properties_path, "PROPERTIES_PATH")
        self.flag_key = flag_key
        self.build_wrapper = self.root / build_wrapper
        self.build_task = build_task
        # clean() deletes this tree, so it must never leave the project
        self.build_dir = resolve_inside(self.root, build_dir, "BUILD_DIR")
        self.binary_path = resolve_inside(self.root, binary_path, "BINARY_PATH")
        self.build_timeout = build_timeout

    @classmethod
    def from_config(cls, config: HarnessConfig) -> TargetProject:
        """Create the project description from harness configuration.

        Returns:
            A TargetProject for ``config.root``.
        """
        return cls(
            root=config.root,
            properties_path=config.properties_path,
            flag_key=config.flag_key,
            build_wrapper=config.build_wrapper,
            build_task=config.build_task,
            build_dir=config.build_dir,
            binary_path=config.binary_path,
            build_timeout=config.build_timeout,
        )

    def configure(self, flag_enabled: bool) -> None:
        """Set the feature flag in the configuration file.

        Lines the rewrite would not recognise as the flag are refused before
        the file is touched, and the value is read back after writing, so an
        unusual file fails here instead of building the wrong variant.

        Raises:
            FileNotFoundError: If the configuration file does not exist.
            ValueError: If the flag is defined in a form the rewrite cannot
                update in place, or the written value does not read back.
        """
        if not self.properties.is_file():
            msg = f"Configuration file not found: {self.properties}"
            raise FileNotFoundError(msg)

        definitions = list(self._definitions())
        for line_number, separator in definitions:
            if separator != "=":
                msg = (
                    f"{self.properties.name}:{line_number} defines {self.flag_key} without '=', "
                    "rewrite it as key=value"
                )
                raise ValueError(msg)
        if len(definitions) > 1:
            lines = ", ".join(str(line_number) for line_number, _ in definitions)
            msg = (
                f"{self.flag_key} is defined more than once in {self.properties.name} "
                f"(lines {lines})"
            )
            raise ValueError(msg)
        if definitions and self.flag_key not in self._values():
            # An unterminated quote on an earlier line has swallowed the flag
            msg = f"{self.properties.name}:{definitions[0][0]} is not parsed as {self.flag_key}"
            raise ValueError(msg)

        value = "true" if flag_enabled else "false"
        logger.info("📝 Setting %s=%s in %s", self.flag_key, value, self.properties.name)
        set_key(
            self.properties, self.flag_key, value, quote_mode="never", encoding=PROPERTIES_ENCODING
        )

        if self.read_flag() is not flag_enabled:
            msg = f"{self.flag_key}={value} did not take effect in {self.properties}"
            raise ValueError(msg)

    def _definitions(self) -> Iterator[tuple[int, str]]:
        """Yield the line number and separator of every line that sets the flag.

        The separator is ``=``, ``:`` or ``" "`` for a whitespace separated value.
        """
        text = self.properties.read_text(encoding=PROPERTIES_ENCODING)
        for line_number, line in enumerate(text.splitlines(), start=1):
            stripped = line.lstrip()
            if not stripped.startswith(self.flag_key):
                continue
            rest = stripped[len(self.flag_key) :]
            if rest[:1] not in {"", "=", ":", " ", "\t", "\f"}:
                continue  # a longer key sharing the prefix
            rest = rest.lstrip(" \t\f")
            yield line_number, rest[:1] if rest[:1] in {"=", ":"} else " "

    def _values(self) -> dict[str, str | None]:
        return dotenv_values(self.properties, interpolate=False, encoding=PROPERTIES_ENCODING)

    def read_flag(self) -> bool | None:
        """Read the feature flag back from the configuration file.

        Returns:
            The flag value, or None when the key is absent.
        """
        value = self._values().get(self.flag_key)
        if value is None:
            return None
        return value.strip().lower() == "true"

    def clean(self) -> None:
        """Delete the build output so the next launch uses a fresh artifact."""
        if self.build_dir.exists():
            logger.info("🗑️ Deleting %s", self.build_dir)
            shutil.rmtree(self.build_dir)

    def build(self, runner: ProcessRunner, stdout_sink: Path, stderr_sink: Path) -> None:
        """Compile the project with the build wrapper.

        Raises:
            ProcessFailure: If the build exits with a non-zero code.
        """
        logger.info("🔨 Building with %s %s", self.build_wrapper.name, self.build_task)
        runner.run(
            self.root,
            self.build_wrapper.resolve(),
            [self.build_task],
            stdout_sink,
            stderr_sink,
            timeout=self.build_timeout,
        )

    def require_binary(self) -> Path:
        """Check the built service binary exists.

        Returns:
            The absolute binary path.

        Raises:
            FileNotFoundError: If the build did not produce the binary.
        """
        if not self.binary_path.is_file():
            msg = f"The service binary was not built: {self.binary_path}"
            raise FileNotFoundError(msg)
        return self.binary_path.resolve()
