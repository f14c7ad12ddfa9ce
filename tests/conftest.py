"""Shared fixtures for apptodmg tests.

FakeToolRunner stands in for hdiutil, osascript and lipo so the build
pipeline can be exercised on any platform.
"""

import plistlib
import shlex
from pathlib import Path

import pytest

from apptodmg.builds.runner import ToolResult
from apptodmg.config import Settings


class FakeToolRunner:
    """Records tool invocations and simulates their side effects.

    Calls are keyed by hdiutil subcommand ("create", "attach", "detach",
    "detach-force", "convert") or tool name ("osascript", "lipo").
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.failures: dict[str, ToolResult] = {}
        self.lipo_output = "Non-fat file: /x is architecture: arm64\n"

    @staticmethod
    def key(cmd: list[str]) -> str:
        tool = Path(cmd[0]).name
        if tool == "hdiutil":
            if cmd[1] == "detach" and "-force" in cmd:
                return "detach-force"
            return cmd[1]
        return tool

    @property
    def keys(self) -> list[str]:
        return [self.key(c) for c in self.calls]

    def fail(
        self, key: str, exit_code: int = 1, stdout: str = "", stderr: str = "boom"
    ) -> None:
        self.failures[key] = ToolResult(exit_code, stdout, stderr, key)

    def __call__(
        self,
        cmd: list[str],
        timeout: int | None = None,
        input_text: str | None = None,
    ) -> ToolResult:
        self.calls.append(list(cmd))
        self.inputs.append(input_text)
        key = self.key(cmd)
        cmd_str = shlex.join(cmd)

        if key in self.failures:
            failure = self.failures[key]
            return ToolResult(failure.exit_code, failure.stdout, failure.stderr, cmd_str)

        if key == "create":
            volume = cmd[cmd.index("-volname") + 1]
            Path(cmd[-1]).write_bytes(f"dmg:{volume}".encode())
            return ToolResult(0, f"created: {cmd[-1]}\n", "", cmd_str)
        if key == "convert":
            output = Path(cmd[cmd.index("-o") + 1])
            output.write_bytes(b"udzo:" + Path(cmd[2]).read_bytes())
            return ToolResult(0, f"created: {output}\n", "", cmd_str)
        if key == "lipo":
            return ToolResult(0, self.lipo_output, "", cmd_str)
        return ToolResult(0, "", "", cmd_str)


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with staging under a private temp directory."""
    staging_parent = tmp_path / "staging-parent"
    staging_parent.mkdir()
    return Settings(
        tmp_dir=staging_parent,
        hdiutil_path="/usr/bin/hdiutil",
        osascript_path="/usr/bin/osascript",
        lipo_path="/usr/bin/lipo",
        finder_settle_seconds=0,
    )


def make_bundle(parent: Path, name: str = "Example", plist: dict | None = None) -> Path:
    """Create a minimal application bundle on disk."""
    app = parent / f"{name}.app"
    macos = app / "Contents" / "MacOS"
    macos.mkdir(parents=True)
    executable = macos / name
    executable.write_bytes(b"\xcf\xfa\xed\xfe fake executable")
    executable.chmod(0o755)

    resources = app / "Contents" / "Resources"
    resources.mkdir()
    (resources / "strings.txt").write_text("hello")

    if plist is None:
        plist = {
            "CFBundleIdentifier": f"com.example.{name.lower()}",
            "CFBundleShortVersionString": "1.2.3",
            "CFBundleVersion": "45",
            "LSMinimumSystemVersion": "13.0",
            "CFBundleExecutable": name,
        }
    with (app / "Contents" / "Info.plist").open("wb") as f:
        plistlib.dump(plist, f)
    return app


@pytest.fixture
def bundle(tmp_path: Path) -> Path:
    """A minimal Example.app bundle."""
    return make_bundle(tmp_path)


@pytest.fixture
def bundle_factory():
    """Factory for bundles with custom names or Info.plist contents."""
    return make_bundle
