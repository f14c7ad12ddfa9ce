"""Tests for builds/service.py module.

Runs the whole pipeline against the fake tool runner. Every test checks
that the staging parent is left empty, whatever the outcome.
"""

import asyncio
import hashlib
import os
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from apptodmg.builds.models import BuildRequest, LayoutSpec, ReadmeSource
from apptodmg.builds.service import build, build_sync, compute_file_hash
from apptodmg.errors import (
    CopyFailedError,
    FileWriteFailedError,
    ImageToolError,
    InvalidBundleError,
    RenderFailedError,
    ShortcutFailedError,
    StylingFailedError,
)
from apptodmg.types import BuildStage



class SnapshotRunner:
    """Wraps the fake runner and records the staged tree at create time."""

    def __init__(self, inner):
        self.inner = inner
        self.listing: list[str] = []
        self.files: dict[str, str] = {}

    def __call__(self, cmd, timeout=None, input_text=None):
        if self.inner.key(cmd) == "create":
            source = Path(cmd[cmd.index("-srcfolder") + 1])
            self.listing = sorted(os.listdir(source))
            for name in self.listing:
                path = source / name
                if path.is_file() and not path.is_symlink():
                    self.files[name] = path.read_text(encoding="utf-8")
        return self.inner(cmd, timeout=timeout, input_text=input_text)


@pytest.fixture
def dist(tmp_path):
    directory = tmp_path / "dist"
    directory.mkdir()
    return directory


@pytest.fixture
def snapshot(fake_runner):
    return SnapshotRunner(fake_runner)


def _request(bundle, dist, **kwargs):
    return BuildRequest(source=bundle, destination=dist / "Example.dmg", **kwargs)


def _assert_no_staging(settings):
    assert list(settings.tmp_dir.iterdir()) == []


class TestUnstyledBuild:
    """Tests for a successful unstyled build."""

    def test_produces_single_artifact(self, bundle, dist, settings, fake_runner):
        """Should write exactly one file and clean up staging."""
        result = build_sync(_request(bundle, dist), settings=settings, tool_runner=fake_runner)

        assert result.success is True
        assert result.error is None
        assert result.artifact_path == dist / "Example.dmg"
        assert list(dist.iterdir()) == [dist / "Example.dmg"]
        assert fake_runner.keys == ["create"]
        _assert_no_staging(settings)

    def test_result_metadata(self, bundle, dist, settings, fake_runner):
        result = build_sync(_request(bundle, dist), settings=settings, tool_runner=fake_runner)

        data = (dist / "Example.dmg").read_bytes()
        assert result.size_bytes == len(data)
        assert result.sha256 == hashlib.sha256(data).hexdigest()
        assert result.finished_at >= result.started_at
        assert result.to_dict()["artifact_path"] == str(dist / "Example.dmg")

    def test_staged_contents(self, bundle, dist, settings, snapshot):
        """The image source should hold the bundle and the shortcut only."""
        build_sync(_request(bundle, dist), settings=settings, tool_runner=snapshot)

        assert snapshot.listing == ["Applications", "Example.app"]

    def test_without_shortcut(self, bundle, dist, settings, snapshot):
        build_sync(
            _request(bundle, dist, include_shortcut=False),
            settings=settings,
            tool_runner=snapshot,
        )
        assert snapshot.listing == ["Example.app"]

    def test_volume_name(self, bundle, dist, settings, fake_runner):
        build_sync(
            _request(bundle, dist, volume_name="Example Installer"),
            settings=settings,
            tool_runner=fake_runner,
        )
        create = fake_runner.calls[0]
        assert create[create.index("-volname") + 1] == "Example Installer"

    def test_overwrites_existing_destination(self, bundle, dist, settings, fake_runner):
        """A stale image at the destination should be replaced."""
        (dist / "Example.dmg").write_bytes(b"stale")

        result = build_sync(_request(bundle, dist), settings=settings, tool_runner=fake_runner)

        assert result.success is True
        assert (dist / "Example.dmg").read_bytes() == b"dmg:Example"

    def test_source_bundle_untouched(self, bundle, dist, settings, fake_runner):
        before = sorted(p.relative_to(bundle) for p in bundle.rglob("*"))
        build_sync(_request(bundle, dist), settings=settings, tool_runner=fake_runner)
        assert sorted(p.relative_to(bundle) for p in bundle.rglob("*")) == before

    def test_progress_stages(self, bundle, dist, settings, fake_runner):
        events = []
        build_sync(
            _request(bundle, dist), events.append, settings=settings, tool_runner=fake_runner
        )

        stages = [e.stage for e in events if not e.tool_output]
        assert stages == [
            BuildStage.VALIDATING,
            BuildStage.STAGING,
            BuildStage.COPYING_BUNDLE,
            BuildStage.CREATING_SHORTCUT,
            BuildStage.CREATING_IMAGE,
            BuildStage.COMPLETE,
        ]
        assert events[-1].message == "DMG created successfully!"
        assert any(e.tool_output and "created:" in e.message for e in events)


class TestDocuments:
    """Tests for README and system requirements documents."""

    def test_readme_text(self, bundle, dist, settings, snapshot):
        build_sync(
            _request(bundle, dist, readme=ReadmeSource.from_text("Drag to install.")),
            settings=settings,
            tool_runner=snapshot,
        )
        assert snapshot.files["README.txt"] == "Drag to install."

    def test_empty_readme_text(self, bundle, dist, settings, snapshot):
        build_sync(
            _request(bundle, dist, readme=ReadmeSource.from_text("")),
            settings=settings,
            tool_runner=snapshot,
        )
        assert "README.txt" not in snapshot.listing

    def test_readme_file(self, bundle, dist, settings, snapshot, tmp_path):
        notes = tmp_path / "notes.md"
        notes.write_text("# Notes\n", encoding="utf-8")

        build_sync(
            _request(bundle, dist, readme=ReadmeSource.from_file(notes)),
            settings=settings,
            tool_runner=snapshot,
        )
        assert snapshot.files["README.txt"] == "# Notes\n"

    def test_generated_system_requirements(self, bundle, dist, settings, snapshot):
        build_sync(
            _request(bundle, dist, include_system_requirements=True),
            settings=settings,
            tool_runner=snapshot,
        )

        text = snapshot.files["System Requirements.txt"]
        assert text.startswith("System Requirements\n")
        assert "Minimum macOS Version: 13.0" in text
        assert "Architecture: Apple Silicon" in text
        assert "App Version: 1.2.3" in text
        assert "Build: 45" in text

    def test_supplied_system_requirements(self, bundle, dist, settings, snapshot):
        build_sync(
            _request(
                bundle,
                dist,
                include_system_requirements=True,
                system_requirements_text="Needs a Mac.",
            ),
            settings=settings,
            tool_runner=snapshot,
        )
        assert snapshot.files["System Requirements.txt"] == "Needs a Mac."
        assert "lipo" not in snapshot.inner.keys

    def test_requirements_without_plist(self, tmp_path, dist, settings, snapshot, bundle_factory):
        bundle = bundle_factory(tmp_path, name="Bare")
        (bundle / "Contents" / "Info.plist").unlink()

        result = build_sync(
            BuildRequest(
                source=bundle,
                destination=dist / "Bare.dmg",
                include_system_requirements=True,
            ),
            settings=settings,
            tool_runner=snapshot,
        )

        assert result.success is True
        assert "Architecture: Unknown" in snapshot.files["System Requirements.txt"]


class TestFailures:
    """Tests for failed builds: typed error, no artifact, no staging left."""

    def test_invalid_bundle(self, tmp_path, dist, settings, fake_runner):
        """Should fail before touching the filesystem or any tool."""
        result = build_sync(
            BuildRequest(source=tmp_path / "Missing.app", destination=dist / "Missing.dmg"),
            settings=settings,
            tool_runner=fake_runner,
        )

        assert result.success is False
        assert isinstance(result.error, InvalidBundleError)
        assert result.artifact_path is None
        assert fake_runner.calls == []
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)

    def test_plain_directory_rejected(self, tmp_path, dist, settings, fake_runner):
        folder = tmp_path / "Folder"
        folder.mkdir()
        result = build_sync(
            BuildRequest(source=folder, destination=dist / "Folder.dmg"),
            settings=settings,
            tool_runner=fake_runner,
        )
        assert isinstance(result.error, InvalidBundleError)

    def test_copy_failure(self, bundle, dist, settings, fake_runner):
        with patch(
            "apptodmg.builds.staging.shutil.copytree", side_effect=OSError("disk full")
        ):
            result = build_sync(
                _request(bundle, dist), settings=settings, tool_runner=fake_runner
            )

        assert isinstance(result.error, CopyFailedError)
        assert fake_runner.calls == []
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)

    def test_shortcut_failure(self, bundle, dist, settings, fake_runner):
        with patch.object(Path, "symlink_to", side_effect=OSError("read-only")):
            result = build_sync(
                _request(bundle, dist), settings=settings, tool_runner=fake_runner
            )

        assert isinstance(result.error, ShortcutFailedError)
        assert fake_runner.calls == []
        _assert_no_staging(settings)

    def test_document_write_failure(self, bundle, dist, settings, fake_runner):
        with patch("apptodmg.builds.staging.os.replace", side_effect=OSError("no space")):
            result = build_sync(
                _request(bundle, dist, include_system_requirements=True),
                settings=settings,
                tool_runner=fake_runner,
            )

        assert isinstance(result.error, FileWriteFailedError)
        assert result.error.filename == "System Requirements.txt"
        assert "create" not in fake_runner.keys
        _assert_no_staging(settings)

    def test_missing_readme_file(self, bundle, dist, settings, fake_runner, tmp_path):
        result = build_sync(
            _request(bundle, dist, readme=ReadmeSource.from_file(tmp_path / "nope.txt")),
            settings=settings,
            tool_runner=fake_runner,
        )
        assert isinstance(result.error, FileWriteFailedError)
        assert result.error.filename == "README.txt"
        _assert_no_staging(settings)

    def test_image_tool_failure(self, bundle, dist, settings, fake_runner):
        """Should surface the exit code and full tool output."""
        fake_runner.fail("create", exit_code=1, stdout="step 1\n", stderr="hdiutil: failed\n")
        events = []

        result = build_sync(
            _request(bundle, dist), events.append, settings=settings, tool_runner=fake_runner
        )

        assert isinstance(result.error, ImageToolError)
        assert result.error.exit_code == 1
        assert result.error.output == "step 1\nhdiutil: failed\n"
        assert result.to_dict()["error"]["code"] == "image_tool_failed"
        assert events[-1].stage == BuildStage.FAILED
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)

    def test_tool_failure_removes_stale_destination(self, bundle, dist, settings, fake_runner):
        (dist / "Example.dmg").write_bytes(b"stale")
        fake_runner.fail("create")

        build_sync(_request(bundle, dist), settings=settings, tool_runner=fake_runner)

        assert not (dist / "Example.dmg").exists()


class TestStyledBuild:
    """Tests for the styled path."""

    def test_tool_sequence(self, bundle, dist, settings, fake_runner):
        """Should create, attach, style, detach and convert in order."""
        result = build_sync(
            _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
        )

        assert result.success is True
        assert result.styled is True
        assert fake_runner.keys == ["create", "attach", "osascript", "detach", "convert"]
        assert (dist / "Example.dmg").read_bytes() == b"udzo:dmg:Example"
        assert list(dist.iterdir()) == [dist / "Example.dmg"]
        _assert_no_staging(settings)

    def test_mount_inside_staging(self, bundle, dist, settings, fake_runner):
        build_sync(
            _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
        )

        attach = fake_runner.calls[1]
        mount_point = Path(attach[attach.index("-mountpoint") + 1])
        assert mount_point.parent.parent.parent == settings.tmp_dir
        assert mount_point.name == "Example"
        assert fake_runner.calls[3][2] == str(mount_point)

    def test_layout_reaches_script(self, bundle, dist, settings, fake_runner):
        layout = LayoutSpec(icon_size=96, source_position=(120, 180), target_position=(420, 180))

        build_sync(
            _request(bundle, dist, styled=True, layout=layout),
            settings=settings,
            tool_runner=fake_runner,
        )

        script = fake_runner.inputs[2]
        assert "set icon size of viewOptions to 96" in script
        assert 'item "Example.app" of container window to {120, 180}' in script
        assert 'item "Applications" of container window to {420, 180}' in script

    def test_progress_stages(self, bundle, dist, settings, fake_runner):
        events = []
        build_sync(
            _request(bundle, dist, styled=True, include_shortcut=False),
            events.append,
            settings=settings,
            tool_runner=fake_runner,
        )

        stages = [e.stage for e in events if not e.tool_output]
        assert stages == [
            BuildStage.VALIDATING,
            BuildStage.STAGING,
            BuildStage.COPYING_BUNDLE,
            BuildStage.CREATING_IMAGE,
            BuildStage.MOUNTING,
            BuildStage.STYLING,
            BuildStage.UNMOUNTING,
            BuildStage.COMPRESSING,
            BuildStage.COMPLETE,
        ]
        fractions = [e.fraction for e in events]
        assert fractions == sorted(fractions)

    def test_styling_failure_leaves_unstyled_fallback(self, bundle, dist, settings, fake_runner):
        """Styling errors still fail the build but keep a plain image."""
        fake_runner.fail("osascript", stderr="Not authorized to send Apple events")

        result = build_sync(
            _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
        )

        assert result.success is False
        assert isinstance(result.error, StylingFailedError)
        assert result.error.fallback_artifact == dist / "Example.dmg"
        assert (dist / "Example.dmg").exists()
        assert fake_runner.keys == ["create", "attach", "osascript", "detach", "convert"]
        _assert_no_staging(settings)

    def test_styling_failure_with_stuck_volume(self, bundle, dist, settings, fake_runner):
        fake_runner.fail("osascript")
        fake_runner.fail("detach")
        fake_runner.fail("detach-force")

        result = build_sync(
            _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
        )

        assert isinstance(result.error, StylingFailedError)
        assert result.error.fallback_artifact is None
        assert "convert" not in fake_runner.keys
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)

    def test_detach_failure_forces_and_fails(self, bundle, dist, settings, fake_runner):
        fake_runner.fail("detach", exit_code=16, stderr="Resource busy")

        result = build_sync(
            _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
        )

        assert isinstance(result.error, ImageToolError)
        assert result.error.exit_code == 16
        assert fake_runner.keys[-2:] == ["detach", "detach-force"]
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)


    def test_narrow_layout_fails_before_imaging(self, bundle, dist, settings, fake_runner):
        """An arrow that cannot fit should be caught before any hdiutil call."""
        layout = LayoutSpec(source_position=(200, 190), target_position=(340, 190))

        result = build_sync(
            _request(bundle, dist, styled=True, layout=layout),
            settings=settings,
            tool_runner=fake_runner,
        )

        assert isinstance(result.error, RenderFailedError)
        assert fake_runner.calls == []
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)

    def test_render_failure_while_mounted_detaches(self, bundle, dist, settings, fake_runner):
        """A render error during styling should still detach and clean up."""
        with patch(
            "apptodmg.builds.image.DiskImageBuilder.style",
            side_effect=RenderFailedError("cannot encode background.png"),
        ):
            result = build_sync(
                _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
            )

        assert isinstance(result.error, RenderFailedError)
        assert fake_runner.keys == ["create", "attach", "detach"]
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)
    def test_convert_failure(self, bundle, dist, settings, fake_runner):
        fake_runner.fail("convert", exit_code=2, stderr="convert failed")

        result = build_sync(
            _request(bundle, dist, styled=True), settings=settings, tool_runner=fake_runner
        )

        assert isinstance(result.error, ImageToolError)
        assert result.error.exit_code == 2
        assert list(dist.iterdir()) == []
        _assert_no_staging(settings)


class TestConcurrency:
    """Tests for concurrent builds."""

    def test_parallel_builds_are_isolated(
        self, tmp_path, dist, settings, fake_runner, bundle_factory
    ):
        first = bundle_factory(tmp_path / "a", name="First")
        second = bundle_factory(tmp_path / "b", name="Second")

        async def run_both():
            return await asyncio.gather(
                build(
                    BuildRequest(source=first, destination=dist / "First.dmg"),
                    settings=settings,
                    tool_runner=fake_runner,
                ),
                build(
                    BuildRequest(source=second, destination=dist / "Second.dmg", styled=True),
                    settings=settings,
                    tool_runner=fake_runner,
                ),
            )

        results = asyncio.run(run_both())

        assert all(r.success for r in results)
        assert (dist / "First.dmg").read_bytes() == b"dmg:First"
        assert (dist / "Second.dmg").read_bytes() == b"udzo:dmg:Second"
        _assert_no_staging(settings)

    def test_events_delivered_on_loop_thread(self, bundle, dist, settings, fake_runner):
        threads = set()

        async def run():
            await build(
                _request(bundle, dist, styled=True),
                lambda event: threads.add(threading.get_ident()),
                settings=settings,
                tool_runner=fake_runner,
            )
            return threading.get_ident()

        loop_thread = asyncio.run(run())

        assert threads == {loop_thread}


class TestComputeFileHash:
    """Tests for compute_file_hash function."""

    def test_matches_hashlib(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(b"a" * 200_000)
        assert compute_file_hash(path) == hashlib.sha256(b"a" * 200_000).hexdigest()
