"""Tests for BuildOrchestrator — fan-out, all-or-nothing commit, abort policy."""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import pytest
from conftest import FakeRuntime, image_content

from hznpkg.bridge.crypto_bridge import load_private_key, load_verify_key, verify_data
from hznpkg.core.orchestrator import (
    BUILD_DIR_PREFIX,
    BuildOrchestrator,
    InvalidTransitionError,
    validate_url_base,
)
from hznpkg.core.package_builder import PackageBuilder
from hznpkg.core.reporter import SynchronizedReporter
from hznpkg.errors import CommitError, ConfigurationError
from hznpkg.models.config import BuildConfig, Compression
from hznpkg.models.outcome import BuildState

IMAGES = ["foo.goo/someimage:0.2.0", "foo.goo/otherimage:1.0.0"]
T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def fixed_clock(moment: datetime = T0) -> Callable[[], datetime]:
    return lambda: moment


def local_runtime(images: list[str]) -> FakeRuntime:
    return FakeRuntime(local={image: image_content(image) for image in images})


def leftovers(output_dir: Path) -> list[str]:
    """Temporary build dirs and staged files left in *output_dir*."""
    return sorted(
        p.name
        for p in output_dir.iterdir()
        if p.name.startswith(BUILD_DIR_PREFIX) or p.name.endswith(".staged")
    )


@pytest.fixture
def orchestrate(
    reporter: SynchronizedReporter, make_config: Callable[..., BuildConfig]
) -> Callable[..., BuildOrchestrator]:
    def _factory(runtime: FakeRuntime, clock=None, **config_overrides) -> BuildOrchestrator:
        return BuildOrchestrator(
            make_config(**config_overrides),
            runtime,
            reporter,
            clock=clock or fixed_clock(),
        )

    return _factory


class TestCommit:
    def test_two_images_publish_one_package(
        self, orchestrate, output_dir: Path, key_pair: tuple[Path, Path]
    ):
        orch = orchestrate(local_runtime(IMAGES))

        outcome = orch.build(IMAGES)

        assert outcome.committed
        assert orch.state == BuildState.COMMITTED
        assert outcome.errors == ()
        assert outcome.package_dir == output_dir / outcome.package_id
        assert outcome.manifest_file == output_dir / f"{outcome.package_id}.json"
        assert outcome.signature_file == output_dir / f"{outcome.package_id}.json.sig"

        digests = [hashlib.sha256(image_content(i)).hexdigest() for i in IMAGES]
        assert sorted(p.name for p in outcome.package_dir.iterdir()) == sorted(
            f"{d}.tgz" for d in digests
        )

        manifest_bytes = outcome.manifest_file.read_bytes()
        manifest = json.loads(manifest_bytes)
        assert manifest["id"] == outcome.package_id
        assert manifest["author"] == "builder@example.com"
        assert [p["id"] for p in manifest["parts"]] == digests
        assert [p["description"] for p in manifest["parts"]] == IMAGES

        signature = outcome.signature_file.read_text()
        assert verify_data(manifest_bytes, signature, load_verify_key(key_pair[1]))
        assert leftovers(output_dir) == []

    def test_result_line_names_all_three_outputs(self, orchestrate):
        outcome = orchestrate(local_runtime(IMAGES)).build(IMAGES)
        assert outcome.result_line().split(" ") == [
            str(outcome.package_dir),
            str(outcome.manifest_file),
            str(outcome.signature_file),
        ]

    def test_single_worker_pool(self, orchestrate):
        outcome = orchestrate(local_runtime(IMAGES), max_workers=1).build(IMAGES)
        assert outcome.committed
        assert len(list(outcome.package_dir.iterdir())) == 2

    def test_package_id_varies_with_time_part_ids_do_not(
        self, orchestrate, make_config, tmp_path: Path
    ):
        second_out = tmp_path / "second"
        second_out.mkdir()

        first = orchestrate(local_runtime(IMAGES)).build(IMAGES)

        later = datetime(2024, 3, 1, 12, 0, 1, tzinfo=timezone.utc)
        with SynchronizedReporter(buffer_len=4) as other:
            second = BuildOrchestrator(
                make_config(output_dir=second_out),
                local_runtime(IMAGES),
                other,
                clock=fixed_clock(later),
            ).build(IMAGES)

        assert first.committed and second.committed
        assert first.package_id != second.package_id
        assert sorted(p.name for p in first.package_dir.iterdir()) == sorted(
            p.name for p in second.package_dir.iterdir()
        )

    def test_codec_does_not_change_digests(self, orchestrate):
        outcome = orchestrate(local_runtime(IMAGES), compression=Compression.XZ).build(IMAGES)
        digests = {hashlib.sha256(image_content(i)).hexdigest() for i in IMAGES}
        assert {p.name for p in outcome.package_dir.iterdir()} == {f"{d}.txz" for d in digests}

    def test_existing_package_is_never_overwritten(
        self, orchestrate, make_config, output_dir: Path
    ):
        first = orchestrate(local_runtime(IMAGES)).build(IMAGES)
        original = first.manifest_file.read_bytes()

        with SynchronizedReporter(buffer_len=4) as other:
            again = BuildOrchestrator(
                make_config(), local_runtime(IMAGES), other, clock=fixed_clock()
            ).build(IMAGES)

        assert again.state == BuildState.ABORTED
        assert "Refusing to overwrite" in again.errors[0].message
        assert first.manifest_file.read_bytes() == original
        assert leftovers(output_dir) == []


class TestAbort:
    def test_one_failed_image_aborts_everything(self, orchestrate, reporter, output_dir):
        runtime = local_runtime(IMAGES[:1])
        orch = orchestrate(runtime)

        outcome = orch.build(IMAGES)

        assert outcome.state == BuildState.ABORTED
        assert len(outcome.errors) == 1
        assert IMAGES[1] in outcome.errors[0].message
        assert not outcome.is_user_error
        assert not (output_dir / outcome.package_id).exists()
        assert not (output_dir / f"{outcome.package_id}.json").exists()
        assert list(output_dir.iterdir()) == []

        reporter.flush()
        err = reporter.test_err.getvalue()
        assert "All parts not processed successfully, discontinuing operations" in err

    def test_keep_failed_build_dir(self, orchestrate, reporter, output_dir):
        orch = orchestrate(local_runtime(IMAGES[:1]), keep_failed_build_dir=True)

        outcome = orch.build(IMAGES)

        assert outcome.state == BuildState.ABORTED
        assert orch.build_dir is not None and orch.build_dir.is_dir()
        assert orch.build_dir.name.startswith(f"{BUILD_DIR_PREFIX}{outcome.package_id}-")
        reporter.flush()
        assert "Kept temporary build directory" in reporter.test_err.getvalue()

    def test_bad_reference_is_a_user_error_without_runtime_calls(self, orchestrate):
        runtime = local_runtime(IMAGES)

        outcome = orchestrate(runtime).build([IMAGES[0], "bad-image-no-tag"])

        assert outcome.state == BuildState.ABORTED
        assert outcome.is_user_error
        assert all(c[1] != "bad-image-no-tag" for c in runtime.calls)

    @pytest.fixture
    def manifest_publish_fails(self, monkeypatch: pytest.MonkeyPatch) -> None:
        real_replace = os.replace

        def _replace(src, dst, *args, **kwargs):
            if str(dst).endswith(".json"):
                raise OSError("No space left on device")
            return real_replace(src, dst, *args, **kwargs)

        monkeypatch.setattr(os, "replace", _replace)

    def test_publish_failure_after_rename_rolls_back(
        self, orchestrate, output_dir: Path, manifest_publish_fails
    ):
        outcome = orchestrate(local_runtime(IMAGES)).build(IMAGES)

        assert outcome.state == BuildState.ABORTED
        assert not outcome.is_user_error
        assert "Error publishing package" in outcome.errors[0].message
        assert list(output_dir.iterdir()) == []

    def test_publish_failure_keeps_build_dir_under_temporary_name(
        self, orchestrate, output_dir: Path, manifest_publish_fails
    ):
        orch = orchestrate(local_runtime(IMAGES), keep_failed_build_dir=True)

        outcome = orch.build(IMAGES)

        assert outcome.state == BuildState.ABORTED
        assert [p.name for p in output_dir.iterdir()] == [orch.build_dir.name]
        assert orch.build_dir.name.startswith(f"{BUILD_DIR_PREFIX}{outcome.package_id}-")
        assert len(list(orch.build_dir.iterdir())) == len(IMAGES)

    def test_duplicate_content_aborts(self, orchestrate):
        content = image_content("shared")
        runtime = FakeRuntime(local={IMAGES[0]: content, IMAGES[1]: content})

        outcome = orchestrate(runtime).build(IMAGES)

        assert outcome.state == BuildState.ABORTED
        assert "duplicate image content" in outcome.errors[0].message

    def test_missing_key_file(self, orchestrate, tmp_path: Path, output_dir: Path):
        runtime = local_runtime(IMAGES)
        outcome = orchestrate(runtime, private_key=tmp_path / "absent.pem").build(IMAGES)

        assert outcome.state == BuildState.ABORTED
        assert outcome.is_user_error
        assert "is unusable" in outcome.errors[0].message
        assert runtime.calls == []
        assert list(output_dir.iterdir()) == []

    def test_unusable_output_dir(self, orchestrate, tmp_path: Path):
        outcome = orchestrate(local_runtime(IMAGES), output_dir=tmp_path / "nope").build(IMAGES)
        assert outcome.is_user_error
        assert "Directory path" in outcome.errors[0].message

    def test_relative_url_base(self, orchestrate, output_dir: Path):
        outcome = orchestrate(local_runtime(IMAGES), part_url_base="parts/").build(IMAGES)
        assert outcome.state == BuildState.ABORTED
        assert outcome.is_user_error
        assert list(output_dir.iterdir()) == []

    def test_no_images(self, orchestrate):
        outcome = orchestrate(local_runtime([])).build([])
        assert outcome.state == BuildState.ABORTED
        assert outcome.is_user_error


class TestLifecycle:
    def test_build_runs_once(self, orchestrate):
        orch = orchestrate(local_runtime(IMAGES))
        orch.build(IMAGES)
        with pytest.raises(InvalidTransitionError):
            orch.build(IMAGES)

    def test_reporter_serves_one_orchestrator(self, orchestrate):
        orchestrate(local_runtime(IMAGES))
        with pytest.raises(RuntimeError):
            orchestrate(local_runtime(IMAGES))

    def test_commit_without_build_dir_is_a_commit_error(self, orchestrate, key_pair):
        orch = orchestrate(local_runtime(IMAGES))
        builder = PackageBuilder("builder@example.com", IMAGES)
        with pytest.raises(CommitError):
            orch._commit(builder, load_private_key(key_pair[0]))


@pytest.mark.parametrize(
    "url", ["https://h.example.com/base", "http://10.0.0.1:8080/", "file:///srv/pkgs"]
)
def test_valid_url_bases(url: str):
    validate_url_base(url)


@pytest.mark.parametrize("url", ["", "parts/", "//host/only", "https://"])
def test_invalid_url_bases(url: str):
    with pytest.raises(ConfigurationError):
        validate_url_base(url)
