"""Integration test — keygen, create and verify through the CLI against a fake runtime."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import URL_BASE, FakeRuntime, image_content
from typer.testing import CliRunner

import hznpkg.cli.commands.create as create_module
from hznpkg.cli.app import app
from hznpkg.errors import RuntimeUnavailableError

IMAGES = ["registry.example.com/x86/db:0.1.0", "registry.example.com/x86/web:2.3"]

runner = CliRunner()


class _RuntimeFactory:
    runtime: FakeRuntime | None = None

    @classmethod
    def from_endpoint(cls, endpoint: str) -> FakeRuntime:
        if cls.runtime is None:
            raise RuntimeUnavailableError(f"Docker endpoint {endpoint} unreachable")
        return cls.runtime


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in ("HZNPKG_OUTPUTDIR", "HZNPKG_URLBASE", "HZNPKG_PRIVATEKEY", "HZNPKG_AUTHOR"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(create_module, "DockerRuntime", _RuntimeFactory)
    monkeypatch.setattr(
        _RuntimeFactory,
        "runtime",
        FakeRuntime(registry={image: image_content(image) for image in IMAGES}),
    )
    (tmp_path / "out").mkdir()
    result = runner.invoke(app, ["keygen", "-o", str(tmp_path / "keys")])
    assert result.exit_code == 0, result.output
    return tmp_path


def create_args(workspace: Path, images: list[str]) -> list[str]:
    args = ["create"]
    for image in images:
        args += ["-i", image]
    return args + [
        "-d", str(workspace / "out"),
        "-u", URL_BASE,
        "-k", str(workspace / "keys" / "hznpkg.pem"),
        "-a", "ops@example.com",
    ]


def result_line(output: str) -> list[str]:
    lines = [
        line for line in output.splitlines()
        if not line.startswith("[") and line.endswith(".json.sig")
    ]
    assert len(lines) == 1, output
    return lines[0].split(" ")


def test_create_then_verify(workspace: Path):
    result = runner.invoke(app, create_args(workspace, IMAGES))
    assert result.exit_code == 0, result.output

    package_dir, manifest_file, signature_file = map(Path, result_line(result.output))
    assert package_dir.parent == workspace / "out"
    assert signature_file == Path(f"{manifest_file}.sig")

    manifest = json.loads(manifest_file.read_bytes())
    assert [p["description"] for p in manifest["parts"]] == IMAGES
    for part in manifest["parts"]:
        url = part["sources"][0]["url"]
        assert url.startswith(f"{URL_BASE}{manifest['id']}/{part['digest']}")
        assert (package_dir / url.rsplit("/", 1)[1]).is_file()

    verified = runner.invoke(
        app,
        ["verify", str(manifest_file), "-p", str(workspace / "keys" / "hznpkg.pub.pem")],
    )
    assert verified.exit_code == 0, verified.output
    assert "Package verified." in verified.output


def test_bad_tag_exits_2(workspace: Path):
    result = runner.invoke(app, create_args(workspace, [IMAGES[0], "nginx"]))
    assert result.exit_code == 2
    assert "Failed to create Horizon Pkg" in result.output
    assert list((workspace / "out").iterdir()) == []


def test_missing_image_exits_3(workspace: Path):
    result = runner.invoke(app, create_args(workspace, [IMAGES[0], "registry.example.com/gone:1"]))
    assert result.exit_code == 3
    assert "not found in any registry" in result.output
    assert list((workspace / "out").iterdir()) == []


def test_no_images_exits_2(workspace: Path):
    result = runner.invoke(app, create_args(workspace, []))
    assert result.exit_code == 2
    assert "image" in result.output


def test_missing_required_options_exit_2(workspace: Path):
    result = runner.invoke(app, ["create", "-i", IMAGES[0]])
    assert result.exit_code == 2
    assert "Required option(s) not provided" in result.output


def test_unreachable_docker_exits_3(workspace: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(_RuntimeFactory, "runtime", None)
    result = runner.invoke(app, create_args(workspace, IMAGES))
    assert result.exit_code == 3
    assert "unreachable" in result.output


def test_bad_env_setting_exits_2(workspace: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("HZNPKG_PULL_POLICY", "bogus")
    result = runner.invoke(app, create_args(workspace, IMAGES))
    assert result.exit_code == 2
    assert "pull_policy" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert list((workspace / "out").iterdir()) == []
