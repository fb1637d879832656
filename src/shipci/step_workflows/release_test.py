import os
import subprocess
import sys
import tarfile
import zipfile

import pytest

from shipci.dsl import job
from shipci.model import ArtifactSet, Status, TriggerEvent
from shipci.pipelines import release_pipeline
from shipci.publish import DirectoryPublisher
from shipci.runner import run_job, run_pipeline
from shipci.step_workflows.release import (
    ReleaseError,
    archive_name,
    compile_target,
    find_binaries,
    package_artifacts,
    release_step,
)
from shipci.triggers import event_from_github

LINUX = "x86_64-unknown-linux-musl"
WINDOWS = "x86_64-pc-windows-gnu"
MACOS = "x86_64-apple-darwin"

RELEASE = TriggerEvent(
    name="release",
    ref="refs/tags/v1.2.0",
    action="created",
    release_id=9,
    tag="v1.2.0",
    repository="acme/group",
)


def _git(repo, *args):
    subprocess.check_output(
        ["git", "-c", "user.name=shipci", "-c", "user.email=shipci@example.com", *args],
        cwd=str(repo),
        text=True,
    )


def _executable(path, content="bin"):
    path.write_text(content)
    os.chmod(path, 0o755)
    return path


@pytest.fixture
def tagged_repo(git_repo):
    _git(git_repo, "tag", "v1.2.0")
    return git_repo


@pytest.fixture
def workspace(tmp_path):
    ws = tmp_path / "ws"
    (ws / "target" / LINUX / "release").mkdir(parents=True)
    (ws / "README.md").write_text("readme")
    (ws / "LICENSE").write_text("license")
    return ws


def test_find_binaries_posix(workspace):
    out = workspace / "target" / LINUX / "release"
    _executable(out / "group")
    (out / "group.d").write_text("deps")
    (out / "notes").write_text("not executable")

    assert [p.name for p in find_binaries(out, LINUX)] == ["group"]


def test_find_binaries_windows(tmp_path):
    (tmp_path / "group.exe").write_text("MZ")
    (tmp_path / "group.pdb").write_text("debug")
    assert [p.name for p in find_binaries(tmp_path, WINDOWS)] == ["group.exe"]
    assert [p.name for p in find_binaries(tmp_path, WINDOWS, ["group"])] == ["group.exe"]


def test_find_binaries_errors(tmp_path):
    with pytest.raises(ReleaseError):
        find_binaries(tmp_path / "missing", LINUX)
    with pytest.raises(ReleaseError):
        find_binaries(tmp_path, LINUX)
    with pytest.raises(ReleaseError):
        find_binaries(tmp_path, LINUX, ["group"])


def test_archive_name():
    assert archive_name("group", "v1", WINDOWS) == "group_v1_x86_64-pc-windows-gnu.zip"
    assert archive_name("group", "v1", LINUX) == "group_v1_x86_64-unknown-linux-musl.tar.gz"


def test_package_contains_binary_and_exactly_the_extra_files(workspace, tmp_path):
    binary = _executable(workspace / "target" / LINUX / "release" / "group")
    name = archive_name("group", "v1", LINUX)

    artifacts = package_artifacts(workspace, LINUX, [binary], ["README.md", "LICENSE"], tmp_path / "dist", name)

    assert isinstance(artifacts, ArtifactSet)
    assert artifacts.members == ("group", "README.md", "LICENSE")
    with tarfile.open(artifacts.archive) as tar:
        assert sorted(tar.getnames()) == ["LICENSE", "README.md", "group"]


def test_package_zip_for_windows(workspace, tmp_path):
    exe = workspace / "group.exe"
    exe.write_text("MZ")
    artifacts = package_artifacts(
        workspace, WINDOWS, [exe], ["README.md", "LICENSE"], tmp_path / "dist", archive_name("group", "v1", WINDOWS)
    )
    with zipfile.ZipFile(artifacts.archive) as zf:
        assert sorted(zf.namelist()) == ["LICENSE", "README.md", "group.exe"]


def test_package_missing_extra_file(workspace, tmp_path):
    (workspace / "LICENSE").unlink()
    binary = _executable(workspace / "target" / LINUX / "release" / "group")
    with pytest.raises(ReleaseError, match="LICENSE"):
        package_artifacts(workspace, LINUX, [binary], ["README.md", "LICENSE"], tmp_path / "dist", "x.tar.gz")


def test_release_matrix_publishes_partial_assets(tagged_repo, build_command, tmp_path):
    pub = DirectoryPublisher(tmp_path / "published")
    p = release_pipeline(build_command=build_command, project="app")

    res = run_pipeline(p, RELEASE, source=str(tagged_repo), publisher=pub)

    assert res.status is Status.FAILED
    windows = res.job(f"release {WINDOWS}")
    assert windows.status is Status.FAILED
    assert windows.failed_step == "Compile and release"
    assert "x86_64-w64-mingw32-gcc" in windows.steps[1].output

    for target in (LINUX, MACOS):
        j = res.job(f"release {target}")
        assert j.status is Status.PASSED
        assert len(j.assets) == 1

    published = sorted(p.name for p in (tmp_path / "published" / "v1.2.0").iterdir())
    assert published == [
        "app_v1.2.0_x86_64-apple-darwin.tar.gz",
        "app_v1.2.0_x86_64-unknown-linux-musl.tar.gz",
    ]
    with tarfile.open(tmp_path / "published" / "v1.2.0" / published[1]) as tar:
        assert sorted(tar.getnames()) == ["LICENSE", "README.md", "app"]


def test_release_without_token_fails_only_upload(tagged_repo, build_command, monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    p = release_pipeline(targets=[LINUX], build_command=build_command, project="app")

    res = run_pipeline(p, RELEASE, source=str(tagged_repo), token=None)

    j = res.job(f"release {LINUX}")
    assert j.status is Status.FAILED
    assert j.steps[0].status is Status.PASSED
    assert "missing_token" in j.steps[1].error


def test_release_builds_the_tagged_revision(tagged_repo, build_command, tmp_path):
    (tagged_repo / "README.md").write_text("# unreleased work on master\n")
    _git(tagged_repo, "commit", "--quiet", "-am", "work after the release")

    event = event_from_github(
        "release",
        {"action": "created", "release": {"id": 9, "tag_name": "v1.2.0"}, "repository": {"full_name": "acme/group"}},
    )
    p = release_pipeline(targets=[LINUX], build_command=build_command, project="app")

    res = run_pipeline(p, event, source=str(tagged_repo), publisher=DirectoryPublisher(tmp_path / "published"))

    assert res.status is Status.PASSED
    archive = tmp_path / "published" / "v1.2.0" / f"app_v1.2.0_{LINUX}.tar.gz"
    with tarfile.open(archive) as tar:
        assert tar.extractfile("README.md").read() == b"# app\n"


def test_compile_command_keeps_shell_braces(tmp_path):
    command = f'"{sys.executable}" -c "import sys; print(sys.argv[1:])" {{}} ${{HOME}} {{target}}'
    proc = compile_target(tmp_path, LINUX, command, dict(os.environ))

    assert proc.returncode == 0
    assert proc.stdout.strip() == f"['{{}}', '${{HOME}}', '{LINUX}']"


def test_failing_build_with_braces_is_a_failed_job(tmp_path):
    step = release_step(build_command=f'"{sys.executable}" -c "import sys; sys.exit(3)" ${{HOME}} {{target}}')
    j = job(f"release {LINUX}", step, env={"RUSTTARGET": LINUX})

    res = run_job(j, RELEASE, workspace=tmp_path / "ws")

    assert res.status is Status.FAILED
    assert res.steps[0].exit_code == 3
    assert f"${{HOME}} {LINUX}" in res.steps[0].error
