# step_workflows/release.py
from __future__ import annotations

import os
import shlex
import subprocess
import tarfile
import zipfile
from pathlib import Path
from typing import List, Optional, Sequence

from ..model import ArtifactSet, Job, Step


DEFAULT_BUILD_COMMAND = "cargo build --release --target {target}"
DEFAULT_ARTIFACT_DIR = "target/{target}/release"


class ReleaseError(Exception):
    """Raised when binaries cannot be found or packaged."""
    pass


# ---------------------------------------------------------------------
# Release step helper
# ---------------------------------------------------------------------

def release_step(
    name: str = "Compile and release",
    *,
    build_command: str = DEFAULT_BUILD_COMMAND,
    artifact_dir: str = DEFAULT_ARTIFACT_DIR,
    binaries: Optional[List[str]] = None,
    project: Optional[str] = None,
) -> Step:
    """
    Create a compile-and-release step.

    At run time the step reads from the job environment:
      RUSTTARGET   target triple to compile for
      EXTRA_FILES  space separated files bundled next to the binaries
      GITHUB_TOKEN credential used to upload the release assets
    """
    return Step(
        name=name,
        run=build_command,
        kind="release",
        data={
            "artifact_dir": artifact_dir,
            "binaries": list(binaries) if binaries else None,
            "project": project,
        },
    )


# ---------------------------------------------------------------------
# Compile / package
# ---------------------------------------------------------------------

def expand_target(template: str, target: str) -> str:
    """Substitute "{target}" only; any other braces are left for the shell."""
    return template.replace("{target}", target)


def is_windows(target: str) -> bool:
    return "windows" in target


def compile_target(workspace: Path, target: str, command: str, env: dict) -> subprocess.CompletedProcess:
    return subprocess.run(
        shlex.split(expand_target(command, target)),
        cwd=str(workspace),
        env=env,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
    )


def find_binaries(artifact_dir: Path, target: str, names: Optional[Sequence[str]] = None) -> List[Path]:
    """
    Locate the compiled executables for `target`.

    With explicit `names`, each must exist (".exe" is appended for windows
    targets when missing). Otherwise windows targets collect "*.exe" and
    other targets collect executable files without a suffix.
    """
    if not artifact_dir.is_dir():
        raise ReleaseError(f"artifact directory not found: {artifact_dir}")

    if names:
        found = []
        for n in names:
            if is_windows(target) and not n.endswith(".exe"):
                n = f"{n}.exe"
            p = artifact_dir / n
            if not p.is_file():
                raise ReleaseError(f"binary not found: {p}")
            found.append(p)
        return found

    found = []
    for p in sorted(artifact_dir.iterdir()):
        if not p.is_file():
            continue
        if is_windows(target):
            if p.suffix == ".exe":
                found.append(p)
        elif not p.suffix and os.access(p, os.X_OK):
            found.append(p)

    if not found:
        raise ReleaseError(f"no compiled binaries for {target} in {artifact_dir}")
    return found


def archive_name(project: str, tag: str, target: str) -> str:
    ext = "zip" if is_windows(target) else "tar.gz"
    return f"{project}_{tag}_{target}.{ext}"


def package_artifacts(
    workspace: Path,
    target: str,
    binaries: Sequence[Path],
    extra_files: Sequence[str],
    out_dir: Path,
    name: str,
) -> ArtifactSet:
    """
    Bundle the binaries and the extra files into one archive.

    Every extra file must exist in the workspace. Members are stored at the
    archive root under their base names.
    """
    members: List[tuple[Path, str]] = [(b, b.name) for b in binaries]
    for extra in extra_files:
        p = workspace / extra
        if not p.is_file():
            raise ReleaseError(f"extra file not found: {extra}")
        members.append((p, Path(extra).name))

    arcnames = [a for _, a in members]
    if len(set(arcnames)) != len(arcnames):
        raise ReleaseError(f"duplicate archive members: {arcnames}")

    out_dir.mkdir(parents=True, exist_ok=True)
    archive = out_dir / name
    tmp = archive.with_name(archive.name + ".tmp")
    try:
        if name.endswith(".zip"):
            with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for src, arcname in members:
                    zf.write(src, arcname=arcname)
        else:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for src, arcname in members:
                    tar.add(str(src), arcname=arcname, recursive=False)
        tmp.replace(archive)
    finally:
        if tmp.exists():
            tmp.unlink(missing_ok=True)

    return ArtifactSet(target=target, archive=archive, members=tuple(arcnames))


# ---------------------------------------------------------------------
# Release step execution
# ---------------------------------------------------------------------

def _project_name(data: dict, ctx) -> str:
    if data.get("project"):
        return data["project"]
    if ctx.event.repository:
        return ctx.event.repository.rstrip("/").split("/")[-1]
    return ctx.workspace.name


def _publisher_for(job: Job, step: Step, ctx):
    # Import here to avoid circular import
    from ..publish import GitHubReleasePublisher
    from ..runner import CIError

    if ctx.publisher is not None:
        return ctx.publisher

    token = ctx.env.get("GITHUB_TOKEN")
    if not token:
        raise CIError(
            kind="missing_token",
            job=job.name,
            step=step.name,
            message="GITHUB_TOKEN is not set for this job",
            details={"hint": "Export GITHUB_TOKEN or publish to a directory with --publish-dir."},
        )
    if not ctx.event.repository or ctx.event.release_id is None:
        raise CIError(
            kind="missing_release",
            job=job.name,
            step=step.name,
            message="event has no repository/release id to upload to",
        )
    return GitHubReleasePublisher(token, ctx.event.repository, ctx.event.release_id)


def run_step(job: Job, step: Step, ctx) -> str:
    """Compile for the job's target, package with the extra files and publish."""
    # Import here to avoid circular import
    from ..publish import PublishError
    from ..runner import CIError, StepFailure, _tail

    data = step.data or {}
    target = ctx.env.get("RUSTTARGET") or job.target
    if not target:
        raise CIError(kind="missing_target", job=job.name, step=step.name, message="RUSTTARGET is not set")
    extra_files = ctx.env.get("EXTRA_FILES", "").split()

    proc = compile_target(ctx.workspace, target, step.run, ctx.env)
    if proc.returncode != 0:
        raise StepFailure(
            job=job.name,
            step=step.name,
            cmd=expand_target(step.run, target),
            exit_code=proc.returncode,
            output=_tail(proc.stdout),
        )

    try:
        artifact_dir = ctx.workspace / expand_target(data.get("artifact_dir", DEFAULT_ARTIFACT_DIR), target)
        binaries = find_binaries(artifact_dir, target, data.get("binaries"))
        tag = ctx.event.tag or "dev"
        artifacts = package_artifacts(
            ctx.workspace,
            target,
            binaries,
            extra_files,
            ctx.out_dir,
            archive_name(_project_name(data, ctx), tag, target),
        )
        published = _publisher_for(job, step, ctx).publish(artifacts, ctx.event)
    except (ReleaseError, PublishError) as e:
        raise CIError(kind="release_failed", job=job.name, step=step.name, message=str(e))

    ctx.assets.extend(published)
    lines = [_tail(proc.stdout).rstrip(), f"packaged {artifacts.archive.name}: {', '.join(artifacts.members)}"]
    lines.extend(f"published {p}" for p in published)
    return "\n".join(l for l in lines if l)
