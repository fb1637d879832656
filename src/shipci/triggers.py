# triggers.py
from __future__ import annotations

import hashlib
import hmac
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from .model import Pipeline, TriggerEvent


SUPPORTED_EVENTS = ("push", "pull_request", "release")


class UnsupportedEvent(ValueError):
    """The event name is not one shipci knows how to trigger on."""
    pass


def _branch_of(ref: str) -> Optional[str]:
    prefix = "refs/heads/"
    if ref.startswith(prefix):
        return ref[len(prefix):]
    return None


def _repo(payload: Dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    repo = payload.get("repository") or {}
    return repo.get("full_name"), repo.get("clone_url")


def event_from_github(name: str, payload: Dict[str, Any]) -> TriggerEvent:
    """
    Build a TriggerEvent from a GitHub webhook (or Actions event file) payload.

    push:          ref, after
    pull_request:  action, pull_request.base.ref, pull_request.head.sha
    release:       action, release.id, release.tag_name
    """
    full_name, clone_url = _repo(payload)

    if name == "push":
        ref = payload.get("ref", "")
        return TriggerEvent(
            name="push",
            ref=ref,
            sha=payload.get("after") or None,
            branch=_branch_of(ref),
            repository=full_name,
            clone_url=clone_url,
        )

    if name == "pull_request":
        pr = payload.get("pull_request") or {}
        base = pr.get("base") or {}
        head = pr.get("head") or {}
        number = pr.get("number") or payload.get("number")
        return TriggerEvent(
            name="pull_request",
            ref=f"refs/pull/{number}/head" if number else "",
            sha=head.get("sha"),
            branch=base.get("ref"),
            action=payload.get("action"),
            repository=full_name,
            clone_url=clone_url,
        )

    if name == "release":
        rel = payload.get("release") or {}
        tag = rel.get("tag_name")
        return TriggerEvent(
            name="release",
            ref=f"refs/tags/{tag}" if tag else "",
            sha=None,
            action=payload.get("action"),
            release_id=rel.get("id"),
            tag=tag,
            repository=full_name,
            clone_url=clone_url,
        )

    raise UnsupportedEvent(f"Unsupported event {name!r}; expected one of {SUPPORTED_EVENTS}")


def event_from_file(name: str, path: str | Path) -> TriggerEvent:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return event_from_github(name, payload)


def select_pipelines(pipelines: List[Pipeline], event: TriggerEvent) -> List[Pipeline]:
    return [p for p in pipelines if p.matches(event)]


def sign(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str, body: bytes, header: Optional[str]) -> bool:
    """Validate an X-Hub-Signature-256 header against the raw request body."""
    if not header:
        return False
    return hmac.compare_digest(sign(secret, body), header)
