"""
Image transfer between registries.

The sync engine only needs the ImageTransfer protocol. RegistryImageTransfer
implements it with the OCI Distribution API: manifests are copied byte for
byte (so digests are preserved), image indexes are copied child by child,
and blobs are streamed through a digest-verified temporary file and skipped
when the destination already has them.
"""
from __future__ import annotations

import hashlib
import json
import logging
import tempfile
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

import httpx

from .credentials import AuthContext
from .errors import ProtocolError, TransferError
from .registry.http import RegistrySession

__all__ = [
    "ImageTransfer",
    "ImageRef",
    "parse_image_ref",
    "RegistryImageTransfer",
    "DryRunTransfer",
    "ACCEPTED_MANIFEST_TYPES",
]

logger = logging.getLogger(__name__)

OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

# Media types we accept for manifests (in order of preference)
ACCEPTED_MANIFEST_TYPES = [OCI_INDEX, DOCKER_MANIFEST_LIST, OCI_MANIFEST, DOCKER_MANIFEST]
INDEX_TYPES = {OCI_INDEX, DOCKER_MANIFEST_LIST}

_CHUNK_SIZE = 1024 * 1024


@runtime_checkable
class ImageTransfer(Protocol):
    """Copy one tagged image from source to destination."""

    def copy(self, destination_ref: str, source_ref: str,
             destination_auth: Optional[AuthContext], source_auth: Optional[AuthContext]) -> None:
        """
        Copy source_ref to destination_ref.

        Both references are fully qualified (host/repository:tag). Any
        exception is treated as fatal by the orchestrator.
        """
        ...


@dataclass(frozen=True)
class ImageRef:
    """Parsed host/repository:tag reference."""
    host: str
    repository: str
    tag: str

    def __str__(self) -> str:
        return f"{self.host}/{self.repository}:{self.tag}"


def parse_image_ref(ref: str) -> ImageRef:
    """
    Parse a fully-qualified image reference.

    Examples:
        >>> parse_image_ref("quay.io/openshift/release:v4.14")
        ImageRef(host='quay.io', repository='openshift/release', tag='v4.14')

    Raises:
        ValueError: If the reference has no host, repository or tag
    """
    host, sep, rest = ref.partition("/")
    if not sep or not rest:
        raise ValueError(f"Image reference must include a registry host: {ref}")
    repository, sep, tag = rest.rpartition(":")
    if not sep or not repository or not tag or "/" in tag:
        raise ValueError(f"Image reference must include a tag: {ref}")
    return ImageRef(host=host, repository=repository, tag=tag)


class RegistryImageTransfer:
    """ImageTransfer over the OCI Distribution API (/v2)."""

    def __init__(self, timeout_s: float = 30.0, retries: int = 0, insecure_hosts: Tuple[str, ...] = (),
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize transfer.

        Args:
            timeout_s: Per-request timeout
            retries: Retries for manifest and HEAD requests on transient errors
            insecure_hosts: Hosts reached over plain HTTP (local registries)
            transport: Custom httpx transport for tests
        """
        self.timeout_s = timeout_s
        self.retries = retries
        self.insecure_hosts = insecure_hosts
        self._transport = transport
        self._sessions: Dict[Tuple[str, str], RegistrySession] = {}
        self._lock = threading.Lock()

    def copy(self, destination_ref: str, source_ref: str,
             destination_auth: Optional[AuthContext], source_auth: Optional[AuthContext]) -> None:
        src = parse_image_ref(source_ref)
        dst = parse_image_ref(destination_ref)
        src_session = self._session(src.host, source_auth)
        dst_session = self._session(dst.host, destination_auth)

        logger.info(f"Copying {src} -> {dst}")
        self._copy_manifest(src_session, src.repository, dst_session, dst.repository, src.tag, dst.tag)

    def _copy_manifest(self, src: RegistrySession, src_repo: str, dst: RegistrySession, dst_repo: str,
                       ref: str, dst_ref: str) -> str:
        """Copy one manifest (and everything it references); return its digest."""
        raw, media_type, digest = self._get_manifest(src, src_repo, ref)
        manifest = _loads_manifest(raw, f"{src.host}/{src_repo}:{ref}")

        if media_type in INDEX_TYPES:
            for child in manifest.get("manifests", []):
                child_digest = child.get("digest") if isinstance(child, dict) else None
                if not child_digest:
                    raise ProtocolError(f"Index entry without a digest in {src.host}/{src_repo}:{ref}")
                self._copy_manifest(src, src_repo, dst, dst_repo, child_digest, child_digest)
        else:
            for descriptor in _blob_descriptors(manifest):
                self._copy_blob(src, src_repo, dst, dst_repo, descriptor["digest"])

        dst.request(
            "PUT", f"/v2/{dst_repo}/manifests/{dst_ref}",
            what=f"manifest upload {dst.host}/{dst_repo}:{dst_ref}",
            scope=_push_scope(dst_repo), retryable=True,
            headers={"Content-Type": media_type}, content=raw,
        )
        logger.debug(f"Uploaded manifest {digest} to {dst.host}/{dst_repo}:{dst_ref}")
        return digest

    def _get_manifest(self, session: RegistrySession, repo: str, ref: str) -> Tuple[bytes, str, str]:
        what = f"manifest {session.host}/{repo}:{ref}"
        response = session.request(
            "GET", f"/v2/{repo}/manifests/{ref}", what=what, scope=_pull_scope(repo), retryable=True,
            headers={"Accept": ", ".join(ACCEPTED_MANIFEST_TYPES)},
        )
        raw = response.content
        media_type = response.headers.get("Content-Type", "").split(";", 1)[0].strip()
        if media_type not in ACCEPTED_MANIFEST_TYPES:
            raise ProtocolError(f"Unsupported manifest media type {media_type!r} for {what}")
        digest = response.headers.get("Docker-Content-Digest") or f"sha256:{hashlib.sha256(raw).hexdigest()}"
        return raw, media_type, digest

    def _copy_blob(self, src: RegistrySession, src_repo: str, dst: RegistrySession, dst_repo: str,
                   digest: str) -> None:
        head = dst.request(
            "HEAD", f"/v2/{dst_repo}/blobs/{digest}", what=f"blob check {dst.host}/{dst_repo}@{digest}",
            scope=_push_scope(dst_repo), retryable=True, allow_status=(404,),
        )
        if head.status_code != 404:
            logger.debug(f"Blob {digest} already present in {dst.host}/{dst_repo}")
            return

        with tempfile.TemporaryFile() as spool:
            size = self._download_blob(src, src_repo, digest, spool)
            spool.seek(0)

            start = dst.request(
                "POST", f"/v2/{dst_repo}/blobs/uploads/", what=f"upload start {dst.host}/{dst_repo}",
                scope=_push_scope(dst_repo),
            )
            location = start.headers.get("Location")
            if not location:
                raise ProtocolError(f"Registry {dst.host} did not return an upload Location")

            dst.request(
                "PUT", location, what=f"blob upload {dst.host}/{dst_repo}@{digest}",
                scope=_push_scope(dst_repo), params={"digest": digest},
                headers={"Content-Type": "application/octet-stream", "Content-Length": str(size)},
                content=spool,
            )
        logger.debug(f"Copied blob {digest} ({size} bytes) to {dst.host}/{dst_repo}")

    def _download_blob(self, src: RegistrySession, repo: str, digest: str, spool) -> int:
        """Stream a blob into spool, verifying its sha256 digest; return its size."""
        response = src.request(
            "GET", f"/v2/{repo}/blobs/{digest}", what=f"blob {src.host}/{repo}@{digest}",
            scope=_pull_scope(repo), stream=True,
        )
        hasher = hashlib.sha256()
        size = 0
        try:
            for chunk in response.iter_bytes(_CHUNK_SIZE):
                spool.write(chunk)
                hasher.update(chunk)
                size += len(chunk)
        finally:
            response.close()

        if digest.startswith("sha256:"):
            actual = f"sha256:{hasher.hexdigest()}"
            if actual != digest:
                raise TransferError(f"Digest mismatch for blob {digest}: got {actual}")
        return size

    def _session(self, host: str, auth: Optional[AuthContext]) -> RegistrySession:
        key = (host, auth.username if auth else "")
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                scheme = "http" if host in self.insecure_hosts else "https"
                session = RegistrySession(
                    f"{scheme}://{host}", auth=auth, timeout_s=self.timeout_s,
                    retries=self.retries, transport=self._transport,
                )
                self._sessions[key] = session
            return session

    def close(self) -> None:
        with self._lock:
            for session in self._sessions.values():
                session.close()
            self._sessions.clear()


class DryRunTransfer:
    """Records requested copies without touching any registry."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []

    def copy(self, destination_ref: str, source_ref: str,
             destination_auth: Optional[AuthContext], source_auth: Optional[AuthContext]) -> None:
        logger.info(f"[dry-run] would copy {source_ref} -> {destination_ref}")
        self.calls.append((source_ref, destination_ref))


def _pull_scope(repo: str) -> str:
    return f"repository:{repo}:pull"


def _push_scope(repo: str) -> str:
    return f"repository:{repo}:pull,push"


def _loads_manifest(raw: bytes, what: str) -> dict:
    try:
        manifest = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON in manifest for {what}: {e}") from e
    if not isinstance(manifest, dict):
        raise ProtocolError(f"Manifest for {what} is not a JSON object")
    return manifest


def _blob_descriptors(manifest: dict) -> List[dict]:
    """Config and layer descriptors of an image manifest."""
    descriptors = []
    if "config" in manifest:
        descriptors.append(manifest["config"])
    descriptors.extend(manifest.get("layers", []))
    return descriptors
