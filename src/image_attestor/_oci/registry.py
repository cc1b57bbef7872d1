# Copyright 2025 The Sigstore Authors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#      http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""OCI registry client using oras-py for authentication."""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import replace
import hashlib
import json
import re
import threading
from typing import Any

import oras.provider
import requests

from image_attestor import errors


# OCI Distribution Spec and Docker manifest media types
OCI_MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.v2+json"
)
DOCKER_MANIFEST_LIST_MEDIA_TYPE = (
    "application/vnd.docker.distribution.manifest.list.v2+json"
)

# Manifests are hashed exactly as served, so every form the registry may hold
# for an image must be acceptable.
MANIFEST_ACCEPT = ", ".join(
    [
        OCI_MANIFEST_MEDIA_TYPE,
        OCI_INDEX_MEDIA_TYPE,
        DOCKER_MANIFEST_MEDIA_TYPE,
        DOCKER_MANIFEST_LIST_MEDIA_TYPE,
    ]
)

# Prefixes container runtimes put in front of the image ID they report.
RUNTIME_IMAGE_ID_PREFIXES = ("docker-pullable://", "docker://")

# See https://github.com/opencontainers/image-spec/blob/main/descriptor.md
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")


def sha256_digest(content: bytes) -> str:
    """Returns the `sha256:<hex>` digest of some content."""
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


@dataclass(frozen=True)
class ImageReference:
    """Parsed OCI image reference.

    Format: registry/repository:tag or registry/repository@algorithm:digest
    """

    registry: str
    repository: str
    tag: str | None
    digest: str | None

    @classmethod
    def parse(cls, reference: str) -> ImageReference:
        """Parse an image reference string."""
        if "/" not in reference:
            raise errors.ReferenceParseError(
                f"Invalid reference '{reference}': missing /"
            )

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not _DIGEST_RE.match(digest):
                raise errors.ReferenceParseError(
                    f"Invalid digest format: {digest}"
                )

        tag = None
        if ":" in reference and not digest:
            parts = reference.rsplit(":", 1)
            if "/" not in parts[1]:
                reference, tag = parts

        parts = reference.split("/", 1)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise errors.ReferenceParseError(
                f"Invalid image reference '{reference}'"
            )

        registry, repository = parts[0], parts[1]

        if not tag and not digest:
            raise errors.ReferenceParseError(
                f"Image reference must have :tag or @digest: {reference}"
            )

        return cls(registry, repository, tag, digest)

    @classmethod
    def parse_image_id(cls, image_id: str) -> ImageReference:
        """Parse an image ID as reported in a container's runtime status.

        Runtimes may prefix the reference with a transport, such as
        `docker-pullable://`; the prefix is dropped before parsing.
        """
        for prefix in RUNTIME_IMAGE_ID_PREFIXES:
            if image_id.startswith(prefix):
                image_id = image_id[len(prefix) :]
                break
        return cls.parse(image_id)

    def __str__(self) -> str:
        result = f"{self.registry}/{self.repository}"
        if self.digest:
            result += f"@{self.digest}"
        elif self.tag:
            result += f":{self.tag}"
        return result

    @property
    def reference(self) -> str:
        if self.digest:
            return self.digest
        return self.tag or "latest"

    @property
    def is_digest(self) -> bool:
        return self.digest is not None

    def with_tag(self, tag: str) -> ImageReference:
        return replace(self, tag=tag, digest=None)


class OrasClient:
    """Read-only OCI registry client using oras-py for authentication."""

    def __init__(self, *, insecure: bool = False, tls_verify: bool = True):
        self._insecure = insecure
        self._tls_verify = tls_verify
        self._registry_lock = threading.Lock()
        self._registry_cache: dict[str, oras.provider.Registry] = {}

    def _auth_registry(
        self, image_ref: ImageReference
    ) -> oras.provider.Registry:
        """Get an authenticated oras Registry instance.

        Caches authenticated registries by hostname to avoid repeated
        authentication overhead when attesting many containers. Credentials
        are loaded from local configuration only, so the lock is never held
        across a network call.
        """
        hostname = image_ref.registry
        with self._registry_lock:
            if hostname in self._registry_cache:
                return self._registry_cache[hostname]

            reg = oras.provider.Registry(
                hostname=hostname,
                insecure=self._insecure,
                tls_verify=self._tls_verify,
            )
            reg.auth.load_configs(reg.get_container(str(image_ref)))
            self._registry_cache[hostname] = reg
            return reg

    def _base_url(self, image_ref: ImageReference) -> str:
        """Get the base URL for a registry."""
        registry = image_ref.registry
        if registry in ("docker.io", "index.docker.io"):
            registry = "registry-1.docker.io"
        return f"{'http' if self._insecure else 'https'}://{registry}"

    def get_manifest_bytes(self, image_ref: ImageReference) -> bytes:
        """Get the manifest of an image exactly as served by the registry.

        Raises:
            ManifestFetchError: The registry is unreachable or does not hold
              a manifest for the reference.
        """
        base = self._base_url(image_ref)
        repo = image_ref.repository
        url = f"{base}/v2/{repo}/manifests/{image_ref.reference}"
        try:
            response = self._auth_registry(image_ref).do_request(
                url, "GET", headers={"Accept": MANIFEST_ACCEPT}
            )
        except requests.RequestException as e:
            raise errors.ManifestFetchError(
                f"Failed to fetch manifest for {image_ref}: {e}"
            ) from e

        if response.status_code != 200:
            raise errors.ManifestFetchError(
                f"Failed to fetch manifest for {image_ref}: "
                f"registry answered {response.status_code}"
            )
        if not response.content:
            raise errors.ManifestFetchError(
                f"Registry returned an empty manifest for {image_ref}"
            )
        return response.content

    def get_manifest(
        self, image_ref: ImageReference
    ) -> tuple[dict[str, Any], str]:
        """Get a parsed manifest and the digest of its raw bytes."""
        manifest_bytes = self.get_manifest_bytes(image_ref)
        try:
            manifest = json.loads(manifest_bytes)
        except (ValueError, RecursionError) as e:
            raise errors.ManifestFetchError(
                f"Manifest for {image_ref} is not valid JSON: {e}"
            ) from e
        if not isinstance(manifest, dict):
            raise errors.ManifestFetchError(
                f"Manifest for {image_ref} is not a JSON object"
            )
        return manifest, sha256_digest(manifest_bytes)

    def pull_blob(self, image_ref: ImageReference, digest: str) -> bytes:
        """Pull a blob from the registry."""
        reg = self._auth_registry(image_ref)
        response = reg.get_blob(str(image_ref), digest)
        response.raise_for_status()
        return response.content
