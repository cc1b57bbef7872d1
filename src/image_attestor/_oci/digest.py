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

"""Validation that an image reference names the content the registry serves.

A tag can be moved at any time, so only references carrying a digest are
safe to verify and to cache by. The digest itself is only trusted after the
manifest it names has been fetched and hashed.
"""

from __future__ import annotations

from collections.abc import Callable
import logging

from image_attestor import errors
from image_attestor._oci import registry


logger = logging.getLogger(__name__)


ManifestFetcher = Callable[[registry.ImageReference], bytes]


def validate_reference_digest(
    image_ref: registry.ImageReference, digest: str
) -> bool:
    """Checks that a reference is digest-qualified and names `digest`.

    Args:
        image_ref: The reference to check.
        digest: The digest computed over the manifest actually served.

    Returns:
        True if the reference carries exactly that digest.

    Raises:
        NotADigestReference: The reference names a tag.
        DigestMismatch: The reference carries a different digest.
    """
    if not image_ref.is_digest:
        raise errors.NotADigestReference(
            f"Reference {image_ref} is not a digest"
        )
    if image_ref.digest != digest:
        raise errors.DigestMismatch(
            f"Digest {digest} does not match {image_ref.digest}"
        )
    return True


def validate_image(
    image_ref: registry.ImageReference, fetch_manifest: ManifestFetcher
) -> bool:
    """Fetches the manifest of an image and validates its digest.

    Args:
        image_ref: The reference to validate.
        fetch_manifest: Returns the raw manifest bytes for a reference,
          usually `OrasClient.get_manifest_bytes`.

    Returns:
        True if the manifest hashes to the digest in the reference.

    Raises:
        ManifestFetchError: The manifest could not be retrieved.
        NotADigestReference: The reference names a tag.
        DigestMismatch: The manifest does not hash to the digest.
    """
    manifest_bytes = fetch_manifest(image_ref)
    if not manifest_bytes:
        raise errors.ManifestFetchError(f"Manifest for {image_ref} is empty")

    digest = registry.sha256_digest(manifest_bytes)
    logger.debug("Manifest for %s hashes to %s", image_ref, digest)
    return validate_reference_digest(image_ref, digest)
