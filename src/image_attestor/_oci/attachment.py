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

"""Discovery of cosign signatures attached to an image.

cosign stores the signatures of `repo@sha256:<hex>` as the layers of an
artifact tagged `repo:sha256-<hex>.sig`. Each layer blob is a signed payload
and the layer annotations carry the signature, certificate and Rekor bundle.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import requests

from image_attestor import errors
from image_attestor._sigstore import signature as sigstore_signature


if TYPE_CHECKING:
    from image_attestor._oci.registry import ImageReference
    from image_attestor._oci.registry import OrasClient


logger = logging.getLogger(__name__)


def signature_tag(digest: str) -> str:
    """Returns the tag cosign uses for the signatures of `digest`."""
    return digest.replace(":", "-") + ".sig"


def fetch_signatures(
    client: OrasClient, image_ref: ImageReference
) -> list[sigstore_signature.OciSignature]:
    """Fetches every cosign signature attached to a digest reference.

    Args:
        client: The registry client.
        image_ref: A digest-qualified image reference.

    Returns:
        One signature per layer of the signature artifact, in layer order.

    Raises:
        NotADigestReference: The reference names a tag.
        ManifestFetchError: The signature artifact or one of its layers
          cannot be retrieved.
    """
    if not image_ref.digest:
        raise errors.NotADigestReference(
            f"Reference {image_ref} is not a digest"
        )

    sig_ref = image_ref.with_tag(signature_tag(image_ref.digest))
    manifest, _ = client.get_manifest(sig_ref)

    signatures = []
    for layer in manifest.get("layers", []):
        layer_digest = layer.get("digest")
        if not layer_digest:
            continue
        media_type = layer.get("mediaType")
        if media_type != sigstore_signature.SIMPLE_SIGNING_MEDIA_TYPE:
            logger.debug(
                "Skipping layer %s of %s with media type %s",
                layer_digest,
                sig_ref,
                media_type,
            )
            continue
        try:
            payload = client.pull_blob(sig_ref, layer_digest)
        except requests.RequestException as e:
            raise errors.ManifestFetchError(
                f"Failed to pull signature layer {layer_digest}: {e}"
            ) from e
        signatures.append(
            sigstore_signature.OciSignature.from_layer(layer, payload)
        )
    return signatures
