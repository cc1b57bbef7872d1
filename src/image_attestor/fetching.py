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

"""Retrieval of verified signatures for an image.

The fetcher owns the order of the checks: the reference is parsed, the
digest it names is validated against the manifest the registry serves, and
only then is the verifier asked for signatures. Anything short of a
successful, verified result is an error; an unverified bundle is never
returned, even when it contains signatures.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
import logging
import pathlib

from image_attestor import errors
from image_attestor._oci import registry
from image_attestor._sigstore import rekor
from image_attestor._sigstore import signature as sigstore_signature


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckOptions:
    """Settings handed to the verifier for every image.

    Attributes:
        rekor: The transparency log to check signatures against.
        trust_config: Optional trusted root file replacing the default
          Sigstore trust roots.
    """

    rekor: rekor.RekorEndpoint = field(default_factory=rekor.RekorEndpoint)
    trust_config: pathlib.Path | None = None


VerifyFunction = Callable[
    [registry.ImageReference, CheckOptions],
    tuple[list[sigstore_signature.Signature], bool],
]
ValidateFunction = Callable[[registry.ImageReference], bool]


class SignatureFetcher:
    """Fetches the verified signatures of digest-qualified images."""

    def __init__(
        self,
        verify_function: VerifyFunction,
        validate_function: ValidateFunction,
        options: CheckOptions | None = None,
    ):
        """Initializes the fetcher.

        Args:
            verify_function: Verifies an image and returns its signatures
              together with the verification outcome.
            validate_function: Checks that a reference names the manifest
              the registry serves; raises on any mismatch.
            options: Verification settings. Defaults to the public Sigstore
              instance and trust roots.
        """
        self._verify = verify_function
        self._validate = validate_function
        self.options = options or CheckOptions()

    def fetch(self, image_name: str) -> list[sigstore_signature.Signature]:
        """Returns the verified signatures of an image.

        Args:
            image_name: The image reference, as reported by the container
              runtime.

        Raises:
            ReferenceParseError: The reference is malformed.
            ManifestFetchError: The manifest could not be retrieved.
            NotADigestReference: The reference names a tag.
            DigestMismatch: The manifest does not match the digest.
            VerificationFailed: The verifier failed or did not verify.
        """
        try:
            image_ref = registry.ImageReference.parse_image_id(image_name)
        except errors.ReferenceParseError as e:
            raise errors.ReferenceParseError(
                f"Error parsing image reference: {e}"
            ) from e

        self._validate(image_ref)

        try:
            signatures, verified = self._verify(image_ref, self.options)
        except errors.AttestationError:
            raise
        except Exception as e:
            raise errors.VerificationFailed(
                f"Error verifying signature: {type(e).__name__}: {e}"
            ) from e

        if not verified:
            raise errors.VerificationFailed(
                f"Bundle not verified for {image_name}"
            )

        logger.debug(
            "Verified %d signature(s) for %s", len(signatures), image_name
        )
        return list(signatures)
