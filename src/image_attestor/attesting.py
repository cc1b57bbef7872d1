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

"""High level API for attesting the signatures of container images.

An attestor turns the runtime status of a container into the selectors that
describe who signed its image:

```python
attestor = image_attestor.attesting.Config().build()

attestor.attest_container_signatures(
    image_attestor.attesting.ContainerStatus(
        image_id="registry.example.com/app@sha256:...",
        container_id="c1",
    )
)
# ["c1:image-signature-subject:dev@example.com", ...,
#  "sigstore-validation:passed"]
```

The configuration selects the transparency log, the verifier and the initial
policy:

```python
attestor = (
    image_attestor.attesting.Config()
    .set_rekor_url("https://rekor.example.com")
    .add_skipped_images(["registry.example.com/base@sha256:..."])
    .add_allowed_subjects(["release@example.com"])
    .enable_allowed_subjects(True)
    .set_cache_size(500)
    .build()
)
```

One attestor is meant to be shared by all concurrent attestations of a
process: its cache and policy are safe to use from many threads. Network
calls are made without holding any lock, so two containers running the same
uncached image may both verify it; the last result stored wins.

Verification of an image is skipped entirely when its ID is in the skip
list. Otherwise results are cached per image ID, and a cached result is only
reused while the policy it was filtered with is unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import replace
import logging
import pathlib
import sys

from image_attestor import cache as cache_lib
from image_attestor import errors
from image_attestor import fetching
from image_attestor import policy as policy_lib
from image_attestor import selectors as selectors_lib
from image_attestor._oci import digest
from image_attestor._oci import registry
from image_attestor._sigstore import cosign
from image_attestor._sigstore import rekor


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContainerStatus:
    """The parts of a container's runtime status used for attestation."""

    image_id: str
    container_id: str


class Attestor:
    """Derives signature selectors for containers.

    Owns the selector cache and the policy sets; no other component should
    hold copies of either.
    """

    def __init__(
        self,
        fetcher: fetching.SignatureFetcher,
        cache: cache_lib.SignatureCache,
        policy: policy_lib.PolicySets,
    ):
        self._fetcher = fetcher
        self._cache = cache
        self._policy = policy

    @property
    def cache(self) -> cache_lib.SignatureCache:
        return self._cache

    @property
    def policy(self) -> policy_lib.PolicySets:
        return self._policy

    @property
    def rekor_endpoint(self) -> rekor.RekorEndpoint:
        return self._fetcher.options.rekor

    def _should_skip(self, image_id: str) -> bool:
        try:
            return self._policy.should_skip(image_id)
        except errors.EmptyImageID:
            logger.debug("Empty image ID, not checking the skip list")
            return False

    def _cached_item(self, image_id: str) -> cache_lib.Item | None:
        item = self._cache.get_signature(image_id)
        if item is None:
            return None
        if item.policy_generation != self._policy.generation:
            logger.debug(
                "Cached signature for %s predates a policy change", image_id
            )
            return None
        logger.debug("Found cached signature for %s", image_id)
        return item

    def attest_container_signatures(
        self, status: ContainerStatus
    ) -> list[str]:
        """Returns the signature selectors for a container.

        Args:
            status: The container to attest.

        Returns:
            The rendered selectors, followed by the verification sentinel if
            at least one signature was retained. A skipped image yields only
            the sentinel; an image without usable signatures yields nothing.

        Raises:
            AttestationError: The image reference, its digest or its
              signatures could not be validated. Nothing is cached then.
        """
        image_id = status.image_id
        if self._should_skip(image_id):
            logger.debug("Skipping signature verification for %s", image_id)
            return [selectors_lib.SIGNATURE_VERIFIED_SELECTOR]

        item = self._cached_item(image_id)
        if item is None:
            signatures = self._fetcher.fetch(image_id)
            extracted = selectors_lib.extract_selectors(signatures)
            retained, generation = self._policy.filter_allowed(extracted)
            item = cache_lib.Item.create(image_id, retained, generation)
            logger.debug("Caching signature for %s", image_id)
            self._cache.put_signature(item)

        return selectors_lib.render(item.value, status.container_id)

    def fetch_image_signatures(self, image_name: str) -> list:
        """Returns the verified signatures of an image, bypassing the cache."""
        return self._fetcher.fetch(image_name)

    def add_skipped_image(self, image_id: str) -> None:
        self._policy.add_skipped_image(image_id)

    def clear_skip_list(self) -> None:
        self._policy.clear_skip_list()

    def add_allowed_subject(self, subject: str) -> None:
        self._policy.add_allowed_subject(subject)

    def clear_allowed_subjects(self) -> None:
        self._policy.clear_allowed_subjects()

    def enable_allowed_subjects(self, enabled: bool) -> None:
        self._policy.enable_allowed_subjects(enabled)

    def set_rekor_url(self, rekor_url: str) -> None:
        """Switches to another transparency log.

        Cached results were verified against the previous log and are
        dropped.

        Raises:
            InvalidEndpoint: The URL is empty or invalid.
        """
        if not rekor_url:
            raise errors.InvalidEndpoint("Rekor URL is empty")
        endpoint = rekor.parse_rekor_url(rekor_url)
        self._fetcher.options = replace(self._fetcher.options, rekor=endpoint)
        self._cache.clear()


class Config:
    """Configuration to use when building an `Attestor`.

    By default, signatures are verified by the `cosign` binary against the
    public Sigstore instance, 100 images are cached, nothing is skipped and
    the allow list is disabled.
    """

    def __init__(self):
        """Initializes the default configuration."""
        self._rekor = rekor.RekorEndpoint()
        self._trust_config = None
        self._cache_size = cache_lib.DEFAULT_CACHE_SIZE
        self._skipped_images: list[str] = []
        self._allowed_subjects: list[str] = []
        self._allow_list_enabled = False
        self._client = None
        self._verify_function = None
        self._validate_function = None
        self._cosign_path = "cosign"
        self._public_key = None
        self._timeout = cosign.DEFAULT_TIMEOUT

    def set_rekor_url(self, rekor_url: str) -> Self:
        """Sets the transparency log to verify against.

        Args:
            rekor_url: An `https` URL; empty selects the public instance.

        Raises:
            InvalidEndpoint: The URL is invalid.
        """
        self._rekor = rekor.parse_rekor_url(rekor_url)
        return self

    def set_trust_config(self, trust_config: pathlib.Path | None) -> Self:
        """Sets a trusted root file replacing the default trust roots."""
        self._trust_config = trust_config
        return self

    def set_cache_size(self, cache_size: int) -> Self:
        """Sets how many distinct images are cached."""
        if cache_size < 1:
            raise ValueError(f"Cache size must be positive, got {cache_size}")
        self._cache_size = cache_size
        return self

    def add_skipped_images(self, image_ids: Iterable[str]) -> Self:
        """Adds image IDs whose verification is bypassed."""
        self._skipped_images.extend(image_ids)
        return self

    def add_allowed_subjects(self, subjects: Iterable[str]) -> Self:
        """Adds subjects to the allow list.

        The allow list is only enforced after `enable_allowed_subjects`.
        """
        self._allowed_subjects.extend(subjects)
        return self

    def enable_allowed_subjects(self, enabled: bool = True) -> Self:
        """Enables or disables enforcement of the allow list."""
        self._allow_list_enabled = enabled
        return self

    def set_registry_client(self, client: registry.OrasClient) -> Self:
        """Sets the registry client used for manifests and signatures."""
        self._client = client
        return self

    def use_cosign_verifier(
        self,
        *,
        cosign_path: str = "cosign",
        public_key: pathlib.Path | None = None,
        timeout: int = cosign.DEFAULT_TIMEOUT,
    ) -> Self:
        """Configures verification by the cosign binary.

        Args:
            cosign_path: Path to (or name of) the cosign binary.
            public_key: Verify against this key instead of keyless
              certificates.
            timeout: Seconds to wait for cosign.

        Return:
            The new configuration.
        """
        self._verify_function = None
        self._cosign_path = cosign_path
        self._public_key = public_key
        self._timeout = timeout
        return self

    def set_verify_function(
        self, verify_function: fetching.VerifyFunction
    ) -> Self:
        """Replaces the verifier with another verification capability."""
        self._verify_function = verify_function
        return self

    def set_validate_function(
        self, validate_function: fetching.ValidateFunction
    ) -> Self:
        """Replaces the manifest digest validation."""
        self._validate_function = validate_function
        return self

    def build(self) -> Attestor:
        """Builds an attestor with its own cache and policy sets."""
        client = self._client or registry.OrasClient()

        verify_function = self._verify_function
        if verify_function is None:
            verify_function = cosign.CosignVerifier(
                client,
                cosign_path=self._cosign_path,
                public_key=self._public_key,
                timeout=self._timeout,
            )

        validate_function = self._validate_function
        if validate_function is None:

            def _validate(image_ref: registry.ImageReference) -> bool:
                return digest.validate_image(
                    image_ref, client.get_manifest_bytes
                )

            validate_function = _validate

        fetcher = fetching.SignatureFetcher(
            verify_function,
            validate_function,
            fetching.CheckOptions(
                rekor=self._rekor, trust_config=self._trust_config
            ),
        )
        policy = policy_lib.PolicySets(
            skipped_images=self._skipped_images or None,
            allowed_subjects=self._allowed_subjects or None,
            allow_list_enabled=self._allow_list_enabled,
        )
        return Attestor(
            fetcher, cache_lib.SignatureCache(self._cache_size), policy
        )
