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

"""Skip list and subject allow list applied during attestation.

The skip list names image IDs whose verification is bypassed and treated as
passed. The allow list, when enabled, names the only subjects whose
signatures may produce selectors.

Every mutation bumps `generation`, so results computed under an older policy
can be recognized and discarded.
"""

from __future__ import annotations

from collections.abc import Iterable
import logging
import threading

from image_attestor import errors
from image_attestor import selectors as selectors_lib


logger = logging.getLogger(__name__)


class PolicySets:
    """Thread-safe skip and allow lists owned by one attestor."""

    def __init__(
        self,
        skipped_images: Iterable[str] | None = None,
        allowed_subjects: Iterable[str] | None = None,
        allow_list_enabled: bool = False,
    ):
        self._lock = threading.Lock()
        self._skipped_images: set[str] | None = (
            set(skipped_images) if skipped_images is not None else None
        )
        self._allowed_subjects: set[str] | None = (
            set(allowed_subjects) if allowed_subjects is not None else None
        )
        self._allow_list_enabled = allow_list_enabled
        self._generation = 0

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    @property
    def allow_list_enabled(self) -> bool:
        with self._lock:
            return self._allow_list_enabled

    def should_skip(self, image_id: str) -> bool:
        """Checks whether verification of an image is bypassed.

        Raises:
            EmptyImageID: `image_id` is empty while a skip list exists.
        """
        with self._lock:
            if self._skipped_images is None:
                return False
            if not image_id:
                raise errors.EmptyImageID("Image ID is empty")
            return image_id in self._skipped_images

    def _is_allowed_locked(self, subject: str) -> bool:
        if not self._allow_list_enabled:
            return True
        return bool(self._allowed_subjects) and (
            subject in self._allowed_subjects
        )

    def is_allowed(self, subject: str) -> bool:
        """Checks whether a subject may produce selectors."""
        with self._lock:
            return self._is_allowed_locked(subject)

    def filter_allowed(
        self, selectors: Iterable[selectors_lib.SignatureSelector]
    ) -> tuple[list[selectors_lib.SignatureSelector], int]:
        """Drops the selectors whose subject is not allowed.

        All selectors are checked against the same policy state.

        Returns:
            The retained selectors, in order, and the policy generation they
            were checked against.
        """
        retained = []
        with self._lock:
            generation = self._generation
            for selector in selectors:
                if self._is_allowed_locked(selector.subject):
                    retained.append(selector)
                else:
                    logger.warning(
                        "Subject %s is not in the allow list, suppressing",
                        selector.subject,
                    )
        return retained, generation

    def add_skipped_image(self, image_id: str) -> None:
        with self._lock:
            if self._skipped_images is None:
                self._skipped_images = set()
            self._skipped_images.add(image_id)
            self._generation += 1

    def clear_skip_list(self) -> None:
        with self._lock:
            self._skipped_images = None
            self._generation += 1

    def add_allowed_subject(self, subject: str) -> None:
        with self._lock:
            if self._allowed_subjects is None:
                self._allowed_subjects = set()
            self._allowed_subjects.add(subject)
            self._generation += 1

    def clear_allowed_subjects(self) -> None:
        with self._lock:
            self._allowed_subjects = None
            self._generation += 1

    def enable_allowed_subjects(self, enabled: bool) -> None:
        with self._lock:
            self._allow_list_enabled = enabled
            self._generation += 1
