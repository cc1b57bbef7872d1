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

"""Transparency log (Rekor) endpoint configuration."""

from __future__ import annotations

from dataclasses import dataclass
import urllib.parse

from image_attestor import errors


DEFAULT_SCHEME = "https"
DEFAULT_HOST = "rekor.sigstore.dev"
DEFAULT_BASE_PATH = "/"


@dataclass(frozen=True)
class RekorEndpoint:
    """Location of a Rekor instance.

    Invariant: `scheme` is empty or `https`; `host` is not empty.
    """

    scheme: str = DEFAULT_SCHEME
    host: str = DEFAULT_HOST
    path: str = DEFAULT_BASE_PATH

    def __post_init__(self):
        if self.scheme not in ("", "https"):
            raise errors.InvalidEndpoint(
                f"Invalid rekor URL Scheme: {self.scheme}"
            )
        if not self.host:
            raise errors.InvalidEndpoint("Invalid rekor URL Host: empty host")

    @property
    def url(self) -> str:
        scheme = self.scheme or DEFAULT_SCHEME
        return f"{scheme}://{self.host}{self.path or DEFAULT_BASE_PATH}"


def parse_rekor_url(rekor_url: str) -> RekorEndpoint:
    """Parses and validates a Rekor URL.

    Args:
        rekor_url: The URL to parse. An empty string selects the public
          Sigstore instance.

    Returns:
        The validated endpoint.

    Raises:
        InvalidEndpoint: The scheme is not `https` or the host is missing.
    """
    if not rekor_url:
        return RekorEndpoint()

    try:
        parsed = urllib.parse.urlsplit(rekor_url)
    except ValueError as e:
        raise errors.InvalidEndpoint(f"Error parsing rekor URI: {e}") from e

    if parsed.scheme and parsed.scheme != "https":
        raise errors.InvalidEndpoint(
            f"Invalid rekor URL Scheme: {parsed.scheme}"
        )
    if not parsed.netloc:
        raise errors.InvalidEndpoint(f"Invalid rekor URL Host: {rekor_url}")

    return RekorEndpoint(
        scheme=parsed.scheme, host=parsed.netloc, path=parsed.path
    )
