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

"""Errors raised while attesting container image signatures.

Every error derives from `AttestationError`, which is a `ValueError`, so
callers that only care about "the image could not be attested" can catch
either.
"""


class AttestationError(ValueError):
    """Base class for all image attestation failures."""


class ReferenceParseError(AttestationError):
    """The image reference could not be parsed."""


class InvalidEndpoint(AttestationError):
    """The transparency log URL is malformed or uses a forbidden scheme."""


class ManifestFetchError(AttestationError):
    """The image manifest could not be retrieved from the registry."""


class DigestMismatch(AttestationError):
    """The manifest served by the registry does not hash to the digest."""


class NotADigestReference(AttestationError):
    """The image reference names a tag instead of an immutable digest."""


class VerificationFailed(AttestationError):
    """The signature verifier returned an error or an unverified result."""


class PayloadDecodeError(AttestationError):
    """A signature payload or transparency log bundle is malformed.

    Only raised internally: the selector extractor contains it to the
    signature it came from.
    """


class EmptyImageID(AttestationError):
    """A policy check was asked about an empty image identifier."""
