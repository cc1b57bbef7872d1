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

"""Conversion of verified signatures into workload selectors.

Each verified signature contributes at most one `SignatureSelector`. The
signer ("subject") is taken from the signing certificate when there is one,
and from the `optional.subject` field of the signed payload otherwise:

- a certificate email address wins over everything else;
- a certificate URI is used when there is no email address;
- a certificate with neither leaves the subject empty, even if the payload
  names one.

A signature whose payload cannot be decoded, or that yields no subject,
produces an unverified selector instead of an error, so one bad signature
never hides the others.

Selectors render to strings scoped by container ID:

```
<container>:image-signature-subject:<subject>
<container>:image-signature-content:<content>
<container>:image-signature-logid:<log id>
<container>:image-signature-integrated-time:<unix seconds>
```
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import json
import logging
import re

from cryptography import x509

from image_attestor import errors
from image_attestor._sigstore import signature as sigstore_signature


logger = logging.getLogger(__name__)


# Appended once to the selectors of an image that passed verification.
SIGNATURE_VERIFIED_SELECTOR = "sigstore-validation:passed"

_LEADING_SLASHES_RE = re.compile(r"^/*")


@dataclass(frozen=True)
class SignatureSelector:
    """Identity facts derived from one verified signature."""

    subject: str = ""
    content: str = ""
    log_id: str = ""
    integrated_time: str = ""
    verified: bool = False

    def to_strings(self, container_id: str) -> list[str]:
        """Renders the non-empty fields as container scoped selectors."""
        values = [
            ("image-signature-subject", self.subject),
            ("image-signature-content", self.content),
            ("image-signature-logid", self.log_id),
            ("image-signature-integrated-time", self.integrated_time),
        ]
        return [
            f"{container_id}:{name}:{value}" for name, value in values if value
        ]


def cert_subject(cert: x509.Certificate | None) -> str:
    """Returns the signer identity recorded in a certificate.

    The first email address wins. Otherwise the first URI is used, with any
    leading slashes (left by an empty authority) removed.

    Raises:
        PayloadDecodeError: The certificate extensions are malformed.
    """
    if cert is None:
        return ""
    try:
        san = cert.extensions.get_extension_for_class(
            x509.SubjectAlternativeName
        ).value
    except x509.ExtensionNotFound:
        return ""
    except (ValueError, x509.DuplicateExtension) as e:
        raise errors.PayloadDecodeError(
            f"Invalid certificate extensions: {e}"
        ) from e

    emails = san.get_values_for_type(x509.RFC822Name)
    if emails:
        return emails[0]
    uris = san.get_values_for_type(x509.UniformResourceIdentifier)
    if uris:
        return _LEADING_SLASHES_RE.sub("", uris[0], count=1)
    return ""


def payload_subject(payload: bytes) -> str:
    """Returns the `optional.subject` field of a signed payload.

    Raises:
        PayloadDecodeError: The payload is not a JSON object.
    """
    try:
        data = json.loads(payload)
    except (ValueError, RecursionError) as e:
        raise errors.PayloadDecodeError(
            f"Invalid signature payload: {e}"
        ) from e
    if not isinstance(data, dict):
        raise errors.PayloadDecodeError("Signature payload is not an object")

    optional = data.get("optional")
    if not isinstance(optional, dict):
        return ""
    subject = optional.get("subject")
    return subject if isinstance(subject, str) else ""


def signature_subject(signature: sigstore_signature.Signature) -> str:
    """Derives the subject of a signature.

    Raises:
        PayloadDecodeError: The payload or the certificate is malformed.
    """
    subject = payload_subject(signature.payload())
    cert = signature.cert()
    if cert is not None:
        subject = cert_subject(cert)
    return subject


def selector_from_signature(
    signature: sigstore_signature.Signature,
) -> SignatureSelector:
    """Extracts the selector of one verified signature.

    Never raises for malformed signature data: the result is then an empty,
    unverified selector.
    """
    try:
        subject = signature_subject(signature)
    except errors.PayloadDecodeError as e:
        logger.warning("Error getting signature subject: %s", e)
        return SignatureSelector()

    if not subject:
        logger.warning("Error getting signature subject: empty subject")
        return SignatureSelector()

    try:
        bundle = signature.bundle()
    except errors.PayloadDecodeError as e:
        logger.warning("Error getting signature bundle: %s", e)
        bundle = None

    if bundle is None:
        return SignatureSelector(subject=subject, verified=True)

    try:
        content = bundle.signature_content()
    except errors.PayloadDecodeError as e:
        logger.warning("Error getting signature content: %s", e)
        content = ""

    return SignatureSelector(
        subject=subject,
        content=content,
        log_id=bundle.log_id,
        integrated_time=(
            str(bundle.integrated_time) if bundle.integrated_time else ""
        ),
        verified=True,
    )


def extract_selectors(
    signatures: Iterable[sigstore_signature.Signature],
) -> list[SignatureSelector]:
    """Extracts the selectors of all signatures that yield a subject."""
    selectors = []
    for signature in signatures:
        selector = selector_from_signature(signature)
        if selector.verified:
            selectors.append(selector)
    return selectors


def render(
    selectors: Iterable[SignatureSelector], container_id: str
) -> list[str]:
    """Renders selectors for a container.

    The verification sentinel is appended only if at least one selector was
    rendered from.
    """
    result = []
    found = False
    for selector in selectors:
        found = True
        result.extend(selector.to_strings(container_id))
    if found:
        result.append(SIGNATURE_VERIFIED_SELECTOR)
    return result
