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

"""Verified cosign signatures and their transparency log bundles.

A signature is what the verifier hands back after checking an image: the
signed payload, the signing certificate (for keyless signatures) and the
Rekor bundle proving the signature was logged. The accessors are lazy so a
malformed certificate or bundle only affects the selector derived from that
one signature.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import json
from typing import Any, Protocol

from cryptography import x509

from image_attestor import errors


# Annotations cosign sets on each layer of a `sha256-<hex>.sig` artifact.
SIGNATURE_ANNOTATION = "dev.cosignproject.cosign/signature"
CERTIFICATE_ANNOTATION = "dev.sigstore.cosign/certificate"
BUNDLE_ANNOTATION = "dev.sigstore.cosign/bundle"

SIMPLE_SIGNING_MEDIA_TYPE = "application/vnd.dev.cosign.simplesigning.v1+json"


@dataclass(frozen=True)
class Bundle:
    """Rekor bundle attached to a cosign signature.

    Attributes:
        body: Base64 encoded Rekor entry body.
        integrated_time: Unix time the entry was integrated into the log,
          0 when unknown.
        log_index: Index of the entry in the log.
        log_id: Identifier of the log (hash of its public key).
        signed_entry_timestamp: Base64 encoded signature of the log over the
          entry.
    """

    body: str | None = None
    integrated_time: int = 0
    log_index: int = 0
    log_id: str = ""
    signed_entry_timestamp: str = ""

    @classmethod
    def from_json(cls, raw: str | bytes) -> Bundle:
        """Parses the JSON form cosign stores in the bundle annotation.

        Raises:
            PayloadDecodeError: The bundle is not a JSON object of the
              expected shape.
        """
        try:
            data = json.loads(raw)
        except (ValueError, RecursionError) as e:
            raise errors.PayloadDecodeError(f"Invalid bundle JSON: {e}") from e
        if not isinstance(data, dict):
            raise errors.PayloadDecodeError("Bundle is not a JSON object")

        payload = data.get("Payload") or {}
        if not isinstance(payload, dict):
            raise errors.PayloadDecodeError("Bundle payload is not an object")

        body = payload.get("body")
        try:
            return cls(
                body=body if isinstance(body, str) else None,
                integrated_time=int(payload.get("integratedTime") or 0),
                log_index=int(payload.get("logIndex") or 0),
                log_id=str(payload.get("logID") or ""),
                signed_entry_timestamp=str(
                    data.get("SignedEntryTimestamp") or ""
                ),
            )
        except (TypeError, ValueError) as e:
            raise errors.PayloadDecodeError(
                f"Invalid bundle payload field: {e}"
            ) from e

    def signature_content(self) -> str:
        """Returns the signature content recorded in the Rekor entry.

        The body is a base64 encoded `hashedrekord` (or similar) entry whose
        `spec.signature.content` holds the signature as logged.

        Raises:
            PayloadDecodeError: The body is missing, not base64, not JSON, or
              has no signature content.
        """
        if self.body is None:
            raise errors.PayloadDecodeError("Payload body is not a string")
        try:
            decoded = base64.b64decode(self.body, validate=True)
            entry = json.loads(decoded)
        except (binascii.Error, ValueError, RecursionError) as e:
            raise errors.PayloadDecodeError(
                f"Invalid bundle payload body: {e}"
            ) from e

        content = _lookup(entry, "spec", "signature", "content")
        if not isinstance(content, str) or not content:
            raise errors.PayloadDecodeError(
                "Bundle payload body has no signature content"
            )
        return content


def _lookup(data: Any, *keys: str) -> Any:
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


class Signature(Protocol):
    """A signature that the verifier has already checked."""

    def payload(self) -> bytes:
        """Returns the signed payload."""
        ...

    def cert(self) -> x509.Certificate | None:
        """Returns the signing certificate, if the signature has one."""
        ...

    def bundle(self) -> Bundle | None:
        """Returns the transparency log bundle, if the signature has one."""
        ...


class OciSignature:
    """A cosign signature stored as one layer of a signature artifact."""

    def __init__(
        self,
        payload: bytes,
        *,
        base64_signature: str = "",
        certificate_pem: str | None = None,
        bundle_json: str | None = None,
    ):
        self._payload = payload
        self._base64_signature = base64_signature
        self._certificate_pem = certificate_pem
        self._bundle_json = bundle_json

    @classmethod
    def from_layer(
        cls, layer: dict[str, Any], payload: bytes
    ) -> OciSignature:
        """Builds a signature from a manifest layer and its blob."""
        annotations = layer.get("annotations") or {}
        return cls(
            payload,
            base64_signature=annotations.get(SIGNATURE_ANNOTATION, ""),
            certificate_pem=annotations.get(CERTIFICATE_ANNOTATION) or None,
            bundle_json=annotations.get(BUNDLE_ANNOTATION) or None,
        )

    def payload(self) -> bytes:
        return self._payload

    def base64_signature(self) -> str:
        return self._base64_signature

    def cert(self) -> x509.Certificate | None:
        if self._certificate_pem is None:
            return None
        try:
            return x509.load_pem_x509_certificate(
                self._certificate_pem.encode()
            )
        except ValueError as e:
            raise errors.PayloadDecodeError(
                f"Error accessing the certificate: {e}"
            ) from e

    def bundle(self) -> Bundle | None:
        if self._bundle_json is None:
            return None
        return Bundle.from_json(self._bundle_json)

    def __repr__(self) -> str:
        return (
            f"OciSignature(payload={self._payload!r}, "
            f"certificate={self._certificate_pem is not None}, "
            f"bundle={self._bundle_json is not None})"
        )
