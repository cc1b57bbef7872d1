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

"""Signature verification by the `cosign` binary.

`cosign verify --output json` prints the payload of every signature it could
verify, with the signer identity and Rekor bundle folded into the `optional`
section. The signing certificates are not part of that output, so they are
read from the signature artifact in the registry and matched back to the
verified payloads.

The artifact is read again after cosign ran and anyone able to push to its
tag can add layers, so a layer is only used when it agrees with what cosign
verified: its certificate names the reported subject and its signature is
the one logged in the verified bundle. Layers that cosign did not report are
never returned.
"""

from __future__ import annotations

import json
import logging
import pathlib
import subprocess
from typing import TYPE_CHECKING, Any

from image_attestor import errors
from image_attestor import selectors as selectors_lib
from image_attestor._oci import attachment
from image_attestor._sigstore import signature as sigstore_signature


if TYPE_CHECKING:
    from image_attestor._oci.registry import ImageReference
    from image_attestor._oci.registry import OrasClient
    from image_attestor.fetching import CheckOptions


logger = logging.getLogger(__name__)


# Keys cosign adds to the `optional` section of the payloads it prints.
_COSIGN_OUTPUT_KEYS = frozenset(["Bundle", "Issuer", "Subject"])

DEFAULT_TIMEOUT = 60


def _signed_entry_timestamp(bundle: Any) -> str | None:
    if not isinstance(bundle, dict):
        return None
    return bundle.get("SignedEntryTimestamp") or None


def _bundle_content(bundle: Any) -> str | None:
    """Returns the signature content logged in a bundle cosign printed."""
    if not isinstance(bundle, dict):
        return None
    try:
        parsed = sigstore_signature.Bundle.from_json(json.dumps(bundle))
        return parsed.signature_content()
    except errors.PayloadDecodeError:
        return None


def _strip_cosign_keys(payload: dict[str, Any]) -> dict[str, Any]:
    """Removes what cosign added to a payload it printed."""
    result = dict(payload)
    optional = result.get("optional")
    if isinstance(optional, dict):
        optional = {
            k: v for k, v in optional.items() if k not in _COSIGN_OUTPUT_KEYS
        }
    result["optional"] = optional or None
    return result


def _normalized_payload(raw: bytes) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except (ValueError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None
    payload = dict(payload)
    payload["optional"] = payload.get("optional") or None
    return payload


def _layer_matches(
    layer: sigstore_signature.OciSignature,
    subject: str,
    bundle: Any,
    content: str | None,
) -> bool:
    """Checks a layer against the identity and bundle cosign verified."""
    try:
        cert = layer.cert()
        layer_subject = selectors_lib.cert_subject(cert) if cert else ""
    except errors.PayloadDecodeError:
        return False
    if layer_subject != subject:
        return False
    if bundle:
        return content is not None and layer.base64_signature() == content
    return True


def _signature_from_output(
    entry: dict[str, Any], optional: dict[str, Any], subject: str, bundle: Any
) -> sigstore_signature.OciSignature:
    """Builds a signature from a payload cosign printed.

    The subject cosign reported replaces any subject in the payload, as the
    certificate it was taken from would.
    """
    payload = dict(entry)
    if subject:
        payload["optional"] = dict(optional, subject=subject)
    return sigstore_signature.OciSignature(
        json.dumps(payload).encode(),
        bundle_json=json.dumps(bundle) if bundle else None,
    )


class CosignVerifier:
    """Verifies image signatures with the cosign CLI.

    Identities are not constrained here: any certificate chaining to the
    trust roots is accepted, and the subject allow list is applied later on
    the extracted selectors.
    """

    def __init__(
        self,
        client: OrasClient,
        *,
        cosign_path: str = "cosign",
        public_key: pathlib.Path | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        """Initializes the verifier.

        Args:
            client: Registry client used to read the signature artifact.
            cosign_path: Path to (or name of) the cosign binary.
            public_key: Verify against this key instead of keyless
              certificates.
            timeout: Seconds to wait for cosign before giving up.
        """
        self._client = client
        self._cosign_path = cosign_path
        self._public_key = public_key
        self._timeout = timeout

    def _command(
        self, image_ref: ImageReference, options: CheckOptions
    ) -> list[str]:
        args = [
            self._cosign_path,
            "verify",
            "--output=json",
            f"--rekor-url={options.rekor.url}",
        ]
        if self._public_key is not None:
            args.append(f"--key={self._public_key}")
        else:
            args.extend(
                [
                    "--certificate-identity-regexp=.*",
                    "--certificate-oidc-issuer-regexp=.*",
                ]
            )
        if options.trust_config is not None:
            args.append(f"--trusted-root={options.trust_config}")
        args.append(str(image_ref))
        return args

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        logger.debug("Running %s", " ".join(args))
        try:
            return subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as e:
            raise errors.VerificationFailed(
                f"cosign binary not found: {self._cosign_path}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise errors.VerificationFailed(
                f"cosign timed out after {self._timeout} seconds"
            ) from e

    def __call__(
        self, image_ref: ImageReference, options: CheckOptions
    ) -> tuple[list[sigstore_signature.Signature], bool]:
        """Verifies the signatures of an image.

        Args:
            image_ref: A digest-qualified image reference.
            options: Transparency log and trust root settings.

        Returns:
            The verified signatures and whether verification succeeded.

        Raises:
            VerificationFailed: cosign could not be run or printed output
              that is not a list of payloads.
            ManifestFetchError: The signature artifact could not be read.
        """
        result = self._run(self._command(image_ref, options))
        if result.returncode != 0:
            logger.warning(
                "cosign could not verify %s: %s",
                image_ref,
                result.stderr.strip(),
            )
            return [], False

        try:
            verified = json.loads(result.stdout)
        except (ValueError, RecursionError) as e:
            raise errors.VerificationFailed(
                f"Unexpected cosign output for {image_ref}: {e}"
            ) from e
        if not isinstance(verified, list) or not all(
            isinstance(entry, dict) for entry in verified
        ):
            raise errors.VerificationFailed(
                f"Unexpected cosign output for {image_ref}: not a list"
            )

        layers = attachment.fetch_signatures(self._client, image_ref)
        return self._match(verified, layers), bool(verified)

    def _match(
        self,
        verified: list[dict[str, Any]],
        layers: list[sigstore_signature.OciSignature],
    ) -> list[sigstore_signature.Signature]:
        """Pairs each verified payload with its layer in the artifact.

        Candidate layers are those with the same Rekor signed entry timestamp,
        then those with the same payload. The first unused candidate that
        agrees with the subject and bundle cosign reported is taken. A
        verified payload without such a layer is built from cosign's output
        alone, without a certificate.
        """
        by_timestamp: dict[str, list[sigstore_signature.OciSignature]] = {}
        by_payload = []
        for layer in layers:
            try:
                bundle = layer.bundle()
            except errors.PayloadDecodeError:
                bundle = None
            if bundle is not None and bundle.signed_entry_timestamp:
                by_timestamp.setdefault(
                    bundle.signed_entry_timestamp, []
                ).append(layer)
            by_payload.append((_normalized_payload(layer.payload()), layer))

        signatures: list[sigstore_signature.Signature] = []
        used = set()
        for entry in verified:
            optional = entry.get("optional")
            if not isinstance(optional, dict):
                optional = {}
            bundle = optional.get("Bundle")
            subject = optional.get("Subject")
            if not isinstance(subject, str):
                subject = ""
            content = _bundle_content(bundle)

            candidates = []
            timestamp = _signed_entry_timestamp(bundle)
            if timestamp is not None:
                candidates.extend(by_timestamp.get(timestamp, []))
            stripped = _strip_cosign_keys(entry)
            candidates.extend(
                layer for payload, layer in by_payload if payload == stripped
            )

            match = None
            for layer in candidates:
                if id(layer) not in used and _layer_matches(
                    layer, subject, bundle, content
                ):
                    match = layer
                    break

            if match is not None:
                used.add(id(match))
                signatures.append(match)
                continue

            logger.debug("No signature layer matches a verified payload")
            signatures.append(
                _signature_from_output(entry, optional, subject, bundle)
            )
        return signatures
