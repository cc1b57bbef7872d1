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

"""Shared fixtures for image_attestor tests."""

import base64
import datetime
import json

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
import pytest


DIGEST = "sha256:" + "a" * 64


def _make_certificate(emails=(), uris=()):
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "sigstore")])
    now = datetime.datetime.now(datetime.timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=1))
        .not_valid_after(now + datetime.timedelta(minutes=10))
    )
    sans = [x509.RFC822Name(e) for e in emails]
    sans += [x509.UniformResourceIdentifier(u) for u in uris]
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName(sans), critical=False
        )
    cert = builder.sign(key, hashes.SHA256())
    return cert.public_bytes(serialization.Encoding.PEM).decode()


def _make_payload(subject=None, optional=None):
    data = {
        "critical": {
            "identity": {"docker-reference": "registry.example.com/app"},
            "image": {"docker-manifest-digest": DIGEST},
            "type": "cosign container image signature",
        },
        "optional": optional,
    }
    if subject is not None:
        data["optional"] = dict(optional or {}, subject=subject)
    return json.dumps(data).encode()


def _make_bundle(
    content="MEUCIQCsignature",
    log_id="c0d23d6ad406973f9559f3ba2d1ca01f84147d8ffc5b8445c224f98b9591801d",
    integrated_time=1650000000,
    log_index=42,
    set_="MEQCIBset",
):
    body = {
        "apiVersion": "0.0.1",
        "kind": "hashedrekord",
        "spec": {
            "data": {"hash": {"algorithm": "sha256", "value": "ab" * 32}},
            "signature": {"content": content, "publicKey": {"content": "pk"}},
        },
    }
    payload = {
        "body": base64.b64encode(json.dumps(body).encode()).decode(),
        "integratedTime": integrated_time,
        "logIndex": log_index,
        "logID": log_id,
    }
    return json.dumps({"SignedEntryTimestamp": set_, "Payload": payload})


@pytest.fixture
def make_certificate():
    """Returns a factory of PEM certificates with the given SANs."""
    return _make_certificate


@pytest.fixture
def make_payload():
    """Returns a factory of cosign simple signing payloads."""
    return _make_payload


@pytest.fixture
def make_bundle():
    """Returns a factory of cosign Rekor bundle annotations."""
    return _make_bundle


@pytest.fixture
def image_digest():
    return DIGEST
