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

"""Tests for deriving selectors from signatures."""

import json
import logging
from unittest import mock

from cryptography import x509
from cryptography.x509.oid import ExtensionOID
import pytest

from image_attestor import errors
from image_attestor import selectors
from image_attestor._sigstore import signature as sigstore_signature


class FakeSignature:
    def __init__(self, payload, cert=None):
        self._payload = payload
        self._cert = cert

    def payload(self):
        return self._payload

    def cert(self):
        return self._cert

    def bundle(self):
        return None


def _broken_certificate(error):
    cert = mock.MagicMock()
    type(cert).extensions = mock.PropertyMock(side_effect=error)
    return cert


class TestSignatureSelector:
    def test_to_strings_renders_non_empty_fields(self):
        selector = selectors.SignatureSelector(
            subject="dev@example.com",
            content="MEUC",
            log_id="abc",
            integrated_time="1650000000",
            verified=True,
        )

        assert selector.to_strings("c1") == [
            "c1:image-signature-subject:dev@example.com",
            "c1:image-signature-content:MEUC",
            "c1:image-signature-logid:abc",
            "c1:image-signature-integrated-time:1650000000",
        ]

    def test_to_strings_subject_only(self):
        selector = selectors.SignatureSelector(subject="dev@example.com")
        assert selector.to_strings("c1") == [
            "c1:image-signature-subject:dev@example.com"
        ]


class TestCertSubject:
    def test_none(self):
        assert selectors.cert_subject(None) == ""

    def test_email_wins_over_uri(self, make_certificate):
        cert = sigstore_signature.OciSignature(
            b"{}",
            certificate_pem=make_certificate(
                emails=["first@example.com", "second@example.com"],
                uris=["https://github.com/org/repo"],
            ),
        ).cert()
        assert selectors.cert_subject(cert) == "first@example.com"

    def test_uri(self, make_certificate):
        cert = sigstore_signature.OciSignature(
            b"{}",
            certificate_pem=make_certificate(
                uris=["https://github.com/org/repo/.github/workflows/r.yml"]
            ),
        ).cert()
        assert selectors.cert_subject(cert) == (
            "https://github.com/org/repo/.github/workflows/r.yml"
        )

    def test_uri_leading_slashes_removed(self, make_certificate):
        cert = sigstore_signature.OciSignature(
            b"{}", certificate_pem=make_certificate(uris=["//spiffe-id/a"])
        ).cert()
        assert selectors.cert_subject(cert) == "spiffe-id/a"

    @pytest.mark.parametrize(
        "error",
        [
            ValueError("error parsing asn1 value"),
            x509.DuplicateExtension(
                "duplicate SAN", ExtensionOID.SUBJECT_ALTERNATIVE_NAME
            ),
        ],
    )
    def test_malformed_extensions(self, error):
        with pytest.raises(errors.PayloadDecodeError, match="extensions"):
            selectors.cert_subject(_broken_certificate(error))

    def test_no_san(self, make_certificate):
        cert = sigstore_signature.OciSignature(
            b"{}", certificate_pem=make_certificate()
        ).cert()
        assert selectors.cert_subject(cert) == ""


class TestPayloadSubject:
    def test_subject(self, make_payload):
        payload = make_payload(subject="dev@example.com")
        assert selectors.payload_subject(payload) == "dev@example.com"

    def test_no_optional(self, make_payload):
        assert selectors.payload_subject(make_payload()) == ""

    def test_non_string_subject(self):
        payload = json.dumps({"optional": {"subject": 7}}).encode()
        assert selectors.payload_subject(payload) == ""

    @pytest.mark.parametrize("payload", [b"not json", b"[]", b"\xff"])
    def test_malformed(self, payload):
        with pytest.raises(ValueError):
            selectors.payload_subject(payload)


class TestSelectorFromSignature:
    def test_certificate_overrides_payload(
        self, make_payload, make_certificate, make_bundle
    ):
        signature = sigstore_signature.OciSignature(
            make_payload(subject="payload@example.com"),
            certificate_pem=make_certificate(emails=["cert@example.com"]),
            bundle_json=make_bundle(),
        )

        selector = selectors.selector_from_signature(signature)

        assert selector == selectors.SignatureSelector(
            subject="cert@example.com",
            content="MEUCIQCsignature",
            log_id=(
                "c0d23d6ad406973f9559f3ba2d1ca01f"
                "84147d8ffc5b8445c224f98b9591801d"
            ),
            integrated_time="1650000000",
            verified=True,
        )

    def test_certificate_without_identity_wins(
        self, make_payload, make_certificate
    ):
        signature = sigstore_signature.OciSignature(
            make_payload(subject="payload@example.com"),
            certificate_pem=make_certificate(),
        )

        selector = selectors.selector_from_signature(signature)

        assert not selector.verified
        assert selector == selectors.SignatureSelector()

    def test_payload_subject_without_bundle(self, make_payload):
        signature = sigstore_signature.OciSignature(
            make_payload(subject="dev@example.com")
        )

        selector = selectors.selector_from_signature(signature)

        assert selector == selectors.SignatureSelector(
            subject="dev@example.com", verified=True
        )

    def test_empty_payload(self):
        signature = sigstore_signature.OciSignature(b"")

        selector = selectors.selector_from_signature(signature)

        assert not selector.verified
        assert selector == selectors.SignatureSelector()

    def test_undecodable_payload(self, caplog):
        signature = sigstore_signature.OciSignature(b"garbage")

        with caplog.at_level(logging.WARNING):
            selector = selectors.selector_from_signature(signature)

        assert selector == selectors.SignatureSelector()
        assert "Error getting signature subject" in caplog.text

    def test_malformed_bundle_is_ignored(self, make_payload, caplog):
        signature = sigstore_signature.OciSignature(
            make_payload(subject="dev@example.com"), bundle_json="{"
        )

        with caplog.at_level(logging.WARNING):
            selector = selectors.selector_from_signature(signature)

        assert selector == selectors.SignatureSelector(
            subject="dev@example.com", verified=True
        )
        assert "Error getting signature bundle" in caplog.text

    def test_bundle_without_content(self, make_payload):
        bundle = json.dumps(
            {"Payload": {"logID": "log", "integratedTime": 0}}
        )
        signature = sigstore_signature.OciSignature(
            make_payload(subject="dev@example.com"), bundle_json=bundle
        )

        selector = selectors.selector_from_signature(signature)

        assert selector == selectors.SignatureSelector(
            subject="dev@example.com", log_id="log", verified=True
        )


class TestExtractAndRender:
    def test_extract_keeps_only_verified(self, make_payload):
        signatures = [
            sigstore_signature.OciSignature(make_payload(subject="a@x.io")),
            sigstore_signature.OciSignature(b"garbage"),
            sigstore_signature.OciSignature(make_payload()),
            sigstore_signature.OciSignature(make_payload(subject="b@x.io")),
        ]

        extracted = selectors.extract_selectors(signatures)

        assert [s.subject for s in extracted] == ["a@x.io", "b@x.io"]

    def test_deeply_nested_payload_does_not_abort(self, make_payload):
        signatures = [
            sigstore_signature.OciSignature(b"[" * 200000),
            sigstore_signature.OciSignature(make_payload(subject="a@x.io")),
        ]

        extracted = selectors.extract_selectors(signatures)

        assert [s.subject for s in extracted] == ["a@x.io"]

    def test_malformed_certificate_does_not_abort(self, make_payload):
        signatures = [
            FakeSignature(make_payload(), _broken_certificate(ValueError())),
            sigstore_signature.OciSignature(make_payload(subject="a@x.io")),
        ]

        extracted = selectors.extract_selectors(signatures)

        assert [s.subject for s in extracted] == ["a@x.io"]

    def test_render_appends_sentinel_once(self):
        rendered = selectors.render(
            [
                selectors.SignatureSelector(subject="a@x.io", verified=True),
                selectors.SignatureSelector(subject="b@x.io", verified=True),
            ],
            "c1",
        )

        assert rendered == [
            "c1:image-signature-subject:a@x.io",
            "c1:image-signature-subject:b@x.io",
            selectors.SIGNATURE_VERIFIED_SELECTOR,
        ]

    def test_render_nothing(self):
        assert selectors.render([], "c1") == []
