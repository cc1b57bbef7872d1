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

"""The main entry-point for the image_attestor package."""

from collections.abc import Iterable
import logging
import pathlib
import sys

import click

import image_attestor
from image_attestor._sigstore import cosign


# Decorator for the image ID argument.
_image_id_argument = click.argument("image_id", type=str, metavar="IMAGE_ID")

# Decorator for the option naming the container the selectors are scoped to.
_container_id_option = click.option(
    "--container-id",
    type=str,
    metavar="CONTAINER_ID",
    required=True,
    help="ID of the container running the image.",
)

# Decorator for the option to select the transparency log.
_rekor_url_option = click.option(
    "--rekor-url",
    type=str,
    metavar="REKOR_URL",
    default="",
    help="Rekor instance to verify against. Defaults to the public one.",
)

# Decorator for the option to bypass verification of some images.
_skip_image_option = click.option(
    "--skip-image",
    type=str,
    metavar="IMAGE_ID",
    multiple=True,
    help="Image ID whose verification is skipped and treated as passed.",
)

# Decorator for the option to restrict the accepted signers.
_allowed_subject_option = click.option(
    "--allowed-subject",
    type=str,
    metavar="SUBJECT",
    multiple=True,
    help=(
        "Only signatures from this subject produce selectors. Can be "
        "repeated; when absent, every verified subject is accepted."
    ),
)

# Decorator for the option for the custom trust configuration.
_trust_config_option = click.option(
    "--trust-config",
    type=pathlib.Path,
    metavar="TRUST_CONFIG_PATH",
    help="Trusted root to use instead of the Sigstore one.",
)

# Decorator for the option to verify with a public key instead of keyless.
_public_key_option = click.option(
    "--public-key",
    type=pathlib.Path,
    metavar="PUBLIC_KEY",
    help="Path to the public key used for verification.",
)

# Decorator for the option to locate the cosign binary.
_cosign_path_option = click.option(
    "--cosign-path",
    type=str,
    metavar="COSIGN",
    default="cosign",
    show_default=True,
    help="Path to the cosign binary.",
)

# Decorator for the option to bound the verification time.
_timeout_option = click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=cosign.DEFAULT_TIMEOUT,
    show_default=True,
    help="Seconds to wait for cosign.",
)


@click.group(
    context_settings=dict(
        help_option_names=["-h", "--help"],
        token_normalize_func=lambda x: x.replace("_", "-"),
    ),
)
@click.version_option(image_attestor.__version__, "--version")
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
    default="INFO",
    show_default=True,
    metavar="LEVEL",
    envvar="IMAGE_ATTESTOR_LOG_LEVEL",
    help="Set the logging level. This can also be set via the "
    "IMAGE_ATTESTOR_LOG_LEVEL env var.",
)
def main(log_level: str) -> None:
    """Container image signature attestation.

    Use each subcommand's `--help` option for details on each mode.
    """
    logging.basicConfig(
        format="%(message)s", level=getattr(logging, log_level.upper())
    )


@main.command(name="attest")
@_image_id_argument
@_container_id_option
@_rekor_url_option
@_skip_image_option
@_allowed_subject_option
@_trust_config_option
@_public_key_option
@_cosign_path_option
@_timeout_option
def _attest(
    image_id: str,
    container_id: str,
    rekor_url: str,
    skip_image: Iterable[str],
    allowed_subject: Iterable[str],
    trust_config: pathlib.Path | None,
    public_key: pathlib.Path | None,
    cosign_path: str,
    timeout: int,
) -> None:
    """Prints the signature selectors of a container.

    IMAGE_ID is the digest-qualified image reference the container runs, as
    reported by the container runtime (for example
    `registry.example.com/app@sha256:...`).

    The image digest is checked against the registry, its signatures are
    verified with cosign, and one selector is printed per line. Nothing is
    printed for an image without usable signatures.
    """
    allowed = list(allowed_subject)
    try:
        attestor = (
            image_attestor.attesting.Config()
            .set_rekor_url(rekor_url)
            .set_trust_config(trust_config)
            .add_skipped_images(skip_image)
            .add_allowed_subjects(allowed)
            .enable_allowed_subjects(bool(allowed))
            .use_cosign_verifier(
                cosign_path=cosign_path,
                public_key=public_key,
                timeout=timeout,
            )
            .build()
        )
        selectors = attestor.attest_container_signatures(
            image_attestor.attesting.ContainerStatus(
                image_id=image_id, container_id=container_id
            )
        )
    except Exception as err:
        click.echo(f"Attestation failed:\n{err}", err=True)
        sys.exit(1)

    for selector in selectors:
        click.echo(selector)
