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

"""Attestation of container image signatures.

Given the runtime status of a container, `image_attestor` verifies the
signatures of its image and derives selectors naming who signed it, for use
by a workload identity issuer.

- `image_attestor.attesting`: the `Attestor` and its `Config`, the entry
  point of the library.
- `image_attestor.fetching`: digest validation and signature verification
  for one image.
- `image_attestor.selectors`: derivation of the signer identity from
  verified signatures and rendering of selectors.
- `image_attestor.policy`: the skip list and subject allow list.
- `image_attestor.cache`: the bounded LRU cache of selectors per image.
- `image_attestor.errors`: the errors raised by all of the above.

```python
image_attestor.attesting.Config().build().attest_container_signatures(
    image_attestor.attesting.ContainerStatus(
        image_id="registry.example.com/app@sha256:...", container_id="c1"
    )
)
```
"""

from image_attestor import attesting
from image_attestor import cache
from image_attestor import errors
from image_attestor import fetching
from image_attestor import policy
from image_attestor import selectors


__version__ = "0.1.0"


__all__ = [
    "attesting",
    "cache",
    "errors",
    "fetching",
    "policy",
    "selectors",
]
