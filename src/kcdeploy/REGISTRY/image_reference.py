# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Image reference parsing used to validate configured container images.
Understands references like 'postgres:15' or 'quay.io/keycloak/keycloak:26.0'.
"""

import re
from typing import Optional
from dataclasses import dataclass

_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed container image reference.

    Examples:
        - postgres:15 -> docker.io/library/postgres:15
        - osixia/openldap:1.5.0 -> docker.io/osixia/openldap:1.5.0
        - quay.io/keycloak/keycloak -> quay.io/keycloak/keycloak:latest
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    FLOATING_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        :param reference: Reference such as 'postgres:15'.
        :return: Parsed reference.
        :raises ValueError: If the reference is empty or malformed.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")
        if any(ch.isspace() for ch in reference):
            raise ValueError(f"Image reference contains whitespace: '{reference}'")

        remainder, _, digest = reference.partition("@")
        if digest and not _DIGEST.match(digest):
            raise ValueError(f"Malformed digest in '{reference}'")

        # A colon after the last slash separates the tag; before it, a registry port.
        tag = None
        slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > slash:
            remainder, tag = remainder[:colon], remainder[colon + 1:]
            if not _TAG.match(tag):
                raise ValueError(f"Malformed tag in '{reference}'")

        parts = remainder.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry, path = first, parts[1:]
        else:
            registry, path = cls.DEFAULT_REGISTRY, parts
            if len(path) == 1:
                path = ["library"] + path

        for component in path:
            if not _COMPONENT.match(component):
                raise ValueError(f"Malformed repository component '{component}' in '{reference}'")

        return cls(registry=registry, repository="/".join(path), tag=tag, digest=digest or None)

    @property
    def effective_tag(self) -> Optional[str]:
        """Tag the runtime will pull, defaulting to 'latest' when nothing pins the image."""
        if self.tag:
            return self.tag
        return None if self.digest else self.FLOATING_TAG

    @property
    def is_floating(self) -> bool:
        """True when the reference resolves differently over time ('latest' or no tag)."""
        return not self.digest and self.effective_tag == self.FLOATING_TAG

    @property
    def full_name(self) -> str:
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        return f"{name}:{self.effective_tag}"

    def __str__(self) -> str:
        return self.full_name
