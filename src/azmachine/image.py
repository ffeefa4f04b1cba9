"""VM image reference as a closed choice.

A provider spec names its image in exactly one of four ways. The raw spec has
four optional fields; resolve_image_reference collapses them into a single
ImageReference whose ``kind`` says which one is active, so the rest of the
code never has to deal with "none set" or "two set".

Public API:
    ImageKind: The four ways to reference an image
    Urn: Parsed ``publisher:offer:sku:version``
    ImageReference: Validated image reference
    resolve_image_reference: Build an ImageReference from provider spec fields
"""

from dataclasses import dataclass
from enum import StrEnum

from azmachine.errors import ConfigurationError
from azmachine.provider_spec import ImageReferenceSpec


class ImageKind(StrEnum):
    """Image reference kinds, valued by their provider spec field name."""

    ID = "id"
    URN = "urn"
    COMMUNITY_GALLERY = "communityGalleryImageID"
    SHARED_GALLERY = "sharedGalleryImageID"


@dataclass(frozen=True)
class Urn:
    """Platform image URN."""

    publisher: str
    offer: str
    sku: str
    version: str

    @classmethod
    def parse(cls, urn: str) -> "Urn":
        """Parse ``publisher:offer:sku:version``.

        Raises:
            ConfigurationError: Unless there are exactly four non-empty parts

        Examples:
            >>> Urn.parse("Canonical:ubuntu-24_04-lts:server:latest").sku
            'server'
        """
        parts = urn.split(":")
        if len(parts) != 4 or any(not part.strip() for part in parts):
            raise ConfigurationError(
                f"malformed image urn {urn!r}: expected publisher:offer:sku:version "
                "with every part non-empty",
                fields=[ImageKind.URN.value],
            )
        return cls(*(part.strip() for part in parts))

    def __str__(self) -> str:
        return f"{self.publisher}:{self.offer}:{self.sku}:{self.version}"


@dataclass(frozen=True)
class ImageReference:
    """Exactly one image reference."""

    kind: ImageKind
    value: str

    def __post_init__(self):
        if not self.value or not self.value.strip():
            raise ConfigurationError(f"image reference {self.kind} must not be empty")
        if self.kind == ImageKind.URN:
            Urn.parse(self.value)

    @property
    def is_marketplace(self) -> bool:
        """Platform images may carry a marketplace plan."""
        return self.kind == ImageKind.URN

    @property
    def urn(self) -> Urn:
        if self.kind != ImageKind.URN:
            raise ValueError(f"image reference is a {self.kind}, not a urn")
        return Urn.parse(self.value)


def resolve_image_reference(spec: ImageReferenceSpec) -> ImageReference:
    """Collapse the four optional image fields into one ImageReference.

    Empty strings count as unset.

    Raises:
        ConfigurationError: If zero or several fields are set (naming them),
            or the URN is malformed
    """
    candidates = {
        ImageKind.ID: spec.id,
        ImageKind.URN: spec.urn,
        ImageKind.COMMUNITY_GALLERY: spec.community_gallery_image_id,
        ImageKind.SHARED_GALLERY: spec.shared_gallery_image_id,
    }
    present = {kind: value for kind, value in candidates.items() if value and value.strip()}
    if not present:
        raise ConfigurationError(
            "imageReference: exactly one of id, urn, communityGalleryImageID, "
            "sharedGalleryImageID must be set, found none"
        )
    if len(present) > 1:
        names = [kind.value for kind in present]
        raise ConfigurationError(
            f"imageReference: {', '.join(names)} are mutually exclusive, set only one",
            fields=names,
        )
    ((kind, value),) = present.items()
    return ImageReference(kind=kind, value=value.strip())


__all__ = ["ImageKind", "ImageReference", "Urn", "resolve_image_reference"]
