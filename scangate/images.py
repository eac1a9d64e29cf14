from dataclasses import dataclass
from typing import Optional

from scangate.exceptions import InvalidImageReference


@dataclass(frozen=True)
class ParsedImage:
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def is_digest(self) -> bool:
        return self.digest is not None

    def pinned(self, digest: str) -> str:
        """Return ``repository@digest`` for this image."""
        return f"{self.repository}@{digest}"


def parse_image_reference(image: str) -> ParsedImage:
    """
    Split an image reference into repository, tag and digest.

    Examples:
        nginx -> (nginx, None, None)
        nginx:1.25 -> (nginx, 1.25, None)
        localhost:5000/app:v1 -> (localhost:5000/app, v1, None)
        quay.io/org/app@sha256:ab.. -> (quay.io/org/app, None, sha256:ab..)
        app:v1@sha256:ab.. -> (app, v1, sha256:ab..)
    """
    if image is None or not image.strip():
        raise InvalidImageReference("Image reference is empty")

    image = image.strip()
    digest = None
    tag = None

    if "@" in image:
        image, digest = image.split("@", 1)
        if not digest:
            raise InvalidImageReference(f"Invalid image reference: {image}@")

    # Only the last path component can carry a tag; earlier colons are ports.
    if ":" in image.split("/")[-1]:
        image, tag = image.rsplit(":", 1)

    if not image:
        raise InvalidImageReference("Image reference has no repository")

    return ParsedImage(repository=image, tag=tag, digest=digest)
