"""Image reference resolution with fallback to a default image."""

from __future__ import annotations

import logging
import re

from google.api_core.exceptions import GoogleAPIError

from .compute import ComputeService
from .config import DEFAULT_IMAGE_PATH

logger = logging.getLogger(__name__)

# A full image path must match this format; the optional "family/" segment
# decides whether the name is an image or an image family.
IMAGE_PATH_PATTERN = re.compile(r"projects/(.+)/global/images/(family/)*(.+)")


class ImageResolver:
    """Turns a possibly partial image reference into a verified image path."""

    def __init__(self, compute: ComputeService, default_image_path: str = DEFAULT_IMAGE_PATH) -> None:
        self._compute = compute
        self._default = default_image_path

    @property
    def default_image_path(self) -> str:
        return self._default

    def get_image_path(self, ref: str) -> str:
        """Resolve an image reference.

        Never raises: a malformed reference or a failed existence check
        degrades to the default image.

        Args:
            ref: Image reference, e.g. ``projects/p/global/images/family/f``.

        Returns:
            ``ref`` unchanged if it exists, else the default image path.
        """
        match = IMAGE_PATH_PATTERN.search(ref or "")
        if match is not None:
            project, family, name = match.group(1), match.group(2), match.group(3)
            try:
                if family:
                    self._compute.images_get_from_family(project, name)
                else:
                    self._compute.images_get(project, name)
                return ref
            except GoogleAPIError as e:
                logger.debug("Image lookup failed", extra={"image": ref, "error": str(e)})

        logger.info("Could not find image at %s. Defaulting to %s.", ref, self._default)
        return self._default
