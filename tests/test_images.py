"""Tests for image reference resolution."""

from google.api_core.exceptions import Forbidden

from actuator.config import DEFAULT_IMAGE_PATH
from actuator.images import ImageResolver
from gce_mock import MockComputeService


class TestImageResolver:
    """Tests for ImageResolver.get_image_path."""

    def test_existing_image(self) -> None:
        """Test that an existing image path is returned unchanged."""
        compute = MockComputeService()
        compute.add_image("my-images", "k8s-node-v1")
        resolver = ImageResolver(compute)

        ref = "projects/my-images/global/images/k8s-node-v1"

        assert resolver.get_image_path(ref) == ref
        assert compute.calls_to("images_get") == [("images_get", "my-images", "k8s-node-v1")]

    def test_existing_family(self) -> None:
        """Test that family references are checked against the family endpoint."""
        compute = MockComputeService()
        compute.add_family("my-images", "k8s-node")
        resolver = ImageResolver(compute)

        ref = "projects/my-images/global/images/family/k8s-node"

        assert resolver.get_image_path(ref) == ref
        assert compute.calls_to("images_get_from_family") == [
            ("images_get_from_family", "my-images", "k8s-node")
        ]
        assert compute.calls_to("images_get") == []

    def test_missing_image_falls_back(self) -> None:
        """Test that an image that does not exist degrades to the default."""
        resolver = ImageResolver(MockComputeService())

        result = resolver.get_image_path("projects/my-images/global/images/gone")

        assert result == DEFAULT_IMAGE_PATH

    def test_malformed_reference_falls_back(self) -> None:
        """Test that a reference without the project path is not looked up."""
        compute = MockComputeService()
        resolver = ImageResolver(compute)

        assert resolver.get_image_path("ubuntu-1710") == DEFAULT_IMAGE_PATH
        assert resolver.get_image_path("") == DEFAULT_IMAGE_PATH
        assert compute.calls == []

    def test_provider_error_falls_back(self) -> None:
        """Test that provider errors other than not-found also degrade."""
        compute = MockComputeService()
        compute.add_image("my-images", "k8s-node-v1")
        compute.fail_next("images_get", Forbidden("permission denied"))
        resolver = ImageResolver(compute)

        result = resolver.get_image_path("projects/my-images/global/images/k8s-node-v1")

        assert result == DEFAULT_IMAGE_PATH

    def test_custom_default(self) -> None:
        """Test that the fallback image is configurable."""
        resolver = ImageResolver(
            MockComputeService(), default_image_path="projects/my-images/global/images/base"
        )

        assert resolver.default_image_path == "projects/my-images/global/images/base"
        assert resolver.get_image_path("nope") == "projects/my-images/global/images/base"
