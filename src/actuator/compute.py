"""Compute Engine API collaborator.

The actuator talks to GCE only through the ``ComputeService`` protocol so
tests can substitute an in-memory implementation. ``GoogleComputeService``
is the production implementation backed by ``google.cloud.compute_v1``.

Authentication uses Application Default Credentials:
GOOGLE_APPLICATION_CREDENTIALS must point at a service account key file when
running outside GCE.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from google.api_core.exceptions import GoogleAPIError, NotFound
from google.cloud import compute_v1

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


class ComputeService(Protocol):
    """Operations the actuator consumes from the Compute Engine API."""

    def images_get(self, project: str, image: str) -> compute_v1.Image: ...

    def images_get_from_family(self, project: str, family: str) -> compute_v1.Image: ...

    def instances_get(self, project: str, zone: str, instance: str) -> compute_v1.Instance: ...

    def instances_insert(
        self, project: str, zone: str, instance: compute_v1.Instance
    ) -> compute_v1.Operation: ...

    def instances_delete(self, project: str, zone: str, instance: str) -> compute_v1.Operation: ...

    def zone_operations_get(
        self, project: str, zone: str, operation: str
    ) -> compute_v1.Operation: ...


def is_not_found(error: BaseException) -> bool:
    """Check whether a provider error means the resource does not exist."""
    if isinstance(error, NotFound):
        return True
    return isinstance(error, GoogleAPIError) and getattr(error, "code", None) == HTTP_NOT_FOUND


class GoogleComputeService:
    """ComputeService backed by the google-cloud-compute clients.

    Mutating calls use the ``*_unary`` variants so they return the raw zone
    operation; completion is tracked by ``OperationPoller`` rather than by the
    client library's blocking wrappers.
    """

    def __init__(
        self,
        images_client: Any | None = None,
        instances_client: Any | None = None,
        zone_operations_client: Any | None = None,
    ) -> None:
        self._images = images_client or compute_v1.ImagesClient()
        self._instances = instances_client or compute_v1.InstancesClient()
        self._zone_operations = zone_operations_client or compute_v1.ZoneOperationsClient()

    def images_get(self, project: str, image: str) -> compute_v1.Image:
        return self._images.get(request=compute_v1.GetImageRequest(project=project, image=image))

    def images_get_from_family(self, project: str, family: str) -> compute_v1.Image:
        return self._images.get_from_family(
            request=compute_v1.GetFromFamilyImageRequest(project=project, family=family)
        )

    def instances_get(self, project: str, zone: str, instance: str) -> compute_v1.Instance:
        return self._instances.get(
            request=compute_v1.GetInstanceRequest(project=project, zone=zone, instance=instance)
        )

    def instances_insert(
        self, project: str, zone: str, instance: compute_v1.Instance
    ) -> compute_v1.Operation:
        logger.debug(
            "Inserting instance",
            extra={"project": project, "zone": zone, "instance": instance.name},
        )
        return self._instances.insert_unary(
            request=compute_v1.InsertInstanceRequest(
                project=project, zone=zone, instance_resource=instance
            )
        )

    def instances_delete(self, project: str, zone: str, instance: str) -> compute_v1.Operation:
        logger.debug(
            "Deleting instance",
            extra={"project": project, "zone": zone, "instance": instance},
        )
        return self._instances.delete_unary(
            request=compute_v1.DeleteInstanceRequest(project=project, zone=zone, instance=instance)
        )

    def zone_operations_get(
        self, project: str, zone: str, operation: str
    ) -> compute_v1.Operation:
        return self._zone_operations.get(
            request=compute_v1.GetZoneOperationRequest(
                project=project, zone=zone, operation=operation
            )
        )
