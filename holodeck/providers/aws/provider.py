"""AWS implementation of the provider contract."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from pathlib import Path

from loguru import logger

from holodeck.api.environment import Condition, Environment, Image
from holodeck.cache import read_environment
from holodeck.config import Settings, default_cache_path, load_settings, resolve_region
from holodeck.exceptions import ConfigurationError
from holodeck.loading import Loading
from holodeck.logging import configure_logging
from holodeck.providers.aws.ami import AMIResolver
from holodeck.providers.aws.clients import AWSClients
from holodeck.providers.aws.cluster import ClusterImages, create_cluster
from holodeck.providers.aws.context import AWSContext
from holodeck.providers.aws.create import create_single_node
from holodeck.providers.aws.delete import Deleter
from holodeck.providers.aws.image import ImageService, ResolvedImage
from holodeck.providers.aws.resources import AWSCache, ClusterCache, is_empty
from holodeck.providers.aws.tags import build_tags, merge_tags
from holodeck.status import StatusTracker
from holodeck.utils.ip import get_ip_address

PROVIDER_NAME = "aws"


class AWSProvider:
    """Creates and deletes one environment on AWS.

    The environment document is the caller's input and is never modified;
    everything the provider learns is written to the cache file.

    Args:
        environment: Desired state.
        cache_file: Where status is persisted. Defaults to
            ``<settings.cache_dir>/<metadata.name>.yaml``.
        settings: Tool settings; loaded from TOML when omitted.
        clients: Pre-built AWS clients.
        detect_ip: Returns the operator address as ``a.b.c.d/32``.
        environ: Source of CI metadata tags.

    Raises:
        ConfigurationError: If no region can be determined.
    """

    def __init__(
        self,
        environment: Environment,
        cache_file: Path | None = None,
        *,
        settings: Settings | None = None,
        clients: AWSClients | None = None,
        detect_ip: Callable[[], str] = get_ip_address,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._environment = environment
        self._settings = settings or load_settings()
        if self._settings.log is not None:
            configure_logging(self._settings.log)
        self._cache_file = cache_file or default_cache_path(environment.name, self._settings.cache_dir)
        self._region = resolve_region(environment)
        self._clients = clients or AWSClients(self._region, self._settings.api_timeout)
        self._detect_ip = detect_ip
        self._tags = build_tags(environment.name, os.environ if environ is None else environ)

    @property
    def name(self) -> str:
        return PROVIDER_NAME

    @property
    def cache_file(self) -> Path:
        return self._cache_file

    @property
    def region(self) -> str:
        return self._region

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    def create(self) -> None:
        """Provision the environment: a cluster when a cluster spec is present, else one instance.

        Raises:
            ConfigurationError: Pre-flight validation failed; nothing was created.
            ImageResolutionError: No usable image; nothing was created.
            ProvisioningError: A creation phase failed.
            CacheError: The final status could not be written.
        """
        self.validate()
        ctx = self._context(StatusTracker(self._environment, self._cache_file))

        if self._environment.is_multinode:
            images = self.resolve_cluster_images(ctx.images)
            create_cluster(ctx, images)
        else:
            image = self.resolve_instance_image(ctx.images)
            create_single_node(ctx, image)

    def delete(self) -> None:
        """Tear down everything recorded in the cache file.

        Safe to repeat: resources that are already gone count as deleted.

        Raises:
            CacheError: If the cache file cannot be read or updated.
            DeletionError: If a teardown phase failed.
        """
        recorded = read_environment(self._cache_file)
        if recorded.status.cluster is not None or recorded.is_multinode:
            cache: AWSCache = ClusterCache.from_status(recorded.status)
        else:
            cache = AWSCache.from_properties(recorded.status.properties)

        tracker = StatusTracker(recorded, self._cache_file)
        ctx = self._context(tracker, environment=recorded)
        if is_empty(cache):
            logger.info(f"No AWS resources recorded for {recorded.name}")
            tracker.terminated(cache.properties())
            return
        Deleter(ctx, cache).run()

    def status(self) -> list[Condition]:
        """Conditions persisted in the cache file; empty if nothing was created yet.

        Raises:
            CacheError: If the cache file exists but cannot be read.
        """
        if not self._cache_file.exists():
            return []
        return read_environment(self._cache_file).status.conditions

    def dry_run(self) -> None:
        """Check instance types and images without creating anything.

        Raises:
            ConfigurationError: Invalid spec or an instance type not offered in the region.
            ImageResolutionError: No usable image, or an architecture mismatch.
        """
        self.validate()
        images = self._image_service()

        for instance_type in self._instance_types():
            with Loading(f"Checking if instance type {instance_type} is supported in region {self._region}"):
                images.check_instance_type(instance_type, self._region)

        with Loading("Resolving images"):
            if self._environment.is_multinode:
                self.resolve_cluster_images(images)
            else:
                self.resolve_instance_image(images)
        logger.info("Dry run passed")

    # -------------------------------------------------------------------------
    # Pre-flight
    # -------------------------------------------------------------------------

    def validate(self) -> None:
        """Fail fast, before any cloud call, on missing key material or an invalid cluster spec."""
        spec = self._environment.spec
        if not self._environment.name:
            raise ConfigurationError("metadata.name is required")
        if not spec.auth.key_name:
            raise ConfigurationError("auth.keyName is required")
        if not spec.auth.private_key:
            raise ConfigurationError("auth.privateKey is required")
        if spec.cluster is not None:
            spec.cluster.validate_spec()
        elif not spec.instance.type:
            raise ConfigurationError("instance.type is required")

    def resolve_instance_image(self, images: ImageService) -> ResolvedImage:
        instance = self._environment.spec.instance
        return self._resolve_checked(images, instance.os, instance.image, instance.type)

    def resolve_cluster_images(self, images: ImageService) -> ClusterImages:
        cluster = self._environment.spec.cluster
        if cluster is None:
            raise ConfigurationError("cluster spec is required")
        default_type = self._environment.spec.instance.type

        cp = cluster.control_plane
        control_plane = self._resolve_checked(images, cp.os, cp.image, cp.instance_type or default_type)

        workers = None
        if cluster.workers is not None and cluster.workers.count > 0:
            w = cluster.workers
            workers = self._resolve_checked(images, w.os, w.image, w.instance_type or default_type)
        return ClusterImages(control_plane=control_plane, workers=workers)

    def _resolve_checked(
        self,
        images: ImageService,
        os_id: str,
        image: Image | None,
        instance_type: str,
    ) -> ResolvedImage:
        arch = image.architecture if image is not None else ""
        has_image_id = image is not None and bool(image.image_id)
        if not arch and not has_image_id and instance_type:
            arch = images.infer_architecture(instance_type)

        resolved = images.resolve_image_for_node(os_id, image, arch)
        if instance_type:
            images.check_architecture(resolved.architecture, instance_type)
        logger.info(f"Resolved image {resolved.image_id} ({resolved.architecture}) for {instance_type}")
        return resolved

    def _instance_types(self) -> list[str]:
        spec = self._environment.spec
        if spec.cluster is None:
            return [spec.instance.type]
        types = [spec.cluster.control_plane.instance_type or spec.instance.type]
        if spec.cluster.workers is not None and spec.cluster.workers.count > 0:
            types.append(spec.cluster.workers.instance_type or spec.instance.type)
        return [t for t in dict.fromkeys(types) if t]

    # -------------------------------------------------------------------------
    # Tagging
    # -------------------------------------------------------------------------

    def update_resource_tags(self, tags: Mapping[str, str], *resource_ids: str) -> None:
        """Apply the environment tags merged with ``tags`` to existing resources."""
        if not resource_ids:
            return
        merged = merge_tags(self._tags, tags)
        self._clients.ec2.create_tags(Resources=list(resource_ids), Tags=merged)
        logger.info(f"Updated tags on {len(resource_ids)} resources")

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def _image_service(self) -> ImageService:
        instance = self._environment.spec.instance
        resolver = AMIResolver(self._clients.ec2, self._clients.ssm, self._region)
        return ImageService(
            self._clients.ec2,
            resolver,
            default_os=instance.os,
            owner_id=instance.image.owner_id,
        )

    def _context(self, tracker: StatusTracker, environment: Environment | None = None) -> AWSContext:
        return AWSContext(
            environment=environment or self._environment,
            region=self._region,
            ec2=self._clients.ec2,
            elbv2=self._clients.elbv2,
            tracker=tracker,
            images=self._image_service(),
            tags=self._tags,
            settings=self._settings,
            detect_ip=self._detect_ip,
        )
