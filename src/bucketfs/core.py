import typing as t

import zirconium as zr
from autoinject import injector
import zrlog

from .azure_blob import AzureBlobBucket, AzureBlobConfig, AzureBlobContainerManager
from .base import BaseBucket, BaseBucketManager
from .exceptions import ConfigError, BucketFSError
from .local import LocalBucket, LocalBucketManager
from .util import HaltFlag


def _required(definition: dict, key: str, prefix: str):
    value = definition.get(key)
    if value is None or value == "":
        raise ConfigError(f"{prefix}.{key}")
    return value


def build_bucket(definition: dict, halt_flag: t.Optional[HaltFlag] = None, prefix: str = "bucket") -> BaseBucket:
    """Build a bucket from a configuration table.

        The table needs a "type" of "local" (with "root") or "azure_blob"
        (with "container" and one of "connection_string" or "account_url").
    """
    bucket_type = _required(definition, "type", prefix)
    if bucket_type == "local":
        return LocalBucket(_required(definition, "root", prefix), halt_flag=halt_flag)
    if bucket_type == "azure_blob":
        if not (definition.get("connection_string") or definition.get("account_url")):
            raise ConfigError(f"{prefix}.connection_string")
        config = AzureBlobConfig(
            container=_required(definition, "container", prefix),
            account_url=definition.get("account_url") or None,
            connection_string=definition.get("connection_string") or None,
            account_name=definition.get("account_name") or None,
            poll_attempts=int(definition.get("poll_attempts", 20)),
            poll_delay_seconds=float(definition.get("poll_delay_seconds", 0.5)),
            copy_workers=int(definition.get("copy_workers", 8)),
        )
        return AzureBlobBucket(config, halt_flag=halt_flag)
    raise BucketFSError(f"Unknown bucket type [{bucket_type}] for [{prefix}]", "CONFIG", 1001)


def build_manager(bucket: BaseBucket) -> BaseBucketManager:
    """Get the manager responsible for the container behind the bucket."""
    if isinstance(bucket, LocalBucket):
        return LocalBucketManager(bucket)
    if isinstance(bucket, AzureBlobBucket):
        return AzureBlobContainerManager(bucket)
    raise BucketFSError(f"No manager for bucket type [{bucket.__class__.__name__}]", "CONFIG", 1002)


@injector.injectable_global
class StorageController:
    """Builds the buckets named in the application configuration.

        [bucketfs.buckets.archive]
        type = "local"
        root = "/srv/archive"

        [bucketfs.buckets.incoming]
        type = "azure_blob"
        container = "incoming"
        account_url = "https://ACCOUNT.blob.core.windows.net"
    """

    config: zr.ApplicationConfig = None

    @injector.construct
    def __init__(self):
        self._log = zrlog.get_logger("bucketfs.core")

    def bucket_names(self) -> list[str]:
        return list(self.config.as_dict(("bucketfs", "buckets"), default={}).keys())

    def get_bucket(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> BaseBucket:
        definition = self.config.as_dict(("bucketfs", "buckets", name), default=None)
        if not definition:
            raise ConfigError(f"bucketfs.buckets.{name}")
        self._log.debug(f"Building bucket [{name}] of type [{definition.get('type')}]")
        return build_bucket(definition, halt_flag=halt_flag, prefix=f"bucketfs.buckets.{name}")

    def get_manager(self, name: str) -> BaseBucketManager:
        return build_manager(self.get_bucket(name))
