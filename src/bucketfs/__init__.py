"""
    Provides a hierarchical file system view over different kinds of storage.

    A bucket is a single storage container (a directory on a local disk, or an
    Azure Blob Storage container) that offers the same operations regardless
    of how it stores things: reading and writing files, making and removing
    directories, listing one level, walking a whole tree and copying files or
    trees, including between buckets of different kinds.

    Names are always relative to the root of the bucket. They are cleaned and
    sanitized before use so that no name can resolve to something outside of
    it (e.g. "/../../etc/passwd" refers to "etc/passwd" inside the bucket).

    Object stores have no directories, so the convention adopted here is that
    a directory name ends with the path separator (e.g. "reports/2024/") and a
    file name does not. Directories are stored as empty marker objects, and a
    directory also exists as long as something is stored below it. Items that
    come back from a bucket always follow this convention; names passed in may
    omit the trailing separator and the bucket works out what is meant.

    Not every backend supports every operation (e.g. permission bits cannot be
    stored in a blob container). Check Bucket.has_capability() first; calls to
    an unsupported operation raise NotSupportedError.

    In general, one should use the StorageController to get a bucket that is
    defined in the configuration.
"""
from .base import BaseBucket, BaseBucketManager, BaseListIterator, Capability, WriteOptions, CopyOptions
from .core import StorageController, build_bucket, build_manager
from .item import Item
from .walk import WalkSignal
from .local import LocalBucket, LocalBucketManager
from .azure_blob import AzureBlobBucket, AzureBlobConfig, AzureBlobContainerManager
from .util import HaltFlag, HaltInterrupt, EventHaltFlag, DeadlineHaltFlag
