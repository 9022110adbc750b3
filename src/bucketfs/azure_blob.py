import functools
import io
import typing as t
from urllib.parse import urlparse

import requests
import urllib3.exceptions
import azure.core.exceptions as ace
from azure.storage.blob import ContainerClient, BlobProperties
from azure.identity import DefaultAzureCredential
import zrlog

from . import paths
from .base import BaseBucket, BaseBucketManager, BaseListIterator, Capability, WriteOptions, CopyOptions
from .exceptions import (
    StorageError, ItemNotFoundError, ItemExistsError, IsDirectoryError,
    NotDirectoryError, NotSupportedError, WaitTimeoutError, RenameError, ConfigError
)
from .item import Item
from .util import HaltFlag, ChunkReader, responsive_sleep
from .walk import WalkVisitor, walk_listing


DELETE_BATCH_SIZE = 256


def translate_azure_error(ex: ace.AzureError) -> StorageError:
    """Map an Azure SDK error onto the matching storage error."""
    if isinstance(ex, ace.ResourceNotFoundError):
        return ItemNotFoundError(f"Azure: Resource not found: {ex.message}", 2004)
    if isinstance(ex, ace.ResourceExistsError):
        return ItemExistsError(f"Azure: Resource already exists: {ex.message}", 2005)
    if isinstance(ex, ace.ClientAuthenticationError):
        return StorageError(f"Azure: Client authentication error: {ex.__class__.__name__}: {str(ex)}", 2003, True)
    if ex.inner_exception is not None:
        if isinstance(ex.inner_exception, urllib3.exceptions.ConnectTimeoutError):
            return StorageError(f"Azure: Connection timeout error: {ex.__class__.__name__}: {str(ex)}", 2001, True)
        elif isinstance(ex.inner_exception, requests.ConnectionError):
            return StorageError(f"Azure: Connection error: {ex.__class__.__name__}: {str(ex)}", 2002, True)
    if isinstance(ex, ace.ServiceRequestError):
        return StorageError(f"Azure: Request error: {ex.__class__.__name__}: {str(ex)}", 2002, True)
    return StorageError(f"Azure: {ex.__class__.__name__}: {str(ex)}", 2000)


def wrap_azure_errors(cb):

    @functools.wraps(cb)
    def _inner(*args, **kwargs):
        try:
            return cb(*args, **kwargs)
        except ace.AzureError as ex:
            raise translate_azure_error(ex) from ex

    return _inner


class AzureBlobConfig(t.NamedTuple):
    """Connection and consistency settings for one container.

        Either connection_string or account_url must be given (or a
        client_factory that builds the ContainerClient directly). Without a
        connection string, credential defaults to DefaultAzureCredential.
    """

    container: str
    account_url: t.Optional[str] = None
    connection_string: t.Optional[str] = None
    credential: t.Any = None
    account_name: t.Optional[str] = None
    poll_attempts: int = 20
    poll_delay_seconds: float = 0.5
    copy_workers: int = 8
    client_factory: t.Optional[t.Callable[[], ContainerClient]] = None

    def account_identity(self) -> t.Optional[str]:
        """Name of the storage account, used to decide if server-side copies are possible."""
        if self.account_name:
            return self.account_name
        if self.account_url:
            return urlparse(self.account_url).hostname
        if self.connection_string:
            for part in self.connection_string.split(";"):
                key, _, value = part.partition("=")
                if key.strip().lower() == "accountname":
                    return value.strip()
        return None

    def container_client(self) -> ContainerClient:
        if self.client_factory is not None:
            return self.client_factory()
        try:
            if self.connection_string:
                return ContainerClient.from_connection_string(
                    conn_str=self.connection_string,
                    container_name=self.container
                )
            if self.account_url:
                return ContainerClient(
                    account_url=self.account_url,
                    container_name=self.container,
                    credential=self.credential or DefaultAzureCredential()
                )
        except ValueError as ex:
            raise StorageError(f"Could not create container client for [{self.container}]", 2020) from ex
        raise ConfigError("account_url")


class AzureBlobListIterator(BaseListIterator):
    """Lists one level of a container using the '/' delimiter.

        A name without a trailing separator first resolves to either the blob
        of that exact name (listed alone) or to the directory of that name (its
        children are listed). The directory's own marker blob is never listed.
    """

    def __init__(self, bucket: "AzureBlobBucket", name: str, halt_flag: t.Optional[HaltFlag] = None):
        super().__init__(bucket, name, halt_flag)
        self._prefix = bucket.list_prefix(name)
        self._exact = self._prefix != "" and not self._prefix.endswith("/")
        self._client: t.Optional[ContainerClient] = None
        self._entries: t.Optional[t.Iterator] = None

    def _open(self):
        if self._client is None:
            self._client = self._bucket.container_client()
        self._entries = iter(self._client.walk_blobs(
            name_starts_with=self._prefix or None,
            delimiter="/",
            include=["metadata"]
        ))

    @wrap_azure_errors
    def _next_item(self) -> t.Optional[Item]:
        if self._entries is None:
            self._open()
        for entry in self._entries:
            key = entry.name
            if self._exact:
                if key == self._prefix:
                    self._entries = iter(())
                    return self._bucket.entry_to_item(entry)
                if key == self._prefix + "/":
                    self._prefix = key
                    self._exact = False
                    self._open()
                    return self._next_item()
                continue
            if key == self._prefix:
                continue
            return self._bucket.entry_to_item(entry)
        return None

    def _release(self):
        if self._client is not None:
            self._client.close()
            self._client = None


class AzureBlobBucket(BaseBucket):
    """Bucket backed by an Azure Blob Storage container.

        Directories are zero-length marker blobs whose name ends in '/'. A
        directory also exists implicitly as long as any blob is stored below
        it. Permission bits are not stored and are always reported as zero.
    """

    def __init__(self, config: AzureBlobConfig, halt_flag: t.Optional[HaltFlag] = None):
        super().__init__(Capability.LIST | Capability.WALK | Capability.METADATA, halt_flag)
        self.config = config
        self._log = zrlog.get_logger("bucketfs.azure_blob")

    def name(self) -> str:
        return self.config.container

    def path_separator(self) -> str:
        return "/"

    def copy_workers(self) -> int:
        return self.config.copy_workers

    def container_client(self) -> ContainerClient:
        return self.config.container_client()

    def _key(self, name: str) -> str:
        return paths.sanitize_dir_path(self, name)

    def _file_key(self, name: str) -> str:
        key = paths.sanitize(self, name)
        if key == "/":
            raise IsDirectoryError(f"Bucket root of [{self.name()}] is a directory")
        return key

    def list_prefix(self, name: str) -> str:
        key = self._key(name)
        return "" if key == "/" else key

    def blob_url(self, name: str) -> str:
        with self.container_client() as client:
            return client.get_blob_client(self._file_key(name)).url

    def entry_to_item(self, entry) -> Item:
        if isinstance(entry, BlobProperties):
            return self._properties_to_item(entry, entry.name)
        return Item(self, entry.name, True)

    def _properties_to_item(self, properties: BlobProperties, key: str) -> Item:
        item = Item(self, key, key.endswith("/"))
        item.set_size(properties.size or 0)
        item.set_mode(0)
        item.set_modified_datetime(properties.last_modified)
        item.set_etag(properties.etag)
        item.set_metadata(dict(properties.metadata or {}))
        item.set_raw(properties)
        item.disable_stat()
        return item

    def _directory_item(self, key: str) -> Item:
        item = Item(self, key, True)
        item.set_size(0)
        item.set_mode(0)
        item.set_metadata({})
        item.disable_stat()
        return item

    @staticmethod
    def _properties(client: ContainerClient, key: str) -> t.Optional[BlobProperties]:
        try:
            return client.get_blob_client(key).get_blob_properties()
        except ace.ResourceNotFoundError:
            return None

    @staticmethod
    def _prefix_exists(client: ContainerClient, prefix: str) -> bool:
        return next(iter(client.list_blobs(name_starts_with=prefix, results_per_page=1)), None) is not None

    @staticmethod
    def _names_under(client: ContainerClient, key: str) -> list[str]:
        """Names of the blob itself (if key is a file name) and every blob below it."""
        if key == "/":
            return [b.name for b in client.list_blobs()]
        dir_key = key if key.endswith("/") else key + "/"
        return [
            b.name
            for b in client.list_blobs(name_starts_with=key.rstrip("/"))
            if b.name == key or b.name.startswith(dir_key)
        ]

    def _wait_until(self, check: t.Callable[[], bool], description: str, halt_flag: t.Optional[HaltFlag] = None):
        """Poll until the check passes, raising WaitTimeoutError if it never does."""
        attempts = max(self.config.poll_attempts, 1)
        for attempt in range(0, attempts):
            if check():
                return
            if attempt + 1 < attempts:
                self._log.warning(f"Waiting for {description} in [{self.name()}], attempt {attempt + 1} of {attempts}")
                responsive_sleep(self.config.poll_delay_seconds, halt_flag)
        raise WaitTimeoutError(f"Timed out waiting for {description} in [{self.name()}]")

    @wrap_azure_errors
    def stat(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> Item:
        self._check_halt(halt_flag)
        key = self._key(name)
        if key == "/":
            return self._directory_item(key)
        with self.container_client() as client:
            properties = self._properties(client, key)
            if properties is not None:
                return self._properties_to_item(properties, key)
            dir_key = key if key.endswith("/") else key + "/"
            if dir_key != key:
                properties = self._properties(client, dir_key)
                if properties is not None:
                    return self._properties_to_item(properties, dir_key)
            if self._prefix_exists(client, dir_key):
                return self._directory_item(dir_key)
            if dir_key == key and self._properties(client, key.rstrip("/")) is not None:
                raise NotDirectoryError(f"Blob [{key.rstrip('/')}] is not a directory")
        raise ItemNotFoundError(f"Blob [{key}] not found in [{self.name()}]")

    @wrap_azure_errors
    def new_reader(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> t.BinaryIO:
        halt_flag = self._halt(halt_flag)
        item = self.stat(name, halt_flag=halt_flag)
        if item.is_dir():
            raise IsDirectoryError(f"Blob [{item.name()}] is a directory")
        client = self.container_client()
        try:
            downloader = client.get_blob_client(item.name()).download_blob()
        except BaseException:
            client.close()
            raise
        return io.BufferedReader(ChunkReader(self._read_chunks(downloader), client.close, halt_flag))

    @staticmethod
    def _read_chunks(downloader) -> t.Iterable[bytes]:
        try:
            for chunk in downloader.chunks():
                yield chunk
        except ace.AzureError as ex:
            raise translate_azure_error(ex) from ex

    def _writable_key(self, client: ContainerClient, name: str) -> str:
        """Key for writing a file, refusing directory names and names already used by a directory."""
        if paths.is_dir_path(self, name):
            raise IsDirectoryError(f"[{name}] names a directory")
        key = self._file_key(name)
        if self._prefix_exists(client, key + "/"):
            raise IsDirectoryError(f"Blob [{key}] is a directory")
        return key

    @wrap_azure_errors
    def new_writer(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None) -> t.BinaryIO:
        self._check_halt(halt_flag)
        options = options or WriteOptions()
        with self.container_client() as client:
            key = self._writable_key(client, name)
        return _BlobWriter(self, key, options.metadata)

    @wrap_azure_errors
    def upload(self, key: str, data, metadata: t.Optional[dict[str, str]] = None):
        args = {
            'data': data,
            'overwrite': True,
        }
        if metadata:
            args['metadata'] = metadata
        with self.container_client() as client:
            client.get_blob_client(key).upload_blob(**args)

    @wrap_azure_errors
    def remove(self, name: str, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        self._check_halt(halt_flag)
        key = self._key(name)
        if key == "/":
            raise NotSupportedError(f"Cannot remove the root of [{self.name()}], use remove_all()")
        with self.container_client() as client:
            if not key.endswith("/") and self._properties(client, key) is None:
                key += "/"
            if key.endswith("/"):
                children = [n for n in self._names_under(client, key) if n != key]
                if children:
                    raise StorageError(f"Directory [{key}] is not empty", 1007)
                if self._properties(client, key) is None and self._properties(client, key.rstrip("/")) is not None:
                    raise NotDirectoryError(f"Blob [{key.rstrip('/')}] is not a directory")
            client.get_blob_client(key).delete_blob()
            self._wait_until(lambda: self._properties(client, key) is None, f"[{key}] to be removed", halt_flag)

    @wrap_azure_errors
    def remove_all(self, name: str, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        self._check_halt(halt_flag)
        key = self._key(name)
        with self.container_client() as client:
            names = self._names_under(client, key)
            if not names:
                return
            for i in range(0, len(names), DELETE_BATCH_SIZE):
                self._check_halt(halt_flag)
                client.delete_blobs(*names[i:i + DELETE_BATCH_SIZE])
            self._log.debug(f"Removed {len(names)} blobs under [{key}] from [{self.name()}]")
            self._wait_until(lambda: not self._names_under(client, key), f"[{key}] to be removed", halt_flag)

    @wrap_azure_errors
    def mkdir(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        self._check_halt(halt_flag)
        key = paths.sanitize(self, name)
        if key == "/":
            return
        with self.container_client() as client:
            if self._properties(client, key) is not None:
                raise NotDirectoryError(f"Blob [{key}] is not a directory")
        options = options or WriteOptions()
        marker = key + "/"
        self.upload(marker, b'', options.metadata)
        with self.container_client() as client:
            self._wait_until(lambda: self._properties(client, marker) is not None, f"[{marker}] to exist", halt_flag)

    def mkdir_all(self, name: str, options: t.Optional[WriteOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        key = paths.sanitize(self, name)
        if key == "/":
            return
        segments = key.split("/")
        for i in range(1, len(segments) + 1):
            self.mkdir("/".join(segments[:i]), options, halt_flag=halt_flag)

    def rename(self, from_name: str, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        """Rename by copying everything to the new name, then removing the old one.

            This is not atomic. A failure during the copy leaves the source
            untouched and a partial destination; a failure during the remove
            leaves both.
        """
        halt_flag = self._halt(halt_flag)
        try:
            self.copy_all2(from_name, to_name, options, halt_flag=halt_flag)
        except Exception as ex:
            raise RenameError("copy", from_name, to_name, ex) from ex
        try:
            self.remove_all(from_name, halt_flag=halt_flag)
        except Exception as ex:
            raise RenameError("remove", from_name, to_name, ex) from ex
        self._log.info(f"Renamed [{from_name}] to [{to_name}] in [{self.name()}]")

    @wrap_azure_errors
    def copy(self, from_item: Item, to_name: str, options: t.Optional[CopyOptions] = None, halt_flag: t.Optional[HaltFlag] = None):
        halt_flag = self._halt(halt_flag)
        self._check_halt(halt_flag)
        options = options or CopyOptions()
        if from_item.is_dir():
            self.mkdir(to_name, WriteOptions(metadata=options.metadata), halt_flag=halt_flag)
            return
        with self.container_client() as client:
            key = self._writable_key(client, to_name)
        source_bucket = from_item.bucket()
        if self._same_account(source_bucket):
            source_url = source_bucket.blob_url(from_item.name())
            with self.container_client() as client:
                dest = client.get_blob_client(key)
                if options.metadata is not None:
                    dest.start_copy_from_url(source_url, metadata=options.metadata)
                else:
                    dest.start_copy_from_url(source_url)
                self._wait_until(lambda: self._copy_finished(client, key), f"copy to [{key}]", halt_flag)
        else:
            metadata = options.metadata
            if metadata is None and source_bucket.has_capability(Capability.METADATA):
                metadata = from_item.metadata()
            with from_item.open(halt_flag=halt_flag) as reader:
                self.upload(key, self._halting_chunks(reader, halt_flag), metadata)
            with self.container_client() as client:
                self._wait_until(lambda: self._properties(client, key) is not None, f"[{key}] to exist", halt_flag)

    def _same_account(self, other) -> bool:
        if not isinstance(other, AzureBlobBucket):
            return False
        if other is self:
            return True
        identity = self.config.account_identity()
        return identity is not None and identity == other.config.account_identity()

    @staticmethod
    def _halting_chunks(reader, halt_flag: t.Optional[HaltFlag], chunk_size: int = 4194304) -> t.Iterable[bytes]:
        chunk = reader.read(chunk_size)
        while chunk:
            if halt_flag is not None:
                halt_flag.check_continue(True)
            yield chunk
            chunk = reader.read(chunk_size)

    def _copy_finished(self, client: ContainerClient, key: str) -> bool:
        properties = self._properties(client, key)
        if properties is None:
            return False
        status = properties.copy.status if properties.copy is not None else None
        if status is None or status == "success":
            return True
        if status == "pending":
            return False
        raise StorageError(f"Copy to [{key}] ended with status [{status}]: {properties.copy.status_description}", 2011)

    def items(self, name: str, halt_flag: t.Optional[HaltFlag] = None) -> AzureBlobListIterator:
        return AzureBlobListIterator(self, name, self._halt(halt_flag))

    def walk(self, name: str, visitor: WalkVisitor, halt_flag: t.Optional[HaltFlag] = None):
        walk_listing(self, name, visitor, self._halt(halt_flag))


class _BlobWriter(io.RawIOBase):
    """Buffers written bytes and uploads them as one blob when closed.

        Leaving a with block because of an exception discards the data.
    """

    def __init__(self, bucket: AzureBlobBucket, key: str, metadata: t.Optional[dict[str, str]]):
        super().__init__()
        self._bucket = bucket
        self._key = key
        self._metadata = metadata
        self._buffer = io.BytesIO()
        self._discard = False

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        if self.closed:
            raise ValueError("write to closed blob writer")
        return self._buffer.write(b)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self._discard = True
        return super().__exit__(exc_type, exc_val, exc_tb)

    def close(self):
        if self.closed:
            return
        try:
            if not self._discard:
                self._bucket.upload(self._key, self._buffer.getvalue(), self._metadata)
        finally:
            self._buffer.close()
            super().close()


class AzureBlobContainerManager(BaseBucketManager):

    bucket: AzureBlobBucket

    @wrap_azure_errors
    def create(self):
        with self.bucket.container_client() as client:
            try:
                client.create_container()
            except ace.ResourceExistsError:
                pass

    @wrap_azure_errors
    def remove(self):
        with self.bucket.container_client() as client:
            client.delete_container()
