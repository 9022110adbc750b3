"""In-memory stand-in for the parts of the Azure Blob SDK used by AzureBlobBucket."""
import datetime
import threading
import hashlib

import azure.core.exceptions as ace
from azure.storage.blob import BlobProperties

from bucketfs.azure_blob import AzureBlobBucket, AzureBlobConfig


class FakeBlobPrefix:

    def __init__(self, name: str):
        self.name = name


class FakeAccount:
    """A storage account holding containers of blobs.

        pending_copy_polls makes server-side copies report 'pending' for that
        many property reads; fail_copies makes them end as 'failed';
        stuck_deletes makes deleted blobs stay visible forever; and
        hidden_upload_polls hides uploaded blobs from that many property reads.
    """

    def __init__(self, name: str = "fakeaccount"):
        self.name = name
        self.url = f"https://{name}.blob.core.windows.net"
        self.containers: dict[str, dict[str, tuple[bytes, BlobProperties]]] = {}
        self.lock = threading.RLock()
        self.open_clients = 0
        self.pending_copy_polls = 0
        self.fail_copies = False
        self.stuck_deletes = False
        self.hidden_upload_polls = 0
        self.copy_from_url_calls = 0
        self.upload_calls = 0

    def client(self, container: str) -> "FakeContainerClient":
        return FakeContainerClient(self, container)

    def bucket(self, container: str, **kwargs) -> AzureBlobBucket:
        kwargs.setdefault("poll_delay_seconds", 0)
        kwargs.setdefault("account_name", self.name)
        config = AzureBlobConfig(container=container, client_factory=lambda: self.client(container), **kwargs)
        return AzureBlobBucket(config)

    def blobs(self, container: str) -> dict:
        with self.lock:
            if container not in self.containers:
                raise ace.ResourceNotFoundError(message=f"The specified container [{container}] does not exist.")
            return self.containers[container]

    def store(self, container: str, key: str, data: bytes, metadata=None, copy_status=None):
        properties = BlobProperties()
        properties.name = key
        properties.size = len(data)
        properties.last_modified = datetime.datetime.now(datetime.timezone.utc)
        properties.etag = '"0x' + hashlib.md5(data + key.encode("utf-8")).hexdigest()[:16].upper() + '"'
        properties.metadata = dict(metadata or {})
        properties.copy.status = copy_status
        with self.lock:
            self.blobs(container)[key] = (data, properties)
        return properties


class FakeDownloader:

    def __init__(self, data: bytes, chunk_size: int = 4):
        self._data = data
        self._chunk_size = chunk_size

    def chunks(self):
        for i in range(0, len(self._data), self._chunk_size):
            yield self._data[i:i + self._chunk_size]

    def readall(self) -> bytes:
        return self._data


class FakeBlobClient:

    def __init__(self, account: FakeAccount, container: str, key: str):
        self._account = account
        self._container = container
        self.blob_name = key
        self.url = f"{account.url}/{container}/{key}"
        self._pending_polls = 0

    def _entry(self):
        blobs = self._account.blobs(self._container)
        if self.blob_name not in blobs:
            raise ace.ResourceNotFoundError(message=f"The specified blob [{self.blob_name}] does not exist.")
        return blobs[self.blob_name]

    def get_blob_properties(self, **kwargs) -> BlobProperties:
        with self._account.lock:
            _, properties = self._entry()
            hidden = getattr(properties, "_hidden_polls", 0)
            if hidden > 0:
                properties._hidden_polls = hidden - 1
                raise ace.ResourceNotFoundError(message=f"The specified blob [{self.blob_name}] does not exist.")
            if properties.copy.status == "pending":
                remaining = getattr(properties, "_pending_polls", 0)
                if remaining <= 0:
                    properties.copy.status = "success"
                else:
                    properties._pending_polls = remaining - 1
            return properties

    def download_blob(self, **kwargs) -> FakeDownloader:
        data, _ = self._entry()
        return FakeDownloader(data)

    def upload_blob(self, data, overwrite: bool = False, metadata=None, **kwargs):
        if not isinstance(data, (bytes, bytearray)):
            data = b''.join(data)
        with self._account.lock:
            self._account.upload_calls += 1
            if not overwrite and self.blob_name in self._account.blobs(self._container):
                raise ace.ResourceExistsError(message=f"The specified blob [{self.blob_name}] already exists.")
            properties = self._account.store(self._container, self.blob_name, bytes(data), metadata)
            properties._hidden_polls = self._account.hidden_upload_polls

    def delete_blob(self, **kwargs):
        with self._account.lock:
            self._entry()
            if not self._account.stuck_deletes:
                del self._account.blobs(self._container)[self.blob_name]

    def start_copy_from_url(self, source_url: str, metadata=None, **kwargs):
        prefix = self._account.url + "/"
        if not source_url.startswith(prefix):
            raise ace.HttpResponseError(message=f"Cannot copy from [{source_url}]")
        container, _, key = source_url[len(prefix):].partition("/")
        with self._account.lock:
            self._account.copy_from_url_calls += 1
            source = FakeBlobClient(self._account, container, key)
            data, properties = source._entry()
            status = "failed" if self._account.fail_copies else ("pending" if self._account.pending_copy_polls > 0 else "success")
            copied = self._account.store(
                self._container,
                self.blob_name,
                data,
                metadata if metadata is not None else properties.metadata,
                status
            )
            copied._pending_polls = self._account.pending_copy_polls
            if self._account.fail_copies:
                copied.copy.status_description = "500 InternalError"
        return {"copy_status": status}


class FakeContainerClient:

    def __init__(self, account: FakeAccount, container: str):
        self._account = account
        self.container_name = container
        self._closed = False
        with account.lock:
            account.open_clients += 1

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def close(self):
        if not self._closed:
            self._closed = True
            with self._account.lock:
                self._account.open_clients -= 1

    def create_container(self, **kwargs):
        with self._account.lock:
            if self.container_name in self._account.containers:
                raise ace.ResourceExistsError(message="The specified container already exists.")
            self._account.containers[self.container_name] = {}

    def delete_container(self, **kwargs):
        with self._account.lock:
            self._account.blobs(self.container_name)
            del self._account.containers[self.container_name]

    def get_blob_client(self, blob: str) -> FakeBlobClient:
        return FakeBlobClient(self._account, self.container_name, blob)

    def _sorted(self, name_starts_with):
        with self._account.lock:
            blobs = self._account.blobs(self.container_name)
            return [
                (key, blobs[key][1])
                for key in sorted(blobs.keys())
                if name_starts_with is None or key.startswith(name_starts_with)
            ]

    def list_blobs(self, name_starts_with=None, include=None, results_per_page=None, **kwargs):
        return iter([properties for _, properties in self._sorted(name_starts_with)])

    def walk_blobs(self, name_starts_with=None, include=None, delimiter="/", **kwargs):
        entries = {}
        start = len(name_starts_with or "")
        for key, properties in self._sorted(name_starts_with):
            pos = key.find(delimiter, start)
            if pos >= 0:
                prefix = key[:pos + 1]
                entries.setdefault(prefix, FakeBlobPrefix(prefix))
            else:
                entries[key] = properties
        return iter([entries[name] for name in sorted(entries.keys())])

    def delete_blobs(self, *blobs, **kwargs):
        with self._account.lock:
            for name in blobs:
                FakeBlobClient(self._account, self.container_name, name).delete_blob()
