from datetime import datetime, timezone
from io import BytesIO

from botocore.exceptions import ClientError

from config import Settings
from utils.storage import LocalStorage, S3Storage, get_storage


def not_found(operation):
    return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, operation)


class FakeS3:
    """Just enough of the boto3 S3 client for ``S3Storage``."""

    def __init__(self):
        self.objects = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[Key] = (Body, ContentType, datetime(2024, 1, 1, tzinfo=timezone.utc))

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise not_found("HeadObject")
        return {"LastModified": self.objects[Key][2]}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise not_found("GetObject")
        return {"Body": BytesIO(self.objects[Key][0])}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        objects = self.objects

        class Paginator:
            def paginate(self, Bucket, Prefix):
                yield {"Contents": [
                    {"Key": k, "Size": len(v[0]), "LastModified": v[2]}
                    for k, v in objects.items() if k.startswith(Prefix)
                ]}

        return Paginator()


def test_local_storage_round_trip(tmp_path):
    storage = LocalStorage(str(tmp_path), "/static")
    assert storage.write("images/cache/a.jpg", b"abc")
    assert storage.exists("images/cache/a.jpg")
    assert storage.read("images/cache/a.jpg") == b"abc"
    assert storage.public_url("images/cache/a.jpg") == "/static/images/cache/a.jpg"
    assert [f.path for f in storage.list("images")] == ["images/cache/a.jpg"]
    assert storage.modified("images/cache/a.jpg") is not None
    assert storage.delete("images/cache/a.jpg")
    assert not storage.delete("images/cache/a.jpg")
    assert storage.read("images/cache/a.jpg") is None
    assert storage.list("nowhere") == []


def test_s3_storage_uses_client():
    client = FakeS3()
    storage = S3Storage(bucket="bucket", region="eu-west-1", client=client)
    assert storage.write("images/cache/a.png", b"png")
    assert client.objects["images/cache/a.png"][1] == "image/png"
    assert storage.exists("images/cache/a.png")
    assert storage.read("images/cache/a.png") == b"png"
    assert storage.modified("images/cache/a.png") == datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp()
    assert [f.size for f in storage.list("images/")] == [3]
    assert storage.public_url("images/cache/a.png") == "https://bucket.s3.eu-west-1.amazonaws.com/images/cache/a.png"
    assert storage.delete("images/cache/a.png")
    assert not storage.exists("images/cache/a.png")
    assert storage.read("images/cache/a.png") is None
    assert storage.modified("images/cache/a.png") is None


def test_get_storage_defaults_to_local(tmp_path):
    storage = get_storage(Settings(storage_backend="local", path_prefix="/cdn"), str(tmp_path))
    assert isinstance(storage, LocalStorage)
    assert storage.public_url("x.jpg") == "/cdn/x.jpg"
