import os

import pytest

os.environ.setdefault("VIDEO_STORE", "memory")

from ingest.config import IngestConfig
from ingest.jobs import UploadPipeline
from ingest.storage import Publisher
from upload_api.videos import InMemoryVideoStore

from fakes import FakeMedia, FakeS3


@pytest.fixture
def scratch_dir(tmp_path):
    d = tmp_path / "scratch"
    d.mkdir()
    return d


@pytest.fixture
def config(scratch_dir):
    return IngestConfig(
        bucket="tubely-test",
        region="us-east-2",
        distribution="https://d111111abcdef8.cloudfront.net",
        scratch_dir=str(scratch_dir),
    )


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def fake_media():
    return FakeMedia()


@pytest.fixture
def store():
    return InMemoryVideoStore()


@pytest.fixture
def pipeline(config, fake_media, fake_s3, store):
    publisher = Publisher(fake_s3, config.bucket, log=lambda m: None)
    return UploadPipeline(config, media=fake_media, publisher=publisher, videos=store)
