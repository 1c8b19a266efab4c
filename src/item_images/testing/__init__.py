"""Testing utilities and fakes for the item images pipeline."""

from .fakes import (
    FakeAnalysisClient,
    FakeHeicDecoder,
    FakeImageCodec,
    FakeLogger,
    FakePixels,
    FakeRemoteConverter,
    FakeS3Client,
    StorageBucket,
    StoredObject,
    create_noise_image,
    create_test_image,
    setup_test_storage,
)

__all__ = [
    "FakeAnalysisClient",
    "FakeHeicDecoder",
    "FakeImageCodec",
    "FakeLogger",
    "FakePixels",
    "FakeRemoteConverter",
    "FakeS3Client",
    "StorageBucket",
    "StoredObject",
    "create_noise_image",
    "create_test_image",
    "setup_test_storage",
]
