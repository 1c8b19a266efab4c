"""Factory classes for creating configured service instances."""

import logging
from typing import Any, Optional

import boto3

from .clients import AnalysisClient, RemoteConversionClient
from .codecs import PillowHeicDecoder, PillowImageCodec
from .models import DEFAULT_POLICY, PipelineConfig, ProcessingPolicy
from .observability import MetricsCollector, StructuredLogger
from .protocols import (
    AnalysisClientProtocol,
    HeicDecoderProtocol,
    ImageCodecProtocol,
    LoggerProtocol,
    RemoteConverterProtocol,
    StorageClientProtocol,
)
from .services import (
    BoundingBoxCropper,
    CleanupService,
    FormatConverter,
    ImageCompressor,
    ImageValidator,
    ThumbnailGenerator,
    UploadCoordinator,
)
from .workflow import ItemImagePipeline


class StorageClientFactory:
    """Factory for creating S3 client instances."""

    @staticmethod
    def create_storage_client(**kwargs: Any) -> StorageClientProtocol:
        """Create S3 client with optional configuration."""
        session = boto3.Session()
        return session.client("s3", **kwargs)  # type: ignore


class RemoteClientFactory:
    """Builds the HTTP collaborators when the config allows it."""

    @staticmethod
    def create_remote_converter(config: PipelineConfig) -> Optional[RemoteConverterProtocol]:
        # Without credentials the cascade simply has no remote rung
        if not (config.functions_base_url and config.access_token):
            return None
        return RemoteConversionClient(
            config.functions_base_url,
            config.access_token,
            timeout=config.remote_conversion_timeout,
        )

    @staticmethod
    def create_analysis_client(config: PipelineConfig) -> Optional[AnalysisClientProtocol]:
        if not (config.functions_base_url and config.access_token):
            return None
        return AnalysisClient(
            config.functions_base_url,
            config.access_token,
            timeout=config.analysis_timeout,
        )


class PipelineFactory:
    """Factory for creating the complete capture pipeline."""

    @staticmethod
    def create_pipeline(
        config: Optional[PipelineConfig] = None,
        storage_client: Optional[StorageClientProtocol] = None,
        logger: Optional[LoggerProtocol] = None,
        codec: Optional[ImageCodecProtocol] = None,
        heic_decoder: Optional[HeicDecoderProtocol] = None,
        remote_converter: Optional[RemoteConverterProtocol] = None,
        analysis_client: Optional[AnalysisClientProtocol] = None,
        policy: ProcessingPolicy = DEFAULT_POLICY,
        metrics: Optional[MetricsCollector] = None,
    ) -> ItemImagePipeline:
        """Create a fully configured pipeline, defaulting every collaborator."""
        if config is None:
            config = PipelineConfig.from_env()
        if storage_client is None:
            storage_client = StorageClientFactory.create_storage_client()
        if logger is None:
            logger = StructuredLogger(
                "item-images.pipeline", level=logging.DEBUG if config.debug else None
            )
        if codec is None:
            codec = PillowImageCodec()
        if heic_decoder is None:
            heic_decoder = PillowHeicDecoder()
        if remote_converter is None:
            remote_converter = RemoteClientFactory.create_remote_converter(config)
        if analysis_client is None:
            analysis_client = RemoteClientFactory.create_analysis_client(config)
        if metrics is None:
            metrics = MetricsCollector()

        converter = FormatConverter(heic_decoder, logger, remote=remote_converter, policy=policy)

        return ItemImagePipeline(
            codec=codec,
            validator=ImageValidator(codec, converter, logger, policy=policy),
            compressor=ImageCompressor(codec, logger, policy=policy),
            thumbnails=ThumbnailGenerator(codec, policy=policy),
            cropper=BoundingBoxCropper(codec, policy=policy),
            uploader=UploadCoordinator(storage_client, logger, config),
            cleanup=CleanupService(storage_client, logger, config),
            logger=logger,
            analysis=analysis_client,
            config=config,
            metrics=metrics,
        )
