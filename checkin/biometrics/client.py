"""AWS Rekognition client for the shared face collection."""
import logging

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from checkin.biometrics.provider import DetectedFace, IndexedFace, ProviderMatch
from checkin.core.config import settings
from checkin.validation.errors import (
    IMAGE_NO_FACE,
    IMAGE_TOO_LARGE,
    ImageRejected,
    ProviderTransientError,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)

# Error codes Rekognition returns for conditions that clear up on their own
TRANSIENT_ERROR_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
    "InternalServerError",
    "ServiceUnavailableException",
}

# Cached client
_client = None


def has_valid_credentials() -> bool:
    """Check if AWS credentials are configured."""
    return bool(settings.aws_access_key_id and settings.aws_secret_access_key)


def get_rekognition_client():
    """Build the Rekognition client from settings, once per process."""
    global _client

    if not has_valid_credentials():
        raise ValueError(
            "No AWS credentials configured. Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY."
        )

    if _client is None:
        _client = boto3.client(
            "rekognition",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            config=Config(
                connect_timeout=settings.provider_timeout_seconds,
                read_timeout=settings.provider_timeout_seconds,
                # Retries are owned by BiometricMatcher
                retries={"total_max_attempts": 1, "mode": "standard"},
            ),
        )
        logger.info(f"Rekognition client created for region {settings.aws_region}")
    return _client


def _translate(operation: str, error: Exception) -> Exception:
    """Map a botocore failure onto the check-in error taxonomy."""
    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return ProviderTransientError(f"{operation}: {error}")

    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "")
        message = error.response.get("Error", {}).get("Message", str(error))
        if code in TRANSIENT_ERROR_CODES:
            return ProviderTransientError(f"{operation}: {code}")
        if code == "ImageTooLargeException":
            return ImageRejected(IMAGE_TOO_LARGE, message)
        if code in ("InvalidParameterException", "InvalidImageFormatException"):
            # Rekognition reports a photo without a usable face this way
            return ImageRejected(IMAGE_NO_FACE, message)
        return ProviderUnavailable(f"{operation} failed: {code}")

    return ProviderUnavailable(f"{operation} failed: {error}")


class RekognitionProvider:
    """FaceProvider backed by one Rekognition collection."""

    def __init__(self, client, collection_id: str):
        self.client = client
        self.collection_id = collection_id

    def _call(self, operation: str, **kwargs) -> dict:
        try:
            return getattr(self.client, operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise _translate(operation, e) from e

    def ensure_collection(self) -> bool:
        try:
            self.client.describe_collection(CollectionId=self.collection_id)
            logger.info(f"Face collection '{self.collection_id}' already exists")
            return False
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
                raise _translate("describe_collection", e) from e
        except BotoCoreError as e:
            raise _translate("describe_collection", e) from e

        self._call("create_collection", CollectionId=self.collection_id)
        logger.info(f"Face collection '{self.collection_id}' created")
        return True

    def detect_faces(self, image: bytes) -> list[DetectedFace]:
        result = self._call("detect_faces", Image={"Bytes": image}, Attributes=["DEFAULT"])
        return [
            DetectedFace(confidence=face.get("Confidence", 0.0))
            for face in result.get("FaceDetails", [])
        ]

    def index_face(self, image: bytes, external_key: str) -> IndexedFace:
        result = self._call(
            "index_faces",
            CollectionId=self.collection_id,
            Image={"Bytes": image},
            ExternalImageId=external_key,
            MaxFaces=1,
            QualityFilter="AUTO",
            DetectionAttributes=["DEFAULT"],
        )
        records = result.get("FaceRecords", [])
        if not records:
            raise ImageRejected(IMAGE_NO_FACE, "No face could be indexed from the image")
        face = records[0]["Face"]
        return IndexedFace(
            face_id=face["FaceId"],
            external_key=face.get("ExternalImageId", external_key),
            confidence=face.get("Confidence", 0.0),
        )

    def search_faces(self, image: bytes, threshold: float, max_faces: int) -> list[ProviderMatch]:
        result = self._call(
            "search_faces_by_image",
            CollectionId=self.collection_id,
            Image={"Bytes": image},
            MaxFaces=max_faces,
            FaceMatchThreshold=threshold,
        )
        return [
            ProviderMatch(
                face_id=match["Face"]["FaceId"],
                external_key=match["Face"].get("ExternalImageId", ""),
                similarity=match.get("Similarity", 0.0),
                confidence=match["Face"].get("Confidence", 0.0),
            )
            for match in result.get("FaceMatches", [])
        ]

    def list_face_ids(self, external_key: str) -> list[str]:
        face_ids = []
        try:
            paginator = self.client.get_paginator("list_faces")
            for page in paginator.paginate(CollectionId=self.collection_id):
                face_ids.extend(
                    face["FaceId"]
                    for face in page.get("Faces", [])
                    if face.get("ExternalImageId") == external_key
                )
        except (ClientError, BotoCoreError) as e:
            raise _translate("list_faces", e) from e
        return face_ids

    def delete_faces(self, face_ids: list[str]) -> list[str]:
        if not face_ids:
            return []
        result = self._call("delete_faces", CollectionId=self.collection_id, FaceIds=face_ids)
        return result.get("DeletedFaces", [])
