"""Tests for the S3-compatible content store client."""

import io
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from docingest.errors import StorageError
from docingest.services.storage_service import StorageService


def _client_error(operation):
    return ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, operation)


@pytest.fixture
def s3():
    return MagicMock()


def test_upload_url(s3):
    s3.generate_presigned_url.return_value = "https://r2.test/signed"
    service = StorageService(bucket="docs", client=s3)

    assert service.get_upload_url("pdfs/k.pdf", 600) == "https://r2.test/signed"
    s3.generate_presigned_url.assert_called_once_with(
        "put_object",
        Params={"Bucket": "docs", "Key": "pdfs/k.pdf", "ContentType": "application/pdf"},
        ExpiresIn=600,
    )


def test_download(s3):
    s3.get_object.return_value = {"Body": io.BytesIO(b"%PDF-1.4")}
    assert StorageService(bucket="docs", client=s3).download_file("pdfs/k.pdf") == b"%PDF-1.4"


def test_download_failure_raises_storage_error(s3):
    s3.get_object.side_effect = _client_error("GetObject")
    with pytest.raises(StorageError):
        StorageService(bucket="docs", client=s3).download_file("pdfs/missing.pdf")


def test_upload_failure_raises_storage_error(s3):
    s3.put_object.side_effect = _client_error("PutObject")
    with pytest.raises(StorageError):
        StorageService(bucket="docs", client=s3).upload_file("pdfs/k.pdf", b"data")


def test_delete_is_best_effort(s3):
    service = StorageService(bucket="docs", client=s3)
    assert service.delete_file("pdfs/k.pdf") is True

    s3.delete_object.side_effect = _client_error("DeleteObject")
    assert service.delete_file("pdfs/k.pdf") is False


def test_object_exists(s3):
    service = StorageService(bucket="docs", client=s3)
    assert service.object_exists("pdfs/k.pdf") is True
    s3.head_object.assert_called_once_with(Bucket="docs", Key="pdfs/k.pdf")


def test_object_exists_missing_key(s3):
    s3.head_object.side_effect = ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
    assert StorageService(bucket="docs", client=s3).object_exists("pdfs/gone.pdf") is False


def test_object_exists_other_failure_raises(s3):
    s3.head_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "HeadObject")
    with pytest.raises(StorageError):
        StorageService(bucket="docs", client=s3).object_exists("pdfs/k.pdf")
