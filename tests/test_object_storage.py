"""Tests for the local and S3 object storage backends."""

import sys
from unittest.mock import MagicMock, patch

import pytest

from linksy.object_storage import (
    BlobRef,
    LocalObjectStorage,
    ObjectStorageConfig,
    S3ObjectStorage,
    create_object_storage_from_env,
)


def _config(**overrides) -> ObjectStorageConfig:
    values = {
        "backend": "local",
        "bucket": "linksy",
        "root": "/tmp",
        "prefix": "",
        "endpoint": "",
        "region": "",
        "access_key": "",
        "secret_key": "",
        "force_path_style": True,
    }
    values.update(overrides)
    return ObjectStorageConfig(**values)


def test_local_storage_roundtrip(tmp_path):
    storage = LocalObjectStorage(config=_config(root=str(tmp_path), prefix="uploads"))
    uri = storage.put_object(
        tenant_id="tenant 1",
        object_type="file",
        object_id="fil_1",
        filename="intake form.pdf",
        content_bytes=b"%PDF-1.4",
        content_type="application/pdf",
    )
    assert uri == "object://local/linksy/uploads/tenants/tenant_1/file/fil_1/intake_form.pdf"
    assert storage.get_object(storage_uri=uri) == b"%PDF-1.4"
    assert storage.stat(storage_uri=uri)["content_type"] == "application/pdf"
    assert storage.signed_url(storage_uri=uri) is None

    assert storage.delete_object(storage_uri=uri) is True
    assert storage.delete_object(storage_uri=uri) is False
    with pytest.raises(FileNotFoundError):
        storage.get_object(storage_uri=uri)


def test_local_storage_rejects_foreign_uri(tmp_path):
    storage = LocalObjectStorage(config=_config(root=str(tmp_path)))
    with pytest.raises(ValueError, match="backend mismatch"):
        storage.get_object(storage_uri="object://s3/linksy/tenants/t/file/f/a.pdf")
    with pytest.raises(ValueError, match="invalid storage uri"):
        storage.get_object(storage_uri="https://example.org/a.pdf")


def test_factory_defaults_to_local(tmp_path):
    storage = create_object_storage_from_env({"OBJECT_STORAGE_ROOT": str(tmp_path)})
    assert isinstance(storage, LocalObjectStorage)


def test_factory_requires_s3_for_true_stack(tmp_path):
    env = {"LINKSY_REQUIRE_TRUESTACK": "true", "OBJECT_STORAGE_ROOT": str(tmp_path)}
    with pytest.raises(RuntimeError, match="LINKSY_OBJECT_STORAGE_BACKEND"):
        create_object_storage_from_env(env)


@pytest.fixture
def mock_boto3():
    """Mock boto3 module for S3ObjectStorage tests."""
    mock_boto3_module = MagicMock()
    mock_client = MagicMock()
    mock_boto3_module.session.Session.return_value.client.return_value = mock_client

    with patch.dict(sys.modules, {"boto3": mock_boto3_module}):
        yield mock_boto3_module, mock_client


def test_s3_put_get_delete(mock_boto3):
    mock_boto3_module, mock_client = mock_boto3
    storage = S3ObjectStorage(
        config=_config(
            backend="s3",
            bucket="test-bucket",
            endpoint="http://localhost:9000",
            region="us-east-1",
            access_key="key",
            secret_key="secret",
        )
    )

    uri = storage.put_object(
        tenant_id="tenant_1",
        object_type="file",
        object_id="fil_1",
        filename="policy.pdf",
        content_bytes=b"content",
        content_type="application/pdf",
    )
    assert uri == "object://s3/test-bucket/tenants/tenant_1/file/fil_1/policy.pdf"
    mock_client.put_object.assert_called_once_with(
        Bucket="test-bucket",
        Key="tenants/tenant_1/file/fil_1/policy.pdf",
        Body=b"content",
        ContentType="application/pdf",
    )

    mock_client.get_object.return_value = {"Body": MagicMock(read=MagicMock(return_value=b"content"))}
    assert storage.get_object(storage_uri=uri) == b"content"

    assert storage.delete_object(storage_uri=uri) is True
    mock_client.delete_object.assert_called_once_with(
        Bucket="test-bucket",
        Key="tenants/tenant_1/file/fil_1/policy.pdf",
    )
    mock_client.generate_presigned_url.return_value = "https://s3.example/signed"
    assert storage.signed_url(storage_uri=uri, expires_in=600) == "https://s3.example/signed"
    mock_client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "test-bucket", "Key": "tenants/tenant_1/file/fil_1/policy.pdf"},
        ExpiresIn=600,
    )

    session_kwargs = mock_boto3_module.session.Session.call_args.kwargs
    assert session_kwargs["region_name"] == "us-east-1"


def test_blob_ref_parsing():
    ref = BlobRef.parse("object://s3/bucket/tenants/t1/file/f1/a.pdf")
    assert ref == BlobRef(backend="s3", bucket="bucket", key="tenants/t1/file/f1/a.pdf")
    assert ref.uri == "object://s3/bucket/tenants/t1/file/f1/a.pdf"
    with pytest.raises(ValueError):
        BlobRef.parse("object://s3/bucket")


def test_s3_missing_key_maps_to_file_not_found(mock_boto3):
    from botocore.exceptions import ClientError

    _, mock_client = mock_boto3
    storage = S3ObjectStorage(config=_config(backend="s3", bucket="test-bucket"))
    mock_client.get_object.side_effect = ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
    with pytest.raises(FileNotFoundError):
        storage.get_object(storage_uri="object://s3/test-bucket/tenants/t/file/f/a.pdf")
