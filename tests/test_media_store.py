"""Unit tests for the S3 media store."""
from unittest.mock import Mock

import boto3
import pytest
import responses
from moto import mock_aws

from storage.media_store import MAX_IMAGE_BYTES, MediaStore

IMAGE_URL = 'https://cdn.example.com/images/jazz.jpg'


@pytest.fixture
def media_store(aws_credentials):
    """Create MediaStore instance backed by a mock bucket."""
    with mock_aws():
        s3 = boto3.client('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-media')
        yield MediaStore('test-media', timeout=5)


def test_key_is_stable(media_store):
    key = media_store.key_for(IMAGE_URL)

    assert key == media_store.key_for(IMAGE_URL)
    assert key.startswith('media/')
    assert key.endswith('/jazz.jpg')
    assert key != media_store.key_for('https://cdn.example.com/other/jazz.jpg')


@responses.activate
def test_store_image_uploads(media_store):
    responses.add(responses.GET, IMAGE_URL, body=b'\xff\xd8jpeg',
                  content_type='image/jpeg', status=200)

    key = media_store.store_image(IMAGE_URL)

    stored = media_store.s3.get_object(Bucket='test-media', Key=key)
    assert stored['Body'].read() == b'\xff\xd8jpeg'
    assert stored['ContentType'] == 'image/jpeg'
    assert stored['Metadata']['source-url'] == IMAGE_URL


@responses.activate
def test_download_failure(media_store):
    responses.add(responses.GET, IMAGE_URL, status=404)

    assert media_store.store_image(IMAGE_URL) is None


@responses.activate
def test_oversized_image_skipped(media_store):
    responses.add(responses.GET, IMAGE_URL, body=b'0' * (MAX_IMAGE_BYTES + 1), status=200)

    assert media_store.store_image(IMAGE_URL) is None


@responses.activate
def test_upload_failure(media_store):
    media_store.bucket = 'missing-bucket'
    responses.add(responses.GET, IMAGE_URL, body=b'img', status=200)

    assert media_store.store_image(IMAGE_URL) is None


def test_declared_oversize_not_read(media_store):
    response = Mock(headers={'Content-Length': str(MAX_IMAGE_BYTES + 1)})

    assert media_store._read_limited(response) is None
    response.iter_content.assert_not_called()


def test_stream_stops_at_limit(media_store):
    chunk = b'0' * (4 * 1024 * 1024)
    consumed = []

    def chunks(chunk_size):
        for _ in range(10):
            consumed.append(chunk)
            yield chunk

    response = Mock(headers={})
    response.iter_content.side_effect = chunks

    assert media_store._read_limited(response) is None
    assert len(consumed) == 3
