"""Pytest fixtures for aws-adapters tests (moto-backed AWS resources)."""

import os

import boto3
import pytest
from moto import mock_aws


@pytest.fixture(scope="function")
def aws_credentials():
    """Set fake AWS credentials for moto."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture
def moto_aws(aws_credentials):
    """Enable moto mock for DynamoDB, SQS, S3."""
    with mock_aws():
        yield


@pytest.fixture
def assets_table(moto_aws):
    """Create the assets DynamoDB table (hash key asset_id)."""
    client = boto3.client("dynamodb", region_name="us-east-1")
    client.create_table(
        TableName="test-assets",
        BillingMode="PAY_PER_REQUEST",
        KeySchema=[{"AttributeName": "asset_id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "asset_id", "AttributeType": "S"}],
    )
    return "test-assets"


@pytest.fixture
def sqs_queue(moto_aws):
    """Create an SQS queue and return its URL."""
    client = boto3.client("sqs", region_name="us-east-1")
    resp = client.create_queue(QueueName="test-processing-queue")
    return resp["QueueUrl"]


@pytest.fixture
def media_bucket(moto_aws):
    """Create the media bucket."""
    client = boto3.client("s3", region_name="us-east-1")
    client.create_bucket(Bucket="test-media-bucket")
    return "test-media-bucket"
