"""Shared fixtures for the test suite."""
import os
from datetime import datetime, timedelta
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

import config
from processor.models import RawEvent
from storage.database_handler import DatabaseHandler


@pytest.fixture(autouse=True)
def aws_credentials():
    """Fake AWS credentials so boto3 never reaches a real account."""
    env_vars = {
        'AWS_ACCESS_KEY_ID': 'testing',
        'AWS_SECRET_ACCESS_KEY': 'testing',
        'AWS_SECURITY_TOKEN': 'testing',
        'AWS_SESSION_TOKEN': 'testing',
        'AWS_DEFAULT_REGION': 'us-east-1'
    }
    with patch.dict(os.environ, env_vars):
        yield env_vars


def create_tables(dynamodb):
    """Create the events and scraping_logs tables."""
    for table_name, key in (('events', 'hash'), ('scraping_logs', 'id')):
        dynamodb.create_table(
            TableName=table_name,
            KeySchema=[{'AttributeName': key, 'KeyType': 'HASH'}],
            AttributeDefinitions=[{'AttributeName': key, 'AttributeType': 'S'}],
            BillingMode='PAY_PER_REQUEST'
        )


@pytest.fixture
def dynamodb():
    """Mock DynamoDB resource with both tables created."""
    with mock_aws():
        resource = boto3.resource('dynamodb', region_name='us-east-1')
        create_tables(resource)
        yield resource


@pytest.fixture
def db(dynamodb):
    """DatabaseHandler bound to the mock tables, with batch pauses disabled."""
    with patch('storage.database_handler.time.sleep'):
        yield DatabaseHandler(region_name='us-east-1', dynamodb=dynamodb)


@pytest.fixture
def settings():
    """Settings built from an empty environment."""
    return config.load_settings({})


@pytest.fixture
def future_date():
    """A date string thirty days ahead in DD/MM/YYYY form."""
    return (datetime.now() + timedelta(days=30)).strftime('%d/%m/%Y')


@pytest.fixture
def raw_event(future_date):
    """A complete raw event that passes every validation rule."""
    return RawEvent(
        title='Show de Rock Nacional',
        description='Uma noite inesquecível com as maiores bandas de rock do Brasil.',
        date=f"{future_date} 20:00",
        location={'venue': 'Teatro Municipal', 'address': 'Av. Brasil, 100', 'city': 'Ji-Paraná', 'state': 'RO'},
        image={'url': 'http://img.example.com/show.jpg', 'alt': 'Show'},
        price='R$ 50,00',
        organizer='Produtora Rondônia',
        url='https://www.sympla.com.br/evento/show-rock/123',
        source='sympla'
    )
