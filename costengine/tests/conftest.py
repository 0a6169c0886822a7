"""
Shared pytest fixtures for cost engine tests.
"""

import sys
import os
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

# Set minimal environment variables for testing
os.environ.setdefault('PRICING_CATALOG', 'cloud_pricing_api')
os.environ.setdefault('PRICING_API_KEY', 'test_api_key')

import pytest
from fastapi.testclient import TestClient

from costengine.domain.cost_models import Project
from costengine.main import app
from costengine.tests.fakes import FakeCatalog, make_component, make_resource, price_row


@pytest.fixture
def client():
    """FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def fake_catalog():
    """Catalog with one price per SKU used across the tests."""
    return FakeCatalog(rows={
        'box-small': [price_row('0.05', 'hash-small')],
        'box-large': [price_row('0.20', 'hash-large')],
        'disk': [price_row('0.10', 'hash-disk')],
    })


@pytest.fixture
def sample_project():
    """Project with a nested sub-resource and a skipped resource."""
    web = make_resource(
        'example_box.web',
        make_component('Instance usage', 'box-small', hourly=1),
        sub_resources=[
            make_resource('root_volume', make_component('Storage', 'disk', monthly=20, unit='GB')),
        ],
    )
    worker = make_resource('example_box.worker', make_component('Instance usage', 'box-large', hourly=2))
    legacy = make_resource(
        'example_box.legacy',
        make_component('Instance usage', 'box-large', hourly=1),
        is_skipped=True,
        skip_message='Ignored',
    )
    return Project(name='sample', resources=[web, worker, legacy])
