"""Shared fixtures for the wedding RSVP tests."""

import os

import pytest

# Handler modules build boto3 clients at import time
os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')

from factories import FakeClock
from inmemory_gateway import InMemoryGateway
from rsvp_shared.groups import GroupCoordinator
from rsvp_shared.invitations import InvitationValidator
from rsvp_shared.rsvp_writer import RsvpWriter


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def validator(gateway, clock):
    return InvitationValidator(gateway, max_plus_ones=5, clock=clock)


@pytest.fixture
def coordinator(gateway, clock):
    return GroupCoordinator(gateway, clock)


@pytest.fixture
def writer(gateway, coordinator, validator, clock):
    return RsvpWriter(
        gateway,
        group_coordinator=coordinator,
        invitation_validator=validator,
        max_plus_ones=5,
        max_retries=3,
        clock=clock
    )
