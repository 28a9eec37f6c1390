import pytest

from .fakes import FakeDirectoryClient, T1, T2, ticks


@pytest.fixture
def two_dc_client():
    return FakeDirectoryClient(
        servers=['DC1.corp.local', 'DC2.corp.local'],
        accounts={
            'alice': {'DC1.corp.local': ticks(T1)},
            'bob': {},
            'carol': {'DC2.corp.local': ticks(T2)},
            'dave': {'DC2.corp.local': ticks(T1)},
        },
    )
