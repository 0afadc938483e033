"""
Shared fixtures
"""
import pytest

from perpledger.decoder import DecoderConfig, EventDecoder
from perpledger.sources.fetcher import TradeFetcher
from perpledger.storage import InMemoryStore

from helpers import FakeTransactionSource, PROGRAM_ID


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def decoder():
    return EventDecoder(DecoderConfig(program_id=PROGRAM_ID))


@pytest.fixture
def source():
    return FakeTransactionSource()


@pytest.fixture
def fetcher(source, decoder):
    return TradeFetcher(source, decoder, page_size=2, max_attempts=3, backoff_min=0, backoff_max=0)
