import httpx
import pytest

from sf_session import AsyncSalesforceSession, SalesforceSession

from .fakes import REDIRECT_URL, FakeSalesforce


@pytest.fixture
def fake_salesforce() -> FakeSalesforce:
    return FakeSalesforce()


@pytest.fixture
def session_factory():
    """Builds sessions wired to a FakeSalesforce, closing them afterwards."""
    sessions: list[SalesforceSession] = []

    def _factory(fake: FakeSalesforce, oauth_url: str = REDIRECT_URL, **kwargs):
        session = SalesforceSession(
            oauth_url, transport=httpx.MockTransport(fake), **kwargs
        )
        sessions.append(session)
        return session

    yield _factory
    for session in sessions:
        session.close()


@pytest.fixture
def sf_session(fake_salesforce, session_factory) -> SalesforceSession:
    return session_factory(fake_salesforce)


@pytest.fixture
def async_sf_session(fake_salesforce) -> AsyncSalesforceSession:
    return AsyncSalesforceSession(
        REDIRECT_URL, transport=httpx.MockTransport(fake_salesforce)
    )
