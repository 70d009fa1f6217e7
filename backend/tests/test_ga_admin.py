from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from google.api_core import exceptions as google_exceptions

from app.core.errors import CredentialExpiredError, UpstreamFetchError
from app.services import ga_admin
from app.services.ga_client import Credential


def _summary(account: str, name: str, *properties: tuple[str, str]):
    return SimpleNamespace(
        account=account,
        display_name=name,
        property_summaries=[SimpleNamespace(property=prop, display_name=label) for prop, label in properties],
    )


class _FakeAdminClient:
    def __init__(self, summaries=(), error=None):
        self.summaries = list(summaries)
        self.error = error
        self.requests = []

    def list_account_summaries(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return iter(self.summaries)


def _list(client, account_id=None):
    return asyncio.run(
        ga_admin.list_ga_properties(
            Credential(access_token="token"),
            account_id,
            client_factory=lambda _credential: client,
        )
    )


def _client():
    return _FakeAdminClient(
        [
            _summary("accounts/301", "Acme", ("properties/9001", "acme.com"), ("properties/9002", "blog.acme.com")),
            _summary("accounts/302", "Side project", ("properties/9100", "side.dev")),
            _summary("accounts/303", "Empty account"),
        ]
    )


def test_lists_every_property_with_prefixes_stripped():
    client = _client()
    properties = _list(client)

    assert [(prop.account_id, prop.property_id, prop.display_name) for prop in properties] == [
        ("301", "9001", "acme.com"),
        ("301", "9002", "blog.acme.com"),
        ("302", "9100", "side.dev"),
    ]
    assert properties[2].account_name == "Side project"
    assert client.requests[0].page_size == ga_admin.SUMMARIES_PAGE_SIZE


@pytest.mark.parametrize("account_id", ["302", "accounts/302"])
def test_filters_by_account(account_id):
    properties = _list(_client(), account_id)
    assert [prop.property_id for prop in properties] == ["9100"]


def test_property_payload_shape():
    payload = _list(_client(), "302")[0].to_dict()
    assert payload == {
        "id": "properties/9100",
        "property_id": "9100",
        "display_name": "side.dev",
        "parent": "accounts/302",
        "account_id": "302",
        "account_name": "Side project",
    }


def test_disabled_admin_api_maps_to_upstream_error():
    client = _FakeAdminClient(
        error=google_exceptions.PermissionDenied("Google Analytics Admin API has not been used in project 123")
    )
    with pytest.raises(UpstreamFetchError, match="has not been used in project 123"):
        _list(client)


def test_rejected_token_maps_to_credential_error():
    client = _FakeAdminClient(error=google_exceptions.Unauthenticated("Request had invalid authentication credentials"))
    with pytest.raises(CredentialExpiredError):
        _list(client)


@pytest.mark.parametrize(
    "value,prefix,expected",
    [
        ("accounts/301", "accounts/", "301"),
        ("301", "accounts/", "301"),
        (" properties/9 ", "properties/", "9"),
        (None, "properties/", ""),
    ],
)
def test_strip_resource_prefix(value, prefix, expected):
    assert ga_admin.strip_resource_prefix(value, prefix) == expected
