"""
Google Analytics Admin API: discover the accounts and GA4 properties a
signed-in Google user can read, so they can pick the property to connect.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from google.analytics.admin_v1beta import AnalyticsAdminServiceClient
from google.analytics.admin_v1beta.types import ListAccountSummariesRequest

from app.services.ga_client import Credential, call_google

logger = logging.getLogger(__name__)

SUMMARIES_PAGE_SIZE = 200

AdminClientFactory = Callable[[Credential], Any]


def strip_resource_prefix(value: Any, prefix: str) -> str:
    """`accounts/123` -> `123`; bare ids pass through."""
    text_value = str(value or "").strip()
    if text_value.startswith(prefix):
        return text_value[len(prefix):]
    return text_value


@dataclass(frozen=True)
class GaProperty:
    account_id: str
    account_name: str
    property_id: str
    display_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": f"properties/{self.property_id}",
            "property_id": self.property_id,
            "display_name": self.display_name,
            "parent": f"accounts/{self.account_id}",
            "account_id": self.account_id,
            "account_name": self.account_name,
        }


def default_admin_client_factory(credential: Credential) -> AnalyticsAdminServiceClient:
    return AnalyticsAdminServiceClient(credentials=credential.to_google_credentials())


def _list_summaries(client: Any) -> list[Any]:
    # Iterating the pager fetches the remaining pages.
    request = ListAccountSummariesRequest(page_size=SUMMARIES_PAGE_SIZE)
    return list(client.list_account_summaries(request=request))


async def list_ga_properties(
    credential: Credential,
    account_id: Optional[str] = None,
    *,
    client_factory: AdminClientFactory | None = None,
) -> list[GaProperty]:
    """Every property visible to the credential, optionally limited to one account."""
    client = (client_factory or default_admin_client_factory)(credential)
    summaries = await asyncio.to_thread(call_google, _list_summaries, client, label="account summaries")
    wanted_account = strip_resource_prefix(account_id, "accounts/") or None

    properties = []
    for summary in summaries:
        summary_account = strip_resource_prefix(summary.account, "accounts/")
        if wanted_account and summary_account != wanted_account:
            continue
        for prop in summary.property_summaries or []:
            properties.append(
                GaProperty(
                    account_id=summary_account,
                    account_name=summary.display_name,
                    property_id=strip_resource_prefix(prop.property, "properties/"),
                    display_name=prop.display_name,
                )
            )

    logger.info(
        "Listed %d GA4 properties across %d accounts (account filter=%s)",
        len(properties),
        len(summaries),
        wanted_account,
    )
    return properties
