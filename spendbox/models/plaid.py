from typing import List, Optional

from spendbox.models.common import ApiModel
from spendbox.models.user import LinkedAccount


class ExchangeTokenRequest(ApiModel):
    public_token: Optional[str] = None
    # From the Plaid Link success metadata; the accounts API does not return it
    institution_name: Optional[str] = None


class LinkToken(ApiModel):
    link_token: str


class LinkResult(ApiModel):
    accounts: List[LinkedAccount]
    message: str = "Bank accounts linked successfully"


class SyncResult(ApiModel):
    imported: int
    skipped: int
    limit_reached: bool = False
