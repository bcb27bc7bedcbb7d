"""
Thin wrapper over the Plaid SDK: link tokens, token exchange, accounts,
institutions and transaction fetches. Vendor errors surface as InternalError.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from plaid.api import plaid_api
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiException
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.institutions_get_request import InstitutionsGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from spendbox.core.config import settings
from spendbox.core.errors import InternalError
from spendbox.models.user import LinkedAccount

logger = logging.getLogger(__name__)

PLAID_ENV_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

# Plaid personal finance categories mapped onto ours; anything else is "Other"
PLAID_CATEGORY_MAP = {
    "FOOD_AND_DRINK": "Food & Dining",
    "TRANSPORTATION": "Transportation",
    "GENERAL_MERCHANDISE": "Shopping",
    "ENTERTAINMENT": "Entertainment",
    "MEDICAL": "Healthcare",
    "RENT_AND_UTILITIES": "Utilities",
    "HOME_IMPROVEMENT": "Housing",
    "TRAVEL": "Travel",
}

TRANSACTIONS_PAGE_SIZE = 100


def map_category(transaction: Dict[str, Any]) -> str:
    pfc = transaction.get("personal_finance_category") or {}
    primary = pfc.get("primary") if isinstance(pfc, dict) else None
    return PLAID_CATEGORY_MAP.get(primary or "", "Other")


class PlaidService:
    def __init__(self, client: Optional[plaid_api.PlaidApi] = None, client_name: str = "SpendBox") -> None:
        self._client = client
        self._client_name = client_name

    def _api(self) -> plaid_api.PlaidApi:
        if self._client is None:
            raise InternalError("Bank linking is not configured")
        return self._client

    def create_link_token(self, user_id: str) -> str:
        request = LinkTokenCreateRequest(
            products=[Products("transactions")],
            client_name=self._client_name,
            country_codes=[CountryCode("US")],
            language="en",
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
        )
        try:
            return self._api().link_token_create(request).link_token
        except ApiException as e:
            logger.error(f"Error creating link token: {e}")
            raise InternalError("Failed to create link token")

    def exchange_public_token(self, public_token: str) -> Tuple[str, str]:
        """Returns (access_token, item_id)."""
        try:
            response = self._api().item_public_token_exchange(
                ItemPublicTokenExchangeRequest(public_token=public_token)
            )
        except ApiException as e:
            logger.error(f"Error exchanging public token: {e}")
            raise InternalError("Failed to link bank accounts")
        return response.access_token, response.item_id

    def get_accounts(self, access_token: str, institution_name: Optional[str] = None) -> List[LinkedAccount]:
        try:
            response = self._api().accounts_get(AccountsGetRequest(access_token=access_token))
        except ApiException as e:
            logger.error(f"Error fetching accounts: {e}")
            raise InternalError("Failed to link bank accounts")

        accounts = []
        for account in response.accounts:
            account_type = getattr(account.type, "value", account.type)
            accounts.append(
                LinkedAccount(
                    account_id=account.account_id,
                    institution_name=institution_name or "Unknown",
                    account_type=str(account_type) if account_type else None,
                    account_name=account.name,
                    mask=account.mask,
                )
            )
        return accounts

    def get_institutions(self, count: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        request = InstitutionsGetRequest(count=count, offset=offset, country_codes=[CountryCode("US")])
        try:
            response = self._api().institutions_get(request)
        except ApiException as e:
            logger.error(f"Error fetching institutions: {e}")
            raise InternalError("Failed to fetch institutions")
        return [institution.to_dict() for institution in response.institutions]

    def get_transactions(self, access_token: str, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        """All transactions in the range, following Plaid's offset paging."""
        fetched: List[Dict[str, Any]] = []
        offset = 0
        try:
            while True:
                request = TransactionsGetRequest(
                    access_token=access_token,
                    start_date=start_date,
                    end_date=end_date,
                    options=TransactionsGetRequestOptions(count=TRANSACTIONS_PAGE_SIZE, offset=offset),
                )
                response = self._api().transactions_get(request)
                batch = [t.to_dict() for t in response.transactions]
                fetched.extend(batch)
                if not batch or len(fetched) >= response.total_transactions:
                    break
                offset += len(batch)
        except ApiException as e:
            logger.error(f"Error fetching transactions: {e}")
            raise InternalError("Failed to sync transactions")
        logger.info(f"Fetched {len(fetched)} transactions from {start_date} to {end_date}")
        return fetched


def build_plaid_service() -> PlaidService:
    if not settings.PLAID_CLIENT_ID or not settings.PLAID_SECRET:
        logger.warning("Plaid credentials are not set, bank linking is disabled")
        return PlaidService()
    if settings.PLAID_ENV not in PLAID_ENV_HOSTS:
        raise ValueError(f"Invalid PLAID_ENV: {settings.PLAID_ENV}")

    configuration = Configuration(
        host=PLAID_ENV_HOSTS[settings.PLAID_ENV],
        api_key={"clientId": settings.PLAID_CLIENT_ID, "secret": settings.PLAID_SECRET},
    )
    return PlaidService(plaid_api.PlaidApi(ApiClient(configuration)), client_name=settings.PROJECT_NAME)
