import logging
import re
import time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from spendbox.core.config import settings
from spendbox.core.errors import Conflict, Forbidden, InternalError

logger = logging.getLogger(__name__)

# Users table also stores one "EMAIL#<email>" item per account, which makes
# email uniqueness a conditional write instead of an index lookup.
EMAIL_KEY_PREFIX = "EMAIL#"

# Transactions cancelled only because another transaction held the same items
# are retried this many times in total
TRANSACTION_ATTEMPTS = 3
TRANSACTION_RETRY_DELAY_SECONDS = 0.05

_dynamodb = None


def _resource():
    """Lazily create the DynamoDB resource so tests and tools can swap backends."""
    global _dynamodb
    if _dynamodb is None:
        _dynamodb = boto3.resource(
            "dynamodb",
            region_name=settings.DYNAMO_REGION,
            endpoint_url=settings.DYNAMO_ENDPOINT_URL,
        )
    return _dynamodb


def reset() -> None:
    """Forget the cached resource (the next call reconnects)."""
    global _dynamodb
    _dynamodb = None


def users_table():
    return _resource().Table(settings.DYNAMO_USERS_TABLE)


def expenses_table():
    return _resource().Table(settings.DYNAMO_EXPENSES_TABLE)


def create_tables() -> None:
    """Create both tables if missing (local DynamoDB, tests)."""
    existing = {table.name for table in _resource().tables.all()}
    if settings.DYNAMO_USERS_TABLE not in existing:
        _resource().create_table(
            TableName=settings.DYNAMO_USERS_TABLE,
            KeySchema=[{"AttributeName": "user_id", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "user_id", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        logger.info(f"Created table {settings.DYNAMO_USERS_TABLE}")
    if settings.DYNAMO_EXPENSES_TABLE not in existing:
        _resource().create_table(
            TableName=settings.DYNAMO_EXPENSES_TABLE,
            KeySchema=[
                {"AttributeName": "user_id", "KeyType": "HASH"},
                {"AttributeName": "expense_id", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "user_id", "AttributeType": "S"},
                {"AttributeName": "expense_id", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        logger.info(f"Created table {settings.DYNAMO_EXPENSES_TABLE}")


def table_status() -> Dict[str, Dict[str, Any]]:
    status = {}
    for label, table in (("users", users_table()), ("expenses", expenses_table())):
        try:
            table.scan(Limit=1)
            status[label] = {"name": table.name, "status": "accessible", "region": settings.DYNAMO_REGION}
        except ClientError as e:
            status[label] = {"name": table.name, "status": "error", "error": e.response["Error"]["Message"]}
    return status


# --- Users ------------------------------------------------------------------

def get_user_by_email(email: str):
    """Resolve an email through its sentinel item, then load the user."""
    try:
        response = users_table().get_item(Key={"user_id": EMAIL_KEY_PREFIX + email}, ConsistentRead=True)
        sentinel = response.get("Item")
        if not sentinel:
            return None
        return get_user_by_id(sentinel["owner_id"])
    except ClientError as e:
        logger.error(f"get_user_by_email failed: {e.response['Error']['Message']}")
        return None


def get_user_by_id(user_id: str):
    """Get user by user_id from the Users table."""
    try:
        response = users_table().get_item(Key={"user_id": user_id}, ConsistentRead=True)
        item = response.get("Item")
        return _from_dynamo(item) if item else None
    except ClientError as e:
        logger.error(f"get_user_by_id failed: {e.response['Error']['Message']}")
        return None


def create_user(user_item: dict) -> bool:
    """
    Insert a new user together with its email sentinel.
    Raises Conflict if the email is already taken.
    """
    try:
        reasons = _transact_write(
            [
                {
                    "Put": {
                        "TableName": settings.DYNAMO_USERS_TABLE,
                        "Item": {"user_id": EMAIL_KEY_PREFIX + user_item["email"], "owner_id": user_item["user_id"]},
                        "ConditionExpression": "attribute_not_exists(user_id)",
                    }
                },
                {
                    "Put": {
                        "TableName": settings.DYNAMO_USERS_TABLE,
                        "Item": _convert_for_dynamo(user_item),
                        "ConditionExpression": "attribute_not_exists(user_id)",
                    }
                },
            ]
        )
    except ClientError as e:
        logger.error(f"create_user failed: {e.response['Error']['Message']}")
        return False

    if reasons is None:
        return True
    # Item 0 is the email sentinel
    if reasons[:1] == ["ConditionalCheckFailed"]:
        raise Conflict("User already exists")
    logger.error(f"create_user cancelled: {reasons}")
    raise InternalError("Failed to create user")


def update_user(user_id: str, updates: dict):
    """Apply partial updates to an existing user. Returns the updated item or None."""
    return _update_item(users_table(), {"user_id": user_id}, updates, "user_id")


def find_user_by_attribute(attribute: str, value: str):
    """Full scan for a single user matching attribute == value (token lookups)."""
    items = _scan_all(users_table(), FilterExpression=Attr(attribute).eq(value))
    return items[0] if items else None


# --- Expenses ---------------------------------------------------------------

def create_expense(expense_item: dict) -> None:
    """
    Insert an expense and count it against its owner's transaction limit in
    one transaction. Raises Forbidden when the limit is already reached, in
    which case nothing is written.
    """
    reasons = _transact_write(
        [
            {
                "Update": {
                    "TableName": settings.DYNAMO_USERS_TABLE,
                    "Key": {"user_id": expense_item["user_id"]},
                    "UpdateExpression": "SET #sub.#used = #sub.#used + :one",
                    "ConditionExpression": "#sub.#used < #sub.#limit",
                    "ExpressionAttributeNames": {
                        "#sub": "subscription",
                        "#used": "used_transactions",
                        "#limit": "transaction_limit",
                    },
                    "ExpressionAttributeValues": {":one": 1},
                }
            },
            {
                "Put": {
                    "TableName": settings.DYNAMO_EXPENSES_TABLE,
                    "Item": _convert_for_dynamo(expense_item),
                    "ConditionExpression": "attribute_not_exists(expense_id)",
                }
            },
        ]
    )
    if reasons is None:
        return
    # Item 0 is the owner's usage counter
    if reasons[:1] == ["ConditionalCheckFailed"]:
        raise Forbidden("Transaction limit reached. Please upgrade to premium.")
    logger.error(f"create_expense cancelled: {reasons}")
    raise InternalError("Failed to save expense")


def get_expenses_for_user(user_id: str) -> List[dict]:
    """All expenses owned by a user, in key order."""
    try:
        return _query_all(expenses_table(), KeyConditionExpression=Key("user_id").eq(user_id))
    except ClientError as e:
        logger.error(f"get_expenses_for_user failed: {e.response['Error']['Message']}")
        return []


def get_expense(user_id: str, expense_id: str):
    """Fetch a single expense item."""
    try:
        response = expenses_table().get_item(Key={"user_id": user_id, "expense_id": expense_id})
        item = response.get("Item")
        return _from_dynamo(item) if item else None
    except ClientError as e:
        logger.error(f"get_expense failed: {e.response['Error']['Message']}")
        return None


def update_expense(user_id: str, expense_id: str, updates: dict):
    """
    Apply partial updates to an existing expense. Returns the updated item or
    None if the expense does not exist.
    """
    return _update_item(
        expenses_table(), {"user_id": user_id, "expense_id": expense_id}, updates, "expense_id"
    )


def delete_expense(user_id: str, expense_id: str):
    """Delete a specific expense item. Returns the deleted item or None."""
    try:
        response = expenses_table().delete_item(
            Key={"user_id": user_id, "expense_id": expense_id},
            ReturnValues="ALL_OLD",
        )
        attributes = response.get("Attributes")
        return _from_dynamo(attributes) if attributes else None
    except ClientError as e:
        logger.error(f"delete_expense failed: {e.response['Error']['Message']}")
        return None


def get_expenses_shared_with(user_id: str) -> List[dict]:
    try:
        return _scan_all(expenses_table(), FilterExpression=Attr("shared_user_ids").contains(user_id))
    except ClientError as e:
        logger.error(f"get_expenses_shared_with failed: {e.response['Error']['Message']}")
        return []


def get_recurring_expenses() -> List[dict]:
    try:
        return _scan_all(expenses_table(), FilterExpression=Attr("is_recurring").eq(True))
    except ClientError as e:
        logger.error(f"get_recurring_expenses failed: {e.response['Error']['Message']}")
        return []


# --- Helpers ----------------------------------------------------------------

def _transact_write(items: List[dict]) -> Optional[List[str]]:
    """
    Run a write transaction. Returns None on success or the per-item
    cancellation reason codes when a condition failed. Conflicts with other
    in-flight transactions are retried, then surface as InternalError.
    """
    client = _resource().meta.client
    for attempt in range(1, TRANSACTION_ATTEMPTS + 1):
        try:
            client.transact_write_items(TransactItems=items)
            return None
        except ClientError as e:
            if e.response["Error"]["Code"] != "TransactionCanceledException":
                raise
            reasons = _cancellation_reasons(e)
        if "TransactionConflict" not in reasons:
            return reasons
        logger.warning(f"Transaction conflict on attempt {attempt} of {TRANSACTION_ATTEMPTS}")
        if attempt < TRANSACTION_ATTEMPTS:
            time.sleep(TRANSACTION_RETRY_DELAY_SECONDS * attempt)
    raise InternalError("The request conflicted with another update. Please try again.")


def _cancellation_reasons(error: ClientError) -> List[str]:
    reasons = error.response.get("CancellationReasons")
    if reasons:
        return [reason.get("Code", "None") for reason in reasons]
    # Older endpoints only list the codes in the message: "... [ConditionalCheckFailed, None]"
    match = re.search(r"\[([^\]]*)\]", error.response["Error"].get("Message", ""))
    return [code.strip() for code in match.group(1).split(",")] if match else []


def _update_item(table, key: dict, updates: dict, key_attribute: str):
    if not updates:
        return None

    update_expression_parts = []
    expression_attribute_values = {}
    expression_attribute_names = {"#pk": key_attribute}

    # Dotted names ("subscription.plan") address nested map attributes
    for idx, (name, value) in enumerate(updates.items()):
        path = []
        for depth, part in enumerate(name.split(".")):
            placeholder = f"#f{idx}_{depth}"
            expression_attribute_names[placeholder] = part
            path.append(placeholder)
        value_placeholder = f":v{idx}"
        update_expression_parts.append(".".join(path) + f" = {value_placeholder}")
        expression_attribute_values[value_placeholder] = value

    try:
        response = table.update_item(
            Key=key,
            UpdateExpression="SET " + ", ".join(update_expression_parts),
            ConditionExpression="attribute_exists(#pk)",
            ExpressionAttributeNames=expression_attribute_names,
            ExpressionAttributeValues=_convert_for_dynamo(expression_attribute_values),
            ReturnValues="ALL_NEW",
        )
        attributes = response.get("Attributes")
        return _from_dynamo(attributes) if attributes else None
    except ClientError as e:
        if e.response["Error"]["Code"] != "ConditionalCheckFailedException":
            logger.error(f"update on {table.name} failed: {e.response['Error']['Message']}")
        return None


def _query_all(table, **kwargs) -> List[dict]:
    return [_from_dynamo(item) for item in _paginate(table.query, **kwargs)]


def _scan_all(table, **kwargs) -> List[dict]:
    return [_from_dynamo(item) for item in _paginate(table.scan, **kwargs)]


def _paginate(operation, **kwargs) -> Iterable[dict]:
    while True:
        response = operation(**kwargs)
        yield from response.get("Items", [])
        last_key = response.get("LastEvaluatedKey")
        if not last_key:
            return
        kwargs["ExclusiveStartKey"] = last_key


def _convert_for_dynamo(obj: Any):
    """
    Recursively convert floats to Decimal for DynamoDB compatibility.
    """
    if isinstance(obj, float):
        return Decimal(str(obj))
    if isinstance(obj, dict):
        return {k: _convert_for_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_convert_for_dynamo(v) for v in obj]
    return obj


def _from_dynamo(obj: Any):
    """
    Recursively convert Decimal instances back to native Python numeric types.
    """
    if isinstance(obj, list):
        return [_from_dynamo(item) for item in obj]
    if isinstance(obj, dict):
        return {k: _from_dynamo(v) for k, v in obj.items()}
    if isinstance(obj, Decimal):
        if obj % 1 == 0:
            return int(obj)
        return float(obj)
    return obj
