"""
Shared helpers for the AWS resource managers.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, NoReturn, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import NotFoundError, RemoteError
from ..tags import to_aws_tags

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(operation: str) -> Iterator[None]:
    """Re-raise botocore failures as RemoteError, keeping the AWS error code."""
    try:
        yield
    except ClientError as e:
        error = e.response.get("Error", {})
        raise RemoteError(
            error.get("Message") or str(e),
            code=error.get("Code"),
            operation=operation,
        ) from e
    except BotoCoreError as e:
        raise RemoteError(str(e), operation=operation) from e


def call(client: Any, operation: str, **params: Any) -> Dict[str, Any]:
    """
    Invoke a boto3 client operation by name.

    Args:
        client: boto3 client
        operation: Snake-case operation name, e.g. "create_security_group"
        **params: Request parameters

    Returns:
        The response dictionary

    Raises:
        RemoteError: If AWS returned an error
    """
    logger.debug(f"AWS {operation} {params}")
    with translate_errors(operation):
        return getattr(client, operation)(**params)


def paginate(client: Any, operation: str, result_key: str, token_key: str = "nextToken",
             **params: Any) -> List[Any]:
    """Collect ``result_key`` across every page of a token-paginated operation."""
    items: List[Any] = []
    while True:
        page = call(client, operation, **params)
        items.extend(page.get(result_key, []))
        token = page.get(token_key)
        if not token:
            return items
        params[token_key] = token


def describe_ec2(ec2: Any, operation: str, result_key: str,
                 filters: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Run a filtered EC2 describe call and return every matching item."""
    return paginate(ec2, operation, result_key, token_key="NextToken", Filters=list(filters))


def tag_ec2(ec2: Any, resource_ids: Sequence[str], tags: Dict[str, str]) -> None:
    """Apply ``tags`` to the given EC2 resources."""
    call(ec2, "create_tags", Resources=list(resource_ids), Tags=to_aws_tags(tags))


def vpc_filter(vpc_id: str) -> Dict[str, Any]:
    return {"Name": "vpc-id", "Values": [vpc_id]}


def raise_not_found(key_label: str, resource: str) -> NoReturn:
    raise NotFoundError(f"No {resource} found for {key_label}")
