"""
JSON utilities for moving values between Python, DynamoDB and tool results.
"""

from decimal import Decimal
from typing import Any


def to_dynamo(value: Any) -> Any:
    """Recursively convert floats to Decimal for DynamoDB serialization.

    Args:
        value: Plain Python value (dicts, lists, scalars)

    Returns:
        Value safe for boto3's TypeSerializer
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        # str() keeps the shortest round-trip representation
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Recursively convert DynamoDB Decimals back to int or float.

    Args:
        value: Value produced by boto3's TypeDeserializer

    Returns:
        JSON-serializable Python value
    """
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [from_dynamo(v) for v in value]
    return value
