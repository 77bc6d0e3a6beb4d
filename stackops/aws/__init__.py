"""Thin boto3 wrappers forming the cloud control plane.

Each wrapper takes an injected boto3 client and translates provider error
codes into stackops errors, so "not found" is always distinguishable.
"""

from __future__ import annotations

__all__ = [
    "AWSClients",
    "StackClient",
    "BucketClient",
    "TableClient",
    "KeyClient",
    "LogGroupClient",
    "RestApiClient",
]

from .apigateway import RestApiClient
from .client import AWSClients
from .cloudformation import StackClient
from .dynamodb import TableClient
from .kms import KeyClient
from .logs import LogGroupClient
from .s3 import BucketClient
