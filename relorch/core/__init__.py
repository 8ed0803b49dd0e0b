"""Core types shared by every layer: results, config, retry policies, exit codes."""

from .config import Config, ConfigError, load_config, load_config_or_default
from .errors import ErrorCode
from .result import Err, Ok, Result, is_err, is_ok
from .retry import NO_RETRY, RetryPolicy, call_with_retry

__all__ = [
    # config
    "Config",
    "ConfigError",
    "load_config",
    "load_config_or_default",
    # errors
    "ErrorCode",
    # result
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
    # retry
    "NO_RETRY",
    "RetryPolicy",
    "call_with_retry",
]
