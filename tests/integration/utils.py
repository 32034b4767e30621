import functools
import inspect
import os

import pytest
from google.api_core.exceptions import PermissionDenied


def skip_if_missing_env_vars(required_vars):
    """
    Decorator to skip tests if required environment variables are not set.

    Works for both plain and ``async def`` tests.

    Args:
        required_vars (list): List of environment variable names to check.
    """

    def check():
        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            pytest.skip(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Ensure they are set in your environment or .env file."
            )

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                check()
                return await func(*args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            check()
            return func(*args, **kwargs)

        return wrapper

    return decorator


def skip_on_billing_error(func):
    """
    Decorator to skip tests if Google Cloud billing is not enabled.

    Useful for Google Cloud Vision API and other GCP services that require billing.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except PermissionDenied as e:
            if "billing" in str(e).lower():
                pytest.skip(
                    "Google Cloud Vision API requires billing to be enabled. "
                    "Enable billing on your project or skip integration tests."
                )
            raise

    return wrapper
