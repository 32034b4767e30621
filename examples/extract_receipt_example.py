"""Example usage of the expense intake services.

Reads a receipt file (image, PDF or text) given on the command line, or a
spoken-style sentence when no file is given, and then walks through a short
chat that fills in an expense. Providers are enabled by the environment
(see IntakeSettings.from_env); without any keys everything runs on the
rule-based fallbacks.
"""

import asyncio
import logging
import sys

from expense_intake.config import IntakeSettings
from expense_intake.errors import IntakeError
from expense_intake.factory import create_services
from expense_intake.models import ReceiptUpload


def print_progress(event_type: str, message: str) -> None:
    print(f"[{event_type}] {message}")


async def main():
    logging.basicConfig(level=logging.INFO)
    services = create_services(IntakeSettings.from_env())

    try:
        if len(sys.argv) > 1:
            upload = ReceiptUpload.from_path(sys.argv[1])
            result = await services.ingestion.process_receipt(
                upload, on_progress=print_progress
            )
        else:
            result = await services.ingestion.process_text(
                "I spent 45 dollars at Shell for fuel yesterday",
                on_progress=print_progress,
            )
    except IntakeError as e:
        print(f"Could not process expense: {e}")
    else:
        print(f"Merchant: {result.merchant}")
        print(f"Amount: {result.amount:.2f}")
        print(f"Date: {result.date}")
        print(f"Category: {result.category} ({result.suggested_payment_method})")
        print(f"Confidence: {result.confidence:.2f} via {result.source}")

    session = services.new_session()
    for message in ("I spent $12 at McDonald's for lunch yesterday", "yes"):
        response = await session.send(message)
        print(f"> {message}\n{response.message}")
    print(session.expense.model_dump_json(by_alias=True, exclude_none=True))

    await services.aclose()


if __name__ == "__main__":
    asyncio.run(main())
