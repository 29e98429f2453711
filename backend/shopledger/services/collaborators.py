# Overview: Boundary interfaces for receipt storage and notification delivery.

"""
External collaborators consumed by the ledger core.

Only the boundary lives here:
- ReceiptStore.save(receipt) -> public URL of the stored document
- Notifier.send(to, subject, body)

Concrete implementations are registered on app.extensions in create_app()
and can be swapped (tests install recording fakes). They are only ever called
after the stock/financial transaction has committed.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from flask import current_app


RECEIPT_STORE_KEY = "shopledger.receipt_store"
NOTIFIER_KEY = "shopledger.notifier"


class ReceiptStore:
    """Persist a rendered receipt document and return its retrieval URL."""

    def save(self, receipt: dict) -> str:
        raise NotImplementedError


class Notifier:
    """Deliver a message to an address (email, WhatsApp, ...)."""

    def send(self, to: str, subject: str, body: str) -> None:
        raise NotImplementedError


class LocalReceiptStore(ReceiptStore):
    """Writes receipts as JSON documents into a directory served under base_url."""

    def __init__(self, directory: str, base_url: str):
        self.directory = Path(directory)
        self.base_url = base_url.rstrip("/")

    def save(self, receipt: dict) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        filename = f"{receipt['reference']}.json"
        path = self.directory / filename
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(receipt, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp_path, path)
        return f"{self.base_url}/{filename}"


class LogNotifier(Notifier):
    """Writes outgoing messages to the application log instead of a gateway."""

    def send(self, to: str, subject: str, body: str) -> None:
        current_app.logger.info("Notification to %s: %s\n%s", to, subject, body)


def init_collaborators(app) -> None:
    receipt_dir = app.config.get("RECEIPT_DIR") or os.path.join(app.instance_path, "receipts")
    app.extensions.setdefault(
        RECEIPT_STORE_KEY,
        LocalReceiptStore(receipt_dir, app.config["RECEIPT_BASE_URL"]),
    )
    app.extensions.setdefault(NOTIFIER_KEY, LogNotifier())


def get_receipt_store() -> ReceiptStore:
    return current_app.extensions[RECEIPT_STORE_KEY]


def get_notifier() -> Notifier:
    return current_app.extensions[NOTIFIER_KEY]
