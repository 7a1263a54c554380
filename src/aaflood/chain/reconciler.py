"""
On-chain reconciliation of triggers.

Unconfirmed triggers (no ``transaction_hash``) are posted to the action
endpoint in small batches. A batch is confirmed all-or-nothing: either every
trigger in it receives the returned token, or none does and the whole batch
is retried on the next run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import requests
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db.models import Trigger
from ..errors import ReconcileError

ADD_TRIGGER_ACTION = "aa.stellar.addTriggerOnChain"


class ChainClient:
    """Posts action envelopes to the on-chain action endpoint."""

    def __init__(
        self,
        endpoint: str,
        access_token: str = "",
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if access_token:
            self.session.headers.update({"Authorization": f"Bearer {access_token}"})
        self.logger = logging.getLogger(__name__)

    def add_triggers(self, payloads: List[Dict[str, Any]]) -> str:
        """
        Post one batch and return its confirmation token.

        Raises:
            ReconcileError: transport failure, non-2xx answer or no token in
                the response.
        """
        envelope = {"action": ADD_TRIGGER_ACTION, "payload": {"triggers": payloads}}
        try:
            resp = self.session.post(self.endpoint, json=envelope, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except requests.exceptions.RequestException as e:
            raise ReconcileError(f"POST {self.endpoint} failed: {e}") from e
        except ValueError as e:
            raise ReconcileError(f"POST {self.endpoint}: response is not JSON") from e

        token = _extract_token(body)
        if not token:
            raise ReconcileError(f"POST {self.endpoint}: no transaction token in response")
        return token


def _extract_token(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for candidate in (body, body.get("data")):
        if isinstance(candidate, dict):
            for key in ("transactionHash", "id"):
                if candidate.get(key):
                    return str(candidate[key])
    return None


def trigger_payload(trigger: Trigger) -> Dict[str, Any]:
    """Wire form of one trigger inside the add-trigger action."""
    payload: Dict[str, Any] = {
        "id": trigger.uuid,
        "trigger_type": "MANDATORY" if trigger.is_mandatory else "OPTIONAL",
        "phase": trigger.phase.name.value,
        "title": trigger.title,
        "source": trigger.data_source.value,
        "river_basin": trigger.phase.river_basin,
        "params": dict(trigger.trigger_statement or {}),
        "is_mandatory": trigger.is_mandatory,
        "notes": trigger.notes,
    }
    if trigger.description:
        payload["description"] = trigger.description
    return payload


@dataclass
class ReconcileReport:
    confirmed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    batches: int = 0


class ChainReconciler:
    def __init__(
        self,
        session: Session,
        client: ChainClient,
        batch_size: int = 2,
        delay_seconds: float = 4,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.session = session
        self.client = client
        self.batch_size = batch_size
        self.delay_seconds = delay_seconds
        self.dry_run = dry_run
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    def unconfirmed(self) -> List[Trigger]:
        return list(
            self.session.execute(
                select(Trigger)
                .where(Trigger.transaction_hash.is_(None), Trigger.is_deleted.is_(False))
                .order_by(Trigger.created_at, Trigger.id)
            ).scalars()
        )

    def reconcile(self) -> ReconcileReport:
        report = ReconcileReport()

        triggers = [t for t in self.unconfirmed() if t.phase is not None]
        batches = [
            [(t.uuid, trigger_payload(t)) for t in triggers[i:i + self.batch_size]]
            for i in range(0, len(triggers), self.batch_size)
        ]
        # nothing is held open while posting
        self.session.commit()

        self.logger.info(f"Found {len(triggers)} unconfirmed triggers in {len(batches)} batches")

        for index, batch in enumerate(batches):
            if index:
                self.sleep(self.delay_seconds)
            report.batches += 1
            uuids = [uuid for uuid, _ in batch]

            if self.dry_run:
                self.logger.info(f"DRY RUN: would post batch {index + 1}/{len(batches)} ({len(batch)} triggers)")
                continue

            try:
                token = self.client.add_triggers([payload for _, payload in batch])
            except ReconcileError as e:
                self.logger.warning(f"Batch {index + 1}/{len(batches)} not confirmed, will retry: {e}")
                report.failed.extend(uuids)
                continue

            self.session.execute(
                update(Trigger)
                .where(Trigger.uuid.in_(uuids), Trigger.transaction_hash.is_(None))
                .values(transaction_hash=token)
                .execution_options(synchronize_session=False)
            )
            self.session.commit()
            report.confirmed.extend(uuids)
            self.logger.info(f"Batch {index + 1}/{len(batches)} confirmed: {token}")

        return report
