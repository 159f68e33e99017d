"""Caller-facing session: submit an instruction, then confirm or cancel its preview."""

from __future__ import annotations

import logging

from sheetguard.contracts.common import PendingActionError
from sheetguard.contracts.responses import (
    ActionPending,
    ExecutionResult,
    PipelineError,
    PipelineOutcome,
    PreviewResult,
)
from sheetguard.contracts.schema import Schema
from sheetguard.engine.coordinator import Coordinator
from sheetguard.engine.dispatcher import backend_error_code
from sheetguard.engine.gateway import ExecutionGateway, payload_fingerprint

logger = logging.getLogger(__name__)


class Session:
    """Holds at most one pending action between preview and confirmation.

    A real write happens only in ``confirm_pending_action``, and only for the
    exact payload that was previewed. Sessions share nothing; the schema of
    the selected tab is passed to every ``submit_instruction``.
    """

    def __init__(self, coordinator: Coordinator, gateway: ExecutionGateway, *,
                 author: str | None = None) -> None:
        self.coordinator = coordinator
        self.gateway = gateway
        self.author = author
        self._pending: ActionPending | None = None

    @property
    def pending(self) -> ActionPending | None:
        return self._pending

    async def submit_instruction(self, text: str, schema: Schema) -> PipelineOutcome:
        self._pending = None
        outcome = await self.coordinator.run(text, schema)
        if not isinstance(outcome, ActionPending):
            return outcome

        action = outcome.action
        if action.kind.is_mutating:
            preview = await self.gateway.execute(action, dry_run=True, author=self.author)
            if isinstance(preview, ExecutionResult):
                return PipelineError(
                    code=backend_error_code(preview.status_code),
                    message=preview.error or "dry run failed",
                    stage="preview",
                )
        else:
            preview = PreviewResult(
                preview={
                    "action": action.kind.value,
                    "spreadsheetId": action.target_spreadsheet_id,
                    "tabName": action.target_tab,
                    "range": action.range,
                    "readOnly": True,
                },
                fingerprint=payload_fingerprint(action),
            )

        pending = outcome.model_copy(update={"preview": preview})
        self._pending = pending
        return pending

    async def confirm_pending_action(self) -> ExecutionResult:
        pending = self._pending
        if pending is None or pending.preview is None:
            raise PendingActionError("ERR_NO_PENDING_ACTION", "There is no previewed action to confirm")

        self._pending = None
        if payload_fingerprint(pending.action) != pending.preview.fingerprint:
            raise PendingActionError(
                "ERR_PREVIEW_CONFLICT", "The pending action changed after it was previewed"
            )
        result = await self.gateway.execute(pending.action, dry_run=False, author=self.author)
        logger.info("Confirmed %s: success=%s", pending.action.kind.value, result.success)
        return result

    def cancel_pending_action(self) -> None:
        self._pending = None
