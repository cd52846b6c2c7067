from enum import Enum
from typing import Awaitable, Callable

from core.exceptions import HistoryLoadFailure, ReadOnlyViolation, SendFailure
from core.logger import chat_logger
from schemas.chat import LocalMessage, PendingMessage, PersistedMessage
from services.chat_service import ChatService
from services.retention import days_until_deletion, utcnow

SEND_ERROR_NOTICE = "Nachricht konnte nicht gesendet werden"
UNKNOWN_SENDER = "Unbekannt"


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    READ_ONLY = "read_only"
    ERROR = "error"
    CLOSED = "closed"


async def _discard(event: dict):
    pass


class ChatSession:
    """
    One viewer's live view of one claim's conversation.

    Holds the ordered local message list, sends with an optimistic pending
    entry that is later swapped for the persisted message, and appends other
    participants' messages pushed by the realtime feed. Own messages coming
    back over the feed are ignored, so each of them is listed exactly once.

    UI updates go out through ``emit`` as dicts with a ``type`` key:
    history, message_added, message_reconciled, message_removed,
    message_updated, message, notice and state.
    """

    def __init__(
            self,
            claim_id,
            current_user_id,
            user_role,
            completed_at=None,
            is_read_only: bool = False,
            service: ChatService = None,
            emit: Callable[[dict], Awaitable[None]] = None,
            clock: Callable = utcnow,
    ):
        self.claim_id = str(claim_id)
        self.current_user_id = str(current_user_id)
        self.user_role = user_role
        self.completed_at = completed_at
        self.is_read_only = is_read_only

        self.service = service or ChatService()
        self.emit = emit or _discard
        self.clock = clock

        self.messages: list[LocalMessage] = []
        self.is_sending = False
        self.is_loading = False
        self._error = False
        self._closed = False
        self._buffered: list[PersistedMessage] = []
        self._subscription = None

    # --------------------------------------
    # Derived state
    # --------------------------------------
    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if self.is_loading:
            return SessionState.LOADING
        if self._error:
            return SessionState.ERROR
        if self.is_read_only:
            return SessionState.READ_ONLY
        if self.is_sending:
            return SessionState.SENDING
        return SessionState.READY

    @property
    def days_until_deletion(self) -> int | None:
        return days_until_deletion(self.completed_at, self.is_read_only, now=self.clock())

    @property
    def pending(self) -> list[PendingMessage]:
        return [m for m in self.messages if m.kind == "pending"]

    # --------------------------------------
    # Lifecycle
    # --------------------------------------
    async def open(self):
        """Subscribe to the claim's feed, then load history; inserts seen meanwhile are merged in."""
        self.is_loading = True
        self._subscription = await self.service.feed.subscribe(self.claim_id, self._on_insert)
        try:
            await self.load_history()
        except HistoryLoadFailure:
            await self._release()
            raise
        return self

    async def load_history(self):
        self.is_loading = True
        self._error = False
        await self._emit_state()

        try:
            history = await self.service.get_history(self.claim_id)
        except Exception as e:
            chat_logger.log_error(f"load_history claim={self.claim_id}", e)
            self.is_loading = False
            self._error = True
            await self._emit_state()
            raise HistoryLoadFailure(f"Could not load messages for claim {self.claim_id}") from e

        # persisted order is authoritative on reload
        history.sort(key=lambda m: m.created_at)
        known = {m.id for m in history}
        arrived = [m for m in self._buffered if m.id not in known]
        self._buffered = []

        self.messages = history + arrived + self.pending
        self.is_loading = False

        await self._emit({
            "type": "history",
            "messages": [m.model_dump(mode="json") for m in self.messages],
        })
        await self._emit_state()

    async def close(self):
        if self._closed:
            return
        await self._release()
        self._closed = True
        chat_logger.log_state(self.claim_id, self.current_user_id, SessionState.CLOSED.value)

    async def _release(self):
        if self._subscription is not None:
            await self.service.feed.unsubscribe(self._subscription)
            self._subscription = None

    async def mark_completed(self, completed_at):
        """The bound claim was completed: chat becomes read-only for good."""
        self.completed_at = completed_at
        self.is_read_only = True
        await self._emit_state()

    # --------------------------------------
    # Sending
    # --------------------------------------
    async def send_message(self, text: str, attachments=None) -> PersistedMessage | None:
        """
        Persist a message with optimistic local display.

        Blank messages without attachments and calls made while another send
        is in flight are dropped (returns None). A failure to store the body
        removes the pending entry and raises SendFailure; failed attachments
        are skipped without affecting the message.
        """
        if self.is_read_only:
            raise ReadOnlyViolation(self.claim_id)

        text = text or ""
        attachments = list(attachments or [])
        if not text.strip() and not attachments:
            return None
        if self.is_sending:
            return None

        self.is_sending = True
        try:
            await self._emit_state()
            return await self._send(text, attachments)
        finally:
            self.is_sending = False
            await self._emit_state()

    async def _send(self, text: str, attachments: list) -> PersistedMessage:
        sender = await self._resolve_own_identity()

        now = self.clock()
        temp = PendingMessage(
            id=f"temp-{int(now.timestamp() * 1000)}",
            claim_id=self.claim_id,
            sender_id=self.current_user_id,
            message=text,
            created_at=now,
            sender=sender,
        )
        self.messages.append(temp)
        await self._emit({"type": "message_added", "message": temp.model_dump(mode="json")})

        try:
            record = await self.service.repository.insert_message(self.claim_id, self.current_user_id, text)
        except Exception as e:
            chat_logger.log_error(f"send_message claim={self.claim_id}", e)
            self._remove(temp.id)
            await self._emit({"type": "message_removed", "id": temp.id})
            await self._notice("error", SEND_ERROR_NOTICE)
            raise SendFailure(SEND_ERROR_NOTICE) from e

        stored = await self.service.store_attachments(self.claim_id, record.id, attachments)
        persisted = PersistedMessage.from_record(record, sender=sender, attachments=stored)

        # a reload during the upload may already have listed the stored row
        if self._contains(persisted.id):
            self._remove(temp.id)
            self._replace(persisted.id, persisted)
            await self._emit({"type": "message_removed", "id": temp.id})
            await self._emit({"type": "message_updated", "message": persisted.model_dump(mode="json")})
        else:
            self._replace(temp.id, persisted)
            await self._emit({
                "type": "message_reconciled",
                "temp_id": temp.id,
                "message": persisted.model_dump(mode="json"),
            })

        await self.service.publish(self.claim_id, persisted)
        return persisted

    async def _resolve_own_identity(self):
        try:
            return await self.service.repository.get_user_identity(self.current_user_id)
        except Exception as e:
            chat_logger.log_error("resolve sender identity", e)
            return None

    # --------------------------------------
    # Realtime inserts
    # --------------------------------------
    async def _on_insert(self, message: PersistedMessage):
        if message.sender_id == self.current_user_id or self._closed:
            return
        if self._contains(message.id):
            return

        try:
            message = await self.service.hydrate_one(message)
        except Exception as e:
            chat_logger.log_error(f"hydrate feed message {message.id}", e)

        if self._contains(message.id):
            return
        if self.is_loading:
            self._buffered.append(message)
            return

        self.messages.append(message)
        await self._emit({"type": "message", "message": message.model_dump(mode="json")})

        if message.sender:
            name = message.sender.display_name or message.sender.company_name or UNKNOWN_SENDER
            await self._notice("info", f"Neue Nachricht von {name}")

    # --------------------------------------
    # Local list helpers
    # --------------------------------------
    def _contains(self, message_id: str) -> bool:
        return any(m.id == message_id for m in self.messages) or any(
            m.id == message_id for m in self._buffered
        )

    def _remove(self, message_id: str):
        self.messages = [m for m in self.messages if m.id != message_id]

    def _replace(self, message_id: str, message):
        self.messages = [message if m.id == message_id else m for m in self.messages]

    async def _notice(self, level: str, text: str):
        await self._emit({"type": "notice", "level": level, "message": text})

    async def _emit_state(self):
        state = self.state.value
        chat_logger.log_state(self.claim_id, self.current_user_id, state)
        await self._emit({
            "type": "state",
            "state": state,
            "is_sending": self.is_sending,
            "days_until_deletion": self.days_until_deletion,
        })

    async def _emit(self, event: dict):
        # a broken UI sink must not leave the local list half-updated
        try:
            await self.emit(event)
        except Exception as e:
            chat_logger.log_error(f"emit {event.get('type')}", e)
