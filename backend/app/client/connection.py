"""WebSocket chat client.

``ChatClient`` owns the connection to ``/ws/chat``, feeds every server event
into a ClientState, and exposes the user actions (send, react, page history,
search, ...) as coroutines.

Connection Flow:
    1. ``run()`` connects with the websockets reconnect iterator
    2. Every new connection performs ``user_join`` with the saved profile
       (a rejected join clears the profile and stops the client)
    3. The active room is re-joined so its history is pulled again
    4. On a dropped connection the iterator backs off and reconnects; the
       server issues a new identity each time

Example:
    client = ChatClient(get_config().client)
    client.login("Ada")
    asyncio.create_task(client.run())
    await client.wait_until_ready()
    await client.send_message("general", "hello")
"""
import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Iterable, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed

from app.config import ClientSettings

from .attachments import PathLike, encode_attachments
from .notifier import Notifier
from .profile import Profile, ProfileStore
from .state import ClientState

logger = logging.getLogger(__name__)

CONNECTION_LOST = {"ok": False, "error": "Connection lost"}


class ChatClient:
    """Connection, acknowledgements and user actions for one chat user."""

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        profile_store: Optional[ProfileStore] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.settings = settings or ClientSettings()
        self.profile_store = profile_store or ProfileStore(self.settings.profile_path)
        self.profile: Optional[Profile] = self.profile_store.load()
        self.state = ClientState(
            notifier=notifier,
            notification_limit=self.settings.notification_limit,
            error_notification_limit=self.settings.error_notification_limit,
        )

        self._websocket = None
        self._closing = False
        self._ready = asyncio.Event()
        self._ack_ids = itertools.count(1)
        self._pending_acks: Dict[str, asyncio.Future] = {}
        self._typing_timers: Dict[str, asyncio.TimerHandle] = {}
        self._background: Set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    # =========================================================================
    # Connection
    # =========================================================================

    async def run(self) -> None:
        """Keep a connection open until ``close()``/``logout()`` or a rejected join."""
        if self.profile is None:
            logger.info("[Client] No profile saved; login first")
            return

        self._closing = False
        async for websocket in websockets.connect(self.settings.server_url):
            # close() or logout() may have run while the iterator was backing off
            if self._closing or self.profile is None:
                await websocket.close()
                break

            self._websocket = websocket
            reader = asyncio.create_task(self._read_loop(websocket))
            try:
                if await self._handshake():
                    self._ready.set()
                await reader
            except ConnectionClosed:
                logger.info("[Client] Connection lost")
            finally:
                reader.cancel()
                self._disconnected()

            if self._closing:
                break
            logger.info("[Client] Reconnecting to %s", self.settings.server_url)

    async def wait_until_ready(self) -> None:
        await self._ready.wait()

    async def close(self) -> None:
        self._closing = True
        for handle in self._typing_timers.values():
            handle.cancel()
        self._typing_timers.clear()
        if self._websocket is not None:
            await self._websocket.close()

    async def _handshake(self) -> bool:
        response = await self.emit("user_join", self.profile.to_join_payload(), ack=True)
        if response is None or response == CONNECTION_LOST:
            return False
        if not response.get("ok"):
            error = (response or {}).get("error") or "Join failed"
            logger.warning(f"[Client] Join rejected: {error}")
            self.state.add_error(error)
            self.profile_store.clear()
            self.profile = None
            await self.close()
            return False

        self.state.user = response["user"]
        logger.info(f"[Client] Joined as {self.state.user['username']} ({self.state.user['id']})")
        await self.emit("join_room", {"roomId": self.state.active_room_id})
        return True

    def _disconnected(self) -> None:
        self._websocket = None
        self._ready.clear()
        self._fail_pending_acks()

    def _fail_pending_acks(self) -> None:
        for future in self._pending_acks.values():
            if not future.done():
                future.set_result(dict(CONNECTION_LOST))
        self._pending_acks.clear()

    async def _read_loop(self, websocket) -> None:
        try:
            async for raw in websocket:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("[Client] Dropping non-JSON frame")
                    continue
                if isinstance(frame, dict):
                    self.handle_frame(frame)
        finally:
            # Nothing can answer an outstanding ack once the socket is gone
            self._fail_pending_acks()

    def handle_frame(self, frame: dict) -> None:
        """Route one server frame: acknowledgements to their waiter, events to the state."""
        event = frame.get("event")
        if event == "ack":
            future = self._pending_acks.pop(str(frame.get("ackId")), None)
            if future is not None and not future.done():
                future.set_result(frame.get("data") or {})
            return
        self.state.apply(event, frame.get("data"))

    async def emit(self, event: str, data: Optional[dict] = None, ack: bool = False) -> Optional[dict]:
        """Send one event; with ``ack=True`` wait for and return the acknowledgement.

        Returns None when not connected (or when no ack was requested).
        """
        websocket = self._websocket
        if websocket is None:
            logger.warning(f"[Client] Not connected; dropped {event}")
            return None

        frame: Dict[str, Any] = {"event": event, "data": data or {}}
        future = None
        if ack:
            ack_id = str(next(self._ack_ids))
            frame["ackId"] = ack_id
            future = asyncio.get_running_loop().create_future()
            self._pending_acks[ack_id] = future

        await websocket.send(json.dumps(frame))
        if future is None:
            return None
        return await future

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # =========================================================================
    # Profile
    # =========================================================================

    def login(self, username: str, avatar_color: Optional[str] = None) -> Profile:
        """Save the profile used by the next ``run()``."""
        self.profile = Profile(username=username, avatarColor=avatar_color)
        self.profile_store.save(self.profile)
        return self.profile

    async def logout(self) -> None:
        await self.close()
        self.profile_store.clear()
        self.profile = None
        self.state.user = None
        self.state.reset()

    def set_focused(self, focused: bool) -> None:
        self.state.focused = focused

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self, room_id: str, content: Optional[str], files: Iterable[PathLike] = ()
    ) -> Optional[str]:
        """Send a room message with optimistic insertion.

        Returns:
            The temporary id of the optimistic message, or None when there
            was nothing to send.
        """
        files = list(files)
        if not room_id or (not (content or "").strip() and not files):
            return None

        attachments = await encode_attachments(files)
        temp_id = self.state.create_optimistic_message(room_id, content, attachments)
        response = await self.emit("send_message", {
            "roomId": room_id,
            "message": content,
            "attachments": attachments,
            "clientTempId": temp_id,
        }, ack=True)
        self._settle(response, "Failed to send message")
        return temp_id

    async def send_private_message(
        self, to: str, content: Optional[str], files: Iterable[PathLike] = ()
    ) -> Optional[str]:
        files = list(files)
        if not to or (not (content or "").strip() and not files):
            return None

        attachments = await encode_attachments(files)
        temp_id = self.state.create_optimistic_message(
            self.state.direct_room_id(to), content, attachments
        )
        response = await self.emit("private_message", {
            "to": to,
            "message": content,
            "attachments": attachments,
            "clientTempId": temp_id,
        }, ack=True)
        self._settle(response, "Failed to send message")
        return temp_id

    def _settle(self, response: Optional[dict], fallback_error: str) -> None:
        if response and response.get("ok"):
            self.state.reconcile(response.get("message"))
        else:
            self.state.add_error((response or {}).get("error") or fallback_error)

    async def on_keystroke(self, room_id: str) -> None:
        """Signal typing and (re)start the typing-stop timer."""
        if not room_id:
            return
        await self.emit("typing", {"roomId": room_id, "isTyping": True})

        handle = self._typing_timers.pop(room_id, None)
        if handle is not None:
            handle.cancel()
        loop = asyncio.get_running_loop()
        self._typing_timers[room_id] = loop.call_later(
            self.settings.typing_stop_delay, self._typing_stopped, room_id
        )

    def _typing_stopped(self, room_id: str) -> None:
        self._typing_timers.pop(room_id, None)
        self._spawn(self.emit("typing", {"roomId": room_id, "isTyping": False}))

    async def set_reaction(self, room_id: str, message_id: str, reaction: str) -> None:
        await self.emit("message_reaction", {
            "roomId": room_id, "messageId": message_id, "reaction": reaction,
        })

    # =========================================================================
    # Rooms, history, search
    # =========================================================================

    async def set_active_room(self, room_id: str) -> None:
        """Open a room: join it and send read receipts for what is unread."""
        if not room_id:
            return
        self.state.active_room_id = room_id
        await self.emit("join_room", {"roomId": room_id})
        for receipt in self.state.mark_room_read(room_id):
            await self.emit("message_read", receipt)

    async def create_room(
        self, name: str, description: Optional[str] = None, is_private: bool = False
    ) -> Optional[dict]:
        return await self.emit("create_room", {
            "name": name, "description": description, "isPrivate": is_private,
        }, ack=True)

    async def load_older_messages(self, room_id: str) -> bool:
        request = self.state.next_history_request(room_id, self.settings.history_page_size)
        if request is None:
            return False
        await self.emit("load_messages", request)
        return True

    async def search_messages(self, room_id: str, query: Optional[str]) -> None:
        if not room_id or not (query or "").strip():
            self.state.clear_search_results()
            return
        await self.emit("search_messages", {"roomId": room_id, "query": query})
