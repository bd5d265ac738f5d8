"""Connection orchestration: the caller-facing side of port forwarding.

``ConnectionOrchestrator`` owns every ConnectionConfig/ConnectionState pair
and runs on one asyncio event loop. Its public control methods are plain,
non-blocking calls that update state immediately and schedule the OS work as
tasks. Work for a single connection is chained so it runs in issue order.
"""

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from ..common.exceptions import KubeForwardError, PortInUseError, StoreWriteError
from ..common.logging import connection_logger, get_logger
from .config import ForwardSettings, SettingsSource
from .conflicts import ConflictResolver
from .events import OutputLine, ProcessExited, SupervisorEvent
from .exceptions import ConnectionRegistryError, OrchestratorError
from .interfaces import ConnectionStore, NotificationSink
from .models import ConnectionConfig, ConnectionState, ConnectionStatus, ProcessRole
from .notifications import LoggingNotificationSink, NotificationKind, NotificationQueue
from .registry import ConnectionRegistry
from .store import InMemoryConnectionStore
from .strategies import EphemeralDirectExec, plan_for
from .supervisor import ProcessSupervisor

logger = get_logger(__name__)


class ConnectionOrchestrator:
    """Starts, stops, monitors, and reconnects port-forward connections."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        store: ConnectionStore | None = None,
        settings: SettingsSource | None = None,
        notifier: NotificationSink | None = None,
        resolver: ConflictResolver | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            supervisor: Owner of the helper processes
            store: External config store (in-memory if None)
            settings: Settings, or a callable returning fresh settings each tick
            notifier: Notification sink (logs notifications if None)
            resolver: Port conflict resolver
        """
        self.supervisor = supervisor
        self.store: ConnectionStore = store if store is not None else InMemoryConnectionStore()
        self._settings: SettingsSource = settings if settings is not None else ForwardSettings()
        self.notifier: NotificationSink = notifier or LoggingNotificationSink()
        self.resolver = resolver or ConflictResolver()
        self.registry = ConnectionRegistry()
        self.notifications = NotificationQueue()

        self._ops: dict[str, asyncio.Task[None]] = {}
        self._generation: dict[str, int] = {}
        self._conflict_retried: set[str] = set()
        self._background: set[asyncio.Task[None]] = set()
        self._monitor_task: asyncio.Task[None] | None = None
        self._event_task: asyncio.Task[None] | None = None

    @property
    def settings(self) -> ForwardSettings:
        source = self._settings
        return source() if callable(source) else source

    # Status

    @property
    def connections(self) -> list[ConnectionState]:
        return self.registry.list()

    @property
    def all_connected(self) -> bool:
        """True when there is at least one connection and all are fully connected."""
        states = self.registry.list()
        return bool(states) and all(s.is_fully_connected for s in states)

    @property
    def connected_count(self) -> int:
        return sum(1 for s in self.registry.list() if s.is_fully_connected)

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def get_state(self, connection_id: str) -> ConnectionState | None:
        return self.registry.get(connection_id)

    def list_states(self) -> list[dict[str, Any]]:
        return [state.summary() for state in self.registry.list()]

    # Connection CRUD

    def load_connections(self) -> int:
        """Register every config from the store that is not known yet.

        Returns:
            Number of newly registered connections
        """
        added = 0
        for config in self.store.list_connections():
            if config.id not in self.registry:
                self.registry.add(config)
                added += 1
        logger.info("Loaded connections from store", added=added, total=len(self.registry))
        return added

    def add_connection(self, config: ConnectionConfig) -> ConnectionState:
        """Persist ``config`` and register it.

        The store is written first; if that fails nothing is registered.

        Raises:
            ConnectionRegistryError: If the id is already registered
            StoreWriteError: If the store rejects the write
        """
        if config.id in self.registry:
            raise ConnectionRegistryError(f"Connection with ID '{config.id}' already exists")

        try:
            self.store.add_connection(config)
        except StoreWriteError:
            logger.error("Failed to store connection", connection_id=config.id)
            raise
        except Exception as e:
            logger.error("Failed to store connection", connection_id=config.id, error=str(e))
            raise StoreWriteError(f"Failed to store connection '{config.id}': {e}") from e

        state = self.registry.add(config)
        logger.info("Added connection", connection_id=config.id, name=config.name)
        return state

    def remove_connection(self, connection_id: str) -> ConnectionConfig:
        """Stop and unregister a connection; the store delete runs in the background.

        Raises:
            ConnectionRegistryError: If the connection is not registered
        """
        state = self.registry.require(connection_id)
        self.stop(connection_id)
        self.registry.remove(connection_id)
        self.notifications.discard(connection_id)
        self._conflict_retried.discard(connection_id)
        self._write_store(self.store.remove_connection, connection_id, "remove")
        logger.info("Removed connection", connection_id=connection_id)
        return state.config

    def update_connection(self, config: ConnectionConfig) -> ConnectionState:
        """Replace a connection's config.

        A running connection whose process parameters change is stopped,
        updated, and started again if it is still enabled.

        Raises:
            ConnectionRegistryError: If the connection is not registered
        """
        state = self.registry.require(config.id)
        previous = state.config
        needs_restart = state.is_active and not previous.same_endpoint(config)

        if needs_restart:
            self.stop(config.id)

        self.registry.replace_config(config)
        self._write_store(self.store.update_connection, config, "update")

        if needs_restart and config.is_enabled:
            self.start(config.id)

        logger.info(
            "Updated connection",
            connection_id=config.id,
            restarted=needs_restart and config.is_enabled,
        )
        return state

    def _write_store(self, method: Callable[[Any], None], arg: Any, action: str) -> None:
        async def write() -> None:
            try:
                await asyncio.to_thread(method, arg)
            except Exception as e:
                logger.error("Store write failed", action=action, error=str(e))

        task = self._create_task(write(), name=f"store-{action}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # Single connection operations

    def start(self, connection_id: str) -> None:
        """Start a connection unless it is already connecting or connected."""
        state = self.registry.get(connection_id)
        if state is None:
            logger.warning("Connection not found", connection_id=connection_id)
            return
        if state.is_active:
            logger.debug("Connection already active", connection_id=connection_id)
            return

        self._conflict_retried.discard(connection_id)
        self._launch(state)

    def stop(self, connection_id: str) -> None:
        """Stop a connection. Statuses change immediately; teardown runs in the background."""
        state = self.registry.get(connection_id)
        if state is None:
            logger.warning("Connection not found", connection_id=connection_id)
            return

        self._bump_generation(connection_id)
        state.update(
            is_intentionally_stopped=True,
            tunnel_status=ConnectionStatus.DISCONNECTED,
            relay_status=ConnectionStatus.DISCONNECTED,
        )
        self.notifications.discard(connection_id)
        self._conflict_retried.discard(connection_id)
        self._schedule(connection_id, lambda: self._teardown(connection_id), "stop")
        logger.info("Stopping connection", connection_id=connection_id)

    def restart(self, connection_id: str) -> None:
        """Tear down and start again, keeping the monitor running."""
        state = self.registry.get(connection_id)
        if state is None:
            logger.warning("Connection not found", connection_id=connection_id)
            return

        self._bump_generation(connection_id)
        self._schedule(connection_id, lambda: self._teardown(connection_id), "restart")
        self._conflict_retried.discard(connection_id)
        self._launch(state)

    def _launch(self, state: ConnectionState) -> None:
        connection_id = state.id
        state.update(
            is_intentionally_stopped=False,
            tunnel_status=ConnectionStatus.CONNECTING,
            relay_status=(
                ConnectionStatus.CONNECTING
                if state.config.has_relay
                else ConnectionStatus.DISCONNECTED
            ),
        )
        self.ensure_monitoring()
        generation = self._bump_generation(connection_id)
        self._schedule(connection_id, lambda: self._spawn(connection_id, generation), "start")
        logger.info("Starting connection", connection_id=connection_id, name=state.config.name)

    # Bulk operations

    def start_all(self) -> None:
        """Start every enabled connection."""
        for state in self.registry.list():
            if state.config.is_enabled:
                self.start(state.id)

    def stop_all(self) -> None:
        """Stop every connection and halt the monitor."""
        self.stop_monitoring()
        for state in self.registry.list():
            self.stop(state.id)

    async def launch(self) -> None:
        """Prepare for a fresh session.

        Kills helpers left over from a previous run, loads the stored
        connections, and starts enabled ones when auto-start is on.
        """
        self._ensure_event_consumer()
        await self.supervisor.kill_all_managed_processes()
        self.load_connections()
        if self.settings.auto_start:
            self.start_all()

    async def shutdown(self) -> None:
        """Stop everything and wait until all helpers are gone."""
        self.stop_all()
        await self.wait_idle()
        if self._event_task is not None:
            self._event_task.cancel()
            await asyncio.wait([self._event_task])
            self._event_task = None

    async def wait_idle(self) -> None:
        """Wait until scheduled process work, store writes, and queued events are done."""
        self._ensure_event_consumer()
        while True:
            await self.supervisor.events.join()
            pending = [
                t for t in (*self._ops.values(), *self._background) if not t.done()
            ]
            if not pending:
                if self.supervisor.events.empty():
                    return
                continue
            await asyncio.wait(pending)

    # Per-connection work chain

    def _create_task(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as e:
            coro.close()
            raise OrchestratorError(
                "ConnectionOrchestrator must be driven from a running event loop"
            ) from e
        return loop.create_task(coro, name=name)

    def _bump_generation(self, connection_id: str) -> int:
        generation = self._generation.get(connection_id, 0) + 1
        self._generation[connection_id] = generation
        return generation

    def _is_current(self, connection_id: str, generation: int) -> bool:
        return self._generation.get(connection_id) == generation

    def _schedule(
        self, connection_id: str, work: Callable[[], Awaitable[None]], label: str
    ) -> asyncio.Task[None]:
        self._ensure_event_consumer()
        previous = self._ops.get(connection_id)

        async def run() -> None:
            if previous is not None and not previous.done():
                await asyncio.wait([previous])
            try:
                await work()
            except Exception:
                logger.exception("Connection task failed", connection_id=connection_id, task=label)

        task = self._create_task(run(), name=f"{label}-{connection_id}")
        self._ops[connection_id] = task

        def forget(done: asyncio.Task[None]) -> None:
            if self._ops.get(connection_id) is done:
                del self._ops[connection_id]

        task.add_done_callback(forget)
        return task

    async def _spawn(self, connection_id: str, generation: int) -> None:
        state = self.registry.get(connection_id)
        if state is None or not self._is_current(connection_id, generation):
            logger.debug("Skipping superseded start", connection_id=connection_id)
            return

        self.supervisor.clear_error(connection_id)
        try:
            await self.supervisor.start_connection(state.config)
        except Exception as e:
            if not isinstance(e, KubeForwardError):
                logger.exception("Unexpected error starting connection", connection_id=connection_id)
            if not self._is_current(connection_id, generation):
                return
            logger.error("Failed to start connection", connection_id=connection_id, error=str(e))
            repeated = state.last_error == str(e)
            state.update(
                tunnel_status=ConnectionStatus.ERROR,
                relay_status=(
                    ConnectionStatus.ERROR
                    if state.config.has_relay
                    else ConnectionStatus.DISCONNECTED
                ),
                last_error=str(e),
            )
            if not repeated:
                self.notifications.record(connection_id, state.config.name, NotificationKind.ERROR)
            return

        logger.info("Helpers spawned", connection_id=connection_id)

    async def _teardown(self, connection_id: str) -> None:
        await self.supervisor.kill_processes(connection_id)

    # Supervisor events

    def _ensure_event_consumer(self) -> None:
        if self._event_task is None or self._event_task.done():
            self._event_task = self._create_task(self._consume_events(), name="supervisor-events")

    async def _consume_events(self) -> None:
        events = self.supervisor.events
        while True:
            event = await events.get()
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Failed to handle supervisor event", supervisor_event=repr(event))
            finally:
                events.task_done()

    async def handle_event(self, event: SupervisorEvent) -> None:
        """Apply one supervisor event to connection state."""
        state = self.registry.get(event.connection_id)
        if state is None or state.is_intentionally_stopped:
            return

        if isinstance(event, OutputLine):
            error = event.as_error()
            if isinstance(error, PortInUseError):
                self._handle_port_conflict(state, error)
            elif error is not None:
                state.update(last_error=str(error))
        elif isinstance(event, ProcessExited):
            if state.is_active and state.last_error is None:
                state.update(
                    last_error=f"{event.role.value} process exited (code {event.returncode})"
                )

    def _handle_port_conflict(self, state: ConnectionState, error: PortInUseError) -> None:
        connection_id = state.id
        port = error.port
        state.update(last_error=str(error))

        if connection_id in self._conflict_retried:
            logger.warning("Port still in use after resolution", connection_id=connection_id, port=port)
            return
        self._conflict_retried.add(connection_id)

        generation = self._generation.get(connection_id, 0)
        logger.info("Resolving port conflict", connection_id=connection_id, port=port)

        async def resolve_and_retry() -> None:
            if not self._is_current(connection_id, generation):
                return
            await self.supervisor.kill_processes(connection_id)
            await asyncio.to_thread(
                self.resolver.resolve_port, port, self.settings.conflict_grace_period
            )
            await self._spawn(connection_id, generation)

        self._schedule(connection_id, resolve_and_retry, "resolve-conflict")

    # Monitoring

    def ensure_monitoring(self) -> None:
        """Start the monitor loop if it is not running."""
        if self.is_monitoring:
            return
        logger.info("Starting monitoring", interval=self.settings.refresh_interval)
        self._monitor_task = self._create_task(self._monitor_loop(), name="connection-monitor")

    def stop_monitoring(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            self._monitor_task = None
            logger.info("Stopped monitoring")

    def _needs_monitoring(self) -> bool:
        """Whether any connection still has state the monitor can change.

        An errored connection whose helpers are still alive counts: its port
        may come up, or its process may exit and need reconnecting.
        """
        if self._ops:
            return True
        for state in self.registry.list():
            if state.is_intentionally_stopped:
                continue
            if state.is_active or any(
                self.supervisor.is_running(state.id, role) for role in ProcessRole
            ):
                return True
        return False

    async def _monitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.refresh_interval)
            try:
                await self.check_connections()
            except Exception:
                logger.exception("Monitoring cycle failed")
            if not self._needs_monitoring():
                logger.info("No active connections, monitoring idle")
                self._monitor_task = None
                return

    async def check_connections(self) -> None:
        """Run one monitoring cycle.

        Reconciles every started connection against process liveness and
        port reachability, reconnects dead ones that allow it, and emits the
        notifications collected since the previous cycle.
        """
        self._ensure_event_consumer()
        settings = self.settings
        for state in self.registry.list():
            if state.id in self._ops or state.is_intentionally_stopped:
                continue
            if (
                state.tunnel_status == ConnectionStatus.DISCONNECTED
                and state.relay_status == ConnectionStatus.DISCONNECTED
            ):
                continue
            await self._reconcile(state, settings)

        notifications = self.notifications.drain()
        if not settings.show_notifications:
            return
        for notification in notifications:
            title, body = notification.render()
            try:
                self.notifier.notify(title, body)
            except Exception as e:
                logger.error("Notification failed", title=title, error=str(e))

    async def _reconcile(self, state: ConnectionState, settings: ForwardSettings) -> None:
        config = state.config
        connection_id = state.id
        timeout = settings.probe_timeout
        log = connection_logger(logger, connection_id, config.name)

        if isinstance(plan_for(config), EphemeralDirectExec):
            relay_alive = self.supervisor.is_running(connection_id, ProcessRole.RELAY)
            relay_open = relay_alive and await self.supervisor.is_port_open(
                config.external_port, timeout
            )
            tunnel_alive, tunnel_open = relay_alive, relay_open
        else:
            tunnel_alive = self.supervisor.is_running(connection_id, ProcessRole.TUNNEL)
            tunnel_open = tunnel_alive and await self.supervisor.is_port_open(
                config.local_port, timeout
            )
            relay_alive = relay_open = False
            if config.proxy_port is not None:
                relay_alive = self.supervisor.is_running(connection_id, ProcessRole.RELAY)
                relay_open = relay_alive and await self.supervisor.is_port_open(
                    config.proxy_port, timeout
                )

        recent_error = self.supervisor.has_recent_error(
            connection_id, settings.recent_error_window
        )
        was_connected = state.is_fully_connected
        was_error = state.tunnel_status == ConnectionStatus.ERROR

        tunnel_status = _observed_status(
            state.tunnel_status, tunnel_alive, tunnel_open, recent_error
        )
        relay_status = ConnectionStatus.DISCONNECTED
        if config.has_relay:
            relay_status = _observed_status(
                state.relay_status, relay_alive, relay_open, recent_error
            )

        dead = not tunnel_alive or (config.has_relay and not relay_alive)
        if dead:
            tunnel_status = ConnectionStatus.ERROR
            if config.has_relay:
                relay_status = ConnectionStatus.ERROR

        changes: dict[str, Any] = {
            "tunnel_status": tunnel_status,
            "relay_status": relay_status,
        }
        if dead and state.last_error is None:
            role = "tunnel" if not tunnel_alive else "relay"
            changes["last_error"] = f"{role} process exited"
        state.update(**changes)

        if state.is_fully_connected:
            if state.last_error is not None:
                state.update(last_error=None)
            self._conflict_retried.discard(connection_id)
            if not was_connected:
                log.info("Connection established")
                self.notifications.record(connection_id, config.name, NotificationKind.CONNECTED)
        elif state.tunnel_status == ConnectionStatus.ERROR and not was_error:
            kind = (
                NotificationKind.DISCONNECTED
                if was_connected and not recent_error
                else NotificationKind.ERROR
            )
            log.warning(
                "Connection failed",
                error=state.last_error,
                dead=dead,
            )
            self.notifications.record(connection_id, config.name, kind)

        if not dead:
            return

        if not was_error or tunnel_alive or relay_alive:
            self._schedule(connection_id, lambda: self._teardown(connection_id), "cleanup")
        if config.auto_reconnect and config.is_enabled:
            log.info("Reconnecting")
            self.start(connection_id)


def _observed_status(
    current: ConnectionStatus, alive: bool, port_open: bool, recent_error: bool
) -> ConnectionStatus:
    if alive and port_open:
        return ConnectionStatus.CONNECTED
    if alive and recent_error:
        return ConnectionStatus.ERROR
    if alive:
        return current
    return ConnectionStatus.ERROR
