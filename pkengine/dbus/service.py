"""D-Bus service for pkengine.

Exposes the Backend operations over the system bus at:
    Bus name:    org.pkengine.Backend1
    Object path: /org/pkengine/Backend1

Every operation method returns a job id at once and runs in its own
thread. Results arrive as signals carrying that id:
    Package(job_id, info, package_id, summary)
    ErrorCode(job_id, code, details)
    Finished(job_id, exit)      exit is "success" or "failed"

Usage:
    pkengine-dbus-service          # Run as D-Bus activated service
    pkengine-dbus-service --debug  # Run with debug logging
"""

import logging
import signal
import sys
import threading
import uuid
from typing import Callable, Dict, Optional

from ..backend import Backend, TransactionFlag
from ..core.filters import FilterSpec, filter_names
from ..core.job import Job

logger = logging.getLogger(__name__)

# D-Bus names
BUS_NAME = "org.pkengine.Backend1"
OBJECT_PATH = "/org/pkengine/Backend1"
INTERFACE_NAME = "org.pkengine.Backend1"

_KNOWN_FLAGS = TransactionFlag.ONLY_TRUSTED | TransactionFlag.SIMULATE


def transaction_flags(value: int) -> TransactionFlag:
    """Bitfield from the bus, unknown bits dropped."""
    return TransactionFlag(value & _KNOWN_FLAGS.value)


def filters_from_text(text: str):
    return FilterSpec.parse(text).filters


class BackendDBusService:
    """D-Bus service exposing Backend operations as jobs."""

    def __init__(self, backend: Backend = None):
        self._backend = backend
        self._loop = None
        self._connection = None
        self._active_jobs: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def _init_core(self):
        """Lazy-init the backend."""
        if self._backend is not None:
            return
        self._backend = Backend()
        self._backend.initialize()

    # =====================================================================
    # D-Bus signal emission
    # =====================================================================

    def _emit(self, name: str, signature: str, values: tuple):
        """Emit a signal on the main loop thread."""
        from gi.repository import GLib

        def _emit():
            if self._connection:
                self._connection.emit_signal(
                    None, OBJECT_PATH, INTERFACE_NAME,
                    name, GLib.Variant(signature, values)
                )
            return False  # Don't repeat

        GLib.idle_add(_emit)

    def _make_job(self, job_id: str) -> Job:
        def on_package(info, package_id, summary):
            self._emit("Package", '(ssss)', (job_id, info.value, package_id, summary))

        def on_error(kind, message):
            self._emit("ErrorCode", '(sss)', (job_id, kind.value, message))

        def on_finished():
            with self._lock:
                self._active_jobs.pop(job_id, None)
            exit_status = "failed" if job.error else "success"
            self._emit("Finished", '(ss)', (job_id, exit_status))

        job = Job(on_package=on_package, on_error=on_error, on_finished=on_finished)
        return job

    # =====================================================================
    # Jobs
    # =====================================================================

    def start_job(self, operation: Callable, *args) -> str:
        """Run backend operation(job, *args) in a worker thread.

        Returns:
            The job id signals will carry
        """
        self._init_core()
        job_id = uuid.uuid4().hex[:8]
        job = self._make_job(job_id)

        thread = threading.Thread(
            target=operation,
            args=(job,) + args,
            name=f"job-{job_id}",
            daemon=True,
        )
        with self._lock:
            self._active_jobs[job_id] = thread
        logger.debug(f"Starting job {job_id}: {operation.__name__}")
        thread.start()
        return job_id

    def active_jobs(self) -> int:
        with self._lock:
            return len(self._active_jobs)

    def dispatch(self, method_name: str, params: tuple) -> Optional[str]:
        """Start the job for a job method. Returns None for unknown names."""
        self._init_core()
        backend = self._backend

        if method_name == "GetPackages":
            return self.start_job(backend.get_packages, filters_from_text(params[0]))
        elif method_name == "SearchNames":
            return self.start_job(backend.search_names,
                                  filters_from_text(params[0]), list(params[1]))
        elif method_name == "SearchDetails":
            return self.start_job(backend.search_details,
                                  filters_from_text(params[0]), list(params[1]))
        elif method_name == "Resolve":
            return self.start_job(backend.resolve,
                                  filters_from_text(params[0]), list(params[1]))
        elif method_name == "GetUpdates":
            return self.start_job(backend.get_updates, filters_from_text(params[0]))
        elif method_name == "RefreshCache":
            return self.start_job(backend.refresh_cache, bool(params[0]))
        elif method_name == "InstallPackages":
            return self.start_job(backend.install_packages,
                                  transaction_flags(params[0]), list(params[1]))
        elif method_name == "RemovePackages":
            return self.start_job(backend.remove_packages,
                                  transaction_flags(params[0]), list(params[1]),
                                  bool(params[2]), bool(params[3]))
        elif method_name == "UpdatePackages":
            return self.start_job(backend.update_packages,
                                  transaction_flags(params[0]), list(params[1]))
        return None

    # =====================================================================
    # D-Bus registration (GLib/Gio)
    # =====================================================================

    def _build_introspection_xml(self):
        """Build D-Bus introspection XML for the interface."""
        return f"""
<node>
  <interface name="{INTERFACE_NAME}">
    <method name="GetBackendDetails">
      <arg name="description" type="s" direction="out"/>
      <arg name="author" type="s" direction="out"/>
      <arg name="parallel" type="b" direction="out"/>
    </method>
    <method name="GetFilters">
      <arg name="filters" type="as" direction="out"/>
    </method>
    <method name="GetGroups">
      <arg name="groups" type="as" direction="out"/>
    </method>
    <method name="GetPackages">
      <arg name="filter" type="s" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="SearchNames">
      <arg name="filter" type="s" direction="in"/>
      <arg name="values" type="as" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="SearchDetails">
      <arg name="filter" type="s" direction="in"/>
      <arg name="values" type="as" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="Resolve">
      <arg name="filter" type="s" direction="in"/>
      <arg name="names" type="as" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="GetUpdates">
      <arg name="filter" type="s" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="RefreshCache">
      <arg name="force" type="b" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="InstallPackages">
      <arg name="flags" type="t" direction="in"/>
      <arg name="package_ids" type="as" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="RemovePackages">
      <arg name="flags" type="t" direction="in"/>
      <arg name="package_ids" type="as" direction="in"/>
      <arg name="allow_deps" type="b" direction="in"/>
      <arg name="autoremove" type="b" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <method name="UpdatePackages">
      <arg name="flags" type="t" direction="in"/>
      <arg name="package_ids" type="as" direction="in"/>
      <arg name="job_id" type="s" direction="out"/>
    </method>
    <signal name="Package">
      <arg name="job_id" type="s"/>
      <arg name="info" type="s"/>
      <arg name="package_id" type="s"/>
      <arg name="summary" type="s"/>
    </signal>
    <signal name="ErrorCode">
      <arg name="job_id" type="s"/>
      <arg name="code" type="s"/>
      <arg name="details" type="s"/>
    </signal>
    <signal name="Finished">
      <arg name="job_id" type="s"/>
      <arg name="exit" type="s"/>
    </signal>
  </interface>
</node>
"""

    def _on_method_call(self, connection, sender, object_path, interface_name,
                        method_name, parameters, invocation):
        """Handle incoming D-Bus method calls."""
        try:
            from gi.repository import GLib

            self._init_core()
            backend = self._backend

            if method_name == "GetBackendDetails":
                invocation.return_value(GLib.Variant('(ssb)', (
                    backend.description, backend.author,
                    backend.supports_parallelization(),
                )))
            elif method_name == "GetFilters":
                invocation.return_value(GLib.Variant('(as)', (filter_names(backend.get_filters()),)))
            elif method_name == "GetGroups":
                invocation.return_value(
                    GLib.Variant('(as)', (sorted(backend.get_groups()),))
                )
            else:
                job_id = self.dispatch(method_name, parameters.unpack())
                if job_id is None:
                    invocation.return_dbus_error(
                        'org.freedesktop.DBus.Error.UnknownMethod',
                        f'Unknown method: {method_name}'
                    )
                else:
                    invocation.return_value(GLib.Variant('(s)', (job_id,)))

        except Exception as e:
            logger.exception(f"Error handling {method_name}")
            invocation.return_dbus_error(f'{INTERFACE_NAME}.Error', str(e))

    def run(self, debug: bool = False):
        """Run the D-Bus service (main loop)."""
        import gi
        gi.require_version('Gio', '2.0')
        from gi.repository import Gio, GLib

        logging.basicConfig(level=logging.DEBUG if debug else logging.INFO)
        logger.info(f"Starting pkengine D-Bus service ({BUS_NAME})")

        self._init_core()

        node_info = Gio.DBusNodeInfo.new_for_xml(
            self._build_introspection_xml()
        )
        interface_info = node_info.interfaces[0]

        def on_bus_acquired(connection, name):
            logger.info(f"Bus acquired: {name}")
            self._connection = connection
            connection.register_object(
                OBJECT_PATH,
                interface_info,
                self._on_method_call,
                None,  # get_property
                None,  # set_property
            )

        def on_name_acquired(connection, name):
            logger.info(f"Name acquired: {name}")

        def on_name_lost(connection, name):
            logger.error(f"Name lost: {name}")
            self._loop.quit()

        Gio.bus_own_name(
            Gio.BusType.SYSTEM,
            BUS_NAME,
            Gio.BusNameOwnerFlags.NONE,
            on_bus_acquired,
            on_name_acquired,
            on_name_lost,
        )

        self._loop = GLib.MainLoop()

        # Handle SIGTERM/SIGINT gracefully
        def _quit(signum, frame):
            logger.info("Received signal, shutting down")
            self._loop.quit()

        signal.signal(signal.SIGTERM, _quit)
        signal.signal(signal.SIGINT, _quit)

        try:
            self._loop.run()
        finally:
            self._backend.destroy()
            logger.info("Service stopped")


def main():
    """Entry point for pkengine-dbus-service."""
    debug = '--debug' in sys.argv
    service = BackendDBusService()
    service.run(debug=debug)


if __name__ == '__main__':
    main()
