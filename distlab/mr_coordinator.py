"""The map/reduce coordinator: hands out tasks and tracks their completion."""

from __future__ import annotations

import contextlib
import json
import os
import socketserver
import threading
from dataclasses import asdict

from distlab.mr_rpc import (
    MAP_PHASE,
    REDUCE_PHASE,
    ExampleArgs,
    ExampleReply,
    RpcArgs,
    RpcReply,
    coordinator_sock,
)

TASK_TIMEOUT = 10.0


class _RequestHandler(socketserver.StreamRequestHandler):
    """Serves newline-delimited JSON requests on one connection."""

    def handle(self) -> None:
        coordinator: Coordinator = self.server.coordinator  # type: ignore[attr-defined]
        for line in self.rfile:
            if not line.strip():
                continue
            response = coordinator._dispatch(line)
            self.wfile.write(json.dumps(response).encode("utf-8") + b"\n")


class _RpcServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True


class Coordinator:
    """Keeps the task queue and the state of every map and reduce task."""

    def __init__(self, files, n_reduce, *, sockname=None, task_timeout=TASK_TIMEOUT):
        self.tasks: list[str] = list(files)
        self.map_status: dict[str, bool] = {}
        self.reduce_status: dict[str, bool] = {}
        self.phase = MAP_PHASE
        self.index = 0
        self.n_reduce = n_reduce
        self.sockname = sockname if sockname is not None else coordinator_sock()
        self._task_timeout = task_timeout
        self._lock = threading.Lock()
        self._server: _RpcServer | None = None
        self._methods = {
            "Coordinator.RpcHandler": (RpcArgs, self.rpc_handler),
            "Coordinator.Example": (ExampleArgs, self.example),
        }

    def rpc_handler(self, args: RpcArgs) -> RpcReply:
        """Record a finished task, if one is reported, then hand out the next."""
        reply = RpcReply()
        with self._lock:
            if args.task_name:
                if self.phase == MAP_PHASE:
                    self.map_status[args.task_name] = True
                    self._attempt_change_phase()
                else:
                    self.reduce_status[args.task_name] = True
            self._assign_task(reply)
        return reply

    def example(self, args: ExampleArgs) -> ExampleReply:
        """Answer the example call with its argument plus one."""
        return ExampleReply(y=args.x + 1)

    def serve(self) -> None:
        """Listen for worker calls on the coordinator socket in a background thread."""
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.sockname)
        server = _RpcServer(self.sockname, _RequestHandler)
        server.coordinator = self  # type: ignore[attr-defined]
        self._server = server
        threading.Thread(target=server.serve_forever, daemon=True).start()

    def shutdown(self) -> None:
        """Stop serving and remove the socket file."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.sockname)

    def done(self) -> bool:
        """Report whether the whole job has finished."""
        with self._lock:
            if self.tasks or self.phase == MAP_PHASE:
                return False
            return all(self.reduce_status.values())

    def _dispatch(self, line: bytes) -> dict:
        try:
            request = json.loads(line)
            method = request["method"]
            payload = request.get("args") or {}
        except (ValueError, KeyError, TypeError) as exc:
            return {"error": f"rpc: malformed request: {exc}"}
        entry = self._methods.get(method)
        if entry is None:
            return {"error": f"rpc: can't find method {method}"}
        args_type, handler = entry
        try:
            args = args_type(**payload)
        except TypeError as exc:
            return {"error": f"rpc: bad arguments for {method}: {exc}"}
        return {"reply": asdict(handler(args))}

    def _assign_task(self, reply: RpcReply) -> None:
        if not self.tasks:
            return
        task = self.tasks.pop()
        if not task:
            return
        self.index += 1
        reply.task_name = task
        reply.index = self.index
        reply.phase = self.phase
        reply.n_reduce = self.n_reduce
        if self.phase == MAP_PHASE:
            self.map_status[task] = False
        else:
            self.reduce_status[task] = False
        timer = threading.Timer(
            self._task_timeout, self._requeue_if_unfinished, args=(self.phase, task)
        )
        timer.daemon = True
        timer.start()

    def _attempt_change_phase(self) -> None:
        if self.tasks:
            return
        if all(self.map_status.values()):
            self.phase = REDUCE_PHASE
            self.tasks.extend(f"reduce_{i}" for i in range(1, self.n_reduce + 1))

    def _requeue_if_unfinished(self, phase: int, task: str) -> None:
        with self._lock:
            status = self.map_status if phase == MAP_PHASE else self.reduce_status
            if not status.get(task, False):
                self.tasks.append(task)


def make_coordinator(files, n_reduce) -> Coordinator:
    """Create a coordinator for the given input files and start serving."""
    coordinator = Coordinator(files, n_reduce)
    coordinator.serve()
    return coordinator