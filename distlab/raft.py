"""Raft consensus peer: leader election, log replication and commit delivery."""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

DEBUG = False

HEARTBEAT_INTERVAL = 0.150
ELECTION_TIMEOUT_MIN = 0.200
ELECTION_TIMEOUT_SPREAD = 0.150

_logger = logging.getLogger(__name__)


def dprintf(fmt: str, *args: Any) -> None:
    """Log a %-style debugging message when DEBUG is switched on."""
    if DEBUG:
        _logger.debug(fmt, *args)


class Peer(Protocol):
    """An RPC end point: returns the handler's reply, or None if the call failed."""

    def call(self, rpcname: str, args: Any) -> Any: ...


@dataclass
class ApplyMsg:
    """A committed log entry, or a snapshot, handed to the service."""

    command_valid: bool = False
    command: Any = None
    command_index: int = 0
    snapshot_valid: bool = False
    snapshot: bytes = b""
    snapshot_term: int = 0
    snapshot_index: int = 0


@dataclass(frozen=True)
class LogEntry:
    """One entry of the replicated log."""

    term: int
    command: Any


@dataclass
class RequestVoteArgs:
    """A candidate's request for a vote."""

    term: int = 0
    candidate_id: int = 0
    last_log_index: int = 0
    last_log_term: int = 0


@dataclass
class RequestVoteReply:
    """A voter's answer to a vote request."""

    term: int = 0
    vote_granted: bool = False


@dataclass
class AppendEntriesArgs:
    """A leader's heartbeat or log replication request."""

    term: int = 0
    leader_id: int = 0
    prev_log_index: int = 0
    prev_log_term: int = 0
    entries: list[LogEntry] = field(default_factory=list)
    leader_commit: int = 0


@dataclass
class AppendEntriesReply:
    """A follower's answer to an append request."""

    term: int = 0
    success: bool = False


def _random_election_timeout() -> float:
    return ELECTION_TIMEOUT_MIN + random.uniform(0, ELECTION_TIMEOUT_SPREAD)


class _Timer:
    """A resettable one-shot timer that a single thread waits on."""

    def __init__(self, seconds: float | None = None) -> None:
        self._cond = threading.Condition()
        self._deadline = None if seconds is None else time.monotonic() + seconds
        self._closed = False

    def reset(self, seconds: float) -> None:
        with self._cond:
            self._deadline = time.monotonic() + seconds
            self._cond.notify_all()

    def stop(self) -> None:
        with self._cond:
            self._deadline = None
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._deadline = None
            self._cond.notify_all()

    def wait(self) -> bool:
        """Block until the timer fires (True) or is closed (False)."""
        with self._cond:
            while not self._closed:
                if self._deadline is None:
                    self._cond.wait()
                    continue
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    self._deadline = None
                    return True
                self._cond.wait(remaining)
            return False


def _spawn(target, *args) -> None:
    threading.Thread(target=target, args=args, daemon=True).start()


class Raft:
    """A single Raft peer.

    ``peers`` holds one end point per server, this one included at index ``me``;
    each end point's ``call(rpcname, args)`` returns the reply or None on failure.
    Committed entries are delivered as ApplyMsg values through ``apply_ch.put``.
    """

    def __init__(self, peers, me, persister, apply_ch) -> None:
        self._lock = threading.Lock()
        self._peers = list(peers)
        self.persister = persister
        self.me = me
        self._dead = threading.Event()

        self._current_term = 0
        self._voted_for = -1
        self._log: list[LogEntry] = [LogEntry(-1, "")]
        self._commit_index = 0
        self._last_applied = 0
        self._next_index = [0] * len(self._peers)
        self._match_index = [0] * len(self._peers)

        self._election_timer = _Timer(_random_election_timeout())
        self._heartbeat_timer = _Timer()
        self._apply_ch = apply_ch

    # ----- public interface -------------------------------------------------

    def get_state(self) -> tuple[int, bool]:
        """Return the current term and whether this peer believes it is leader."""
        with self._lock:
            return self._current_term, self._voted_for == self.me

    def cond_install_snapshot(self, last_included_term, last_included_index, snapshot) -> bool:
        """Accept a snapshot the service wants to switch to."""
        return True

    def snapshot(self, index, snapshot) -> None:
        """Take note of a service snapshot through ``index``; the log is kept whole."""

    def request_vote(self, args: RequestVoteArgs) -> RequestVoteReply:
        """Handle a vote request from a candidate."""
        reply = RequestVoteReply()
        with self._lock:
            self._voted_for = -1
            self._heartbeat_timer.stop()
            if args.term >= self._current_term:
                last_term = self._log[-1].term
                if args.last_log_term > last_term:
                    reply.vote_granted = True
                if args.last_log_term == last_term and args.last_log_index >= len(self._log) - 1:
                    reply.vote_granted = True
                if args.term > self._current_term:
                    self._current_term = args.term
            reply.term = self._current_term
        return reply

    def append_entries(self, args: AppendEntriesArgs) -> AppendEntriesReply:
        """Handle a heartbeat or a replication request from a leader."""
        reply = AppendEntriesReply()
        with self._lock:
            if args.term < self._current_term:
                reply.term = self._current_term
                return reply
            self._voted_for = args.leader_id
            self._current_term = args.term
            self._election_timer.reset(_random_election_timeout())
            self._heartbeat_timer.stop()

            if args.entries:
                reply.term = args.term
                prev = args.prev_log_index
                if prev >= len(self._log) or self._log[prev].term != args.prev_log_term:
                    return reply
                self._log = self._log[: prev + 1] + list(args.entries)

            if args.leader_commit > self._commit_index:
                self._commit_index = min(args.leader_commit, len(self._log) - 1)
                _spawn(self._apply_logs, self._last_applied, self._commit_index)
            reply.success = True
        return reply

    def start(self, command) -> tuple[int, int, bool]:
        """Begin agreement on ``command``; return (index, term, is_leader)."""
        with self._lock:
            if self._voted_for != self.me:
                return -1, -1, False
            self._log.append(LogEntry(self._current_term, command))
            cur_len = len(self._log)
            cur_term = self._current_term
            cur_index = cur_len - 1

        results: queue.Queue[AppendEntriesReply] = queue.Queue()
        for server in self._others():
            _spawn(self._replicate, server, cur_term, results)
        with self._lock:
            self._heartbeat_timer.reset(HEARTBEAT_INTERVAL)
        _spawn(self._await_majority, cur_term, cur_len, results)
        return cur_index, cur_term, True

    def kill(self) -> None:
        """Stop this peer's background work."""
        self._dead.set()
        self._election_timer.close()
        self._heartbeat_timer.close()

    def killed(self) -> bool:
        """Report whether kill() has been called."""
        return self._dead.is_set()

    # ----- background work --------------------------------------------------

    def _start_background(self) -> None:
        _spawn(self._ticker)
        _spawn(self._heartbeat_ticker)

    def _others(self) -> list[int]:
        return [i for i in range(len(self._peers)) if i != self.me]

    def _majority(self) -> int:
        return len(self._peers) // 2

    def _next_reply(self, replies: queue.Queue):
        while not self.killed():
            try:
                return replies.get(timeout=0.1)
            except queue.Empty:
                continue
        return None

    def _ticker(self) -> None:
        while not self.killed():
            if self._election_timer.wait():
                self._run_election()

    def _run_election(self) -> None:
        with self._lock:
            self._current_term += 1
            self._voted_for = -1
            cur_term = self._current_term
            args = RequestVoteArgs(
                term=cur_term,
                candidate_id=self.me,
                last_log_index=len(self._log),
                last_log_term=self._log[-1].term,
            )

        replies: queue.Queue[RequestVoteReply] = queue.Queue()
        for server in self._others():
            _spawn(self._solicit_vote, server, args, replies)

        votes = 1
        for _ in self._others():
            reply = self._next_reply(replies)
            if reply is None:
                return
            with self._lock:
                if reply.term > self._current_term:
                    self._current_term = reply.term
            if reply.vote_granted:
                votes += 1
                if votes > self._majority():
                    break

        with self._lock:
            won = (
                votes > self._majority()
                and self._voted_for == -1
                and self._current_term == cur_term
            )
            if not won:
                self._election_timer.reset(_random_election_timeout())
                return
            self._voted_for = self.me
            dprintf("%s wins the election for term %s", self.me, cur_term)
            for server in self._others():
                _spawn(self._send_heartbeat, server, self._current_term, self.me)
            self._next_index = [len(self._log)] * len(self._peers)
            self._match_index = [0] * len(self._peers)
            self._heartbeat_timer.reset(HEARTBEAT_INTERVAL)

    def _solicit_vote(self, server: int, args: RequestVoteArgs, replies: queue.Queue) -> None:
        reply = self._peers[server].call("Raft.RequestVote", args)
        replies.put(reply if reply is not None else RequestVoteReply(0, False))

    def _heartbeat_ticker(self) -> None:
        while not self.killed():
            if not self._heartbeat_timer.wait():
                continue
            with self._lock:
                for server in self._others():
                    _spawn(self._send_heartbeat, server, self._current_term, self.me)
                if self._voted_for == self.me:
                    self._heartbeat_timer.reset(HEARTBEAT_INTERVAL)

    def _send_heartbeat(self, server: int, term: int, leader_id: int) -> None:
        with self._lock:
            args = AppendEntriesArgs(
                term=term,
                leader_id=leader_id,
                leader_commit=min(self._commit_index, self._match_index[server]),
            )
        self._peers[server].call("Raft.AppendEntries", args)

    def _replicate(self, server: int, cur_term: int, results: queue.Queue) -> None:
        while not self.killed():
            with self._lock:
                if self._next_index[server] > len(self._log):
                    self._next_index[server] = len(self._log)
                next_index = self._next_index[server]
                prev = next_index - 1
                args = AppendEntriesArgs(
                    term=cur_term,
                    leader_id=self.me,
                    prev_log_index=prev,
                    prev_log_term=self._log[prev].term,
                    entries=self._log[next_index:],
                    leader_commit=self._commit_index,
                )
            reply = self._peers[server].call("Raft.AppendEntries", args)
            if reply is not None and reply.success:
                with self._lock:
                    self._next_index[server] = prev + len(args.entries) + 1
                    self._match_index[server] = self._next_index[server] - 1
                results.put(reply)
                return
            with self._lock:
                if self._voted_for != self.me:
                    return
                if self._next_index[server] > 1:
                    self._next_index[server] -= 1

    def _await_majority(self, cur_term: int, cur_len: int, results: queue.Queue) -> None:
        count = 1
        for _ in self._others():
            reply = self._next_reply(results)
            if reply is None:
                return
            with self._lock:
                if reply.term == self._current_term and reply.success:
                    count += 1
                    if count > self._majority():
                        break
        with self._lock:
            if count > self._majority() and self._current_term == cur_term:
                self._commit_index = max(self._commit_index, cur_len - 1)
                _spawn(self._apply_logs, self._last_applied, self._commit_index)

    def _apply_logs(self, last_applied: int, commit_index: int) -> None:
        while last_applied < commit_index:
            with self._lock:
                last_applied += 1
                if last_applied >= len(self._log):
                    return
                msg = ApplyMsg(
                    command_valid=True,
                    command=self._log[last_applied].command,
                    command_index=last_applied,
                )
                self._apply_ch.put(msg)
                self._last_applied = last_applied


def make(peers, me, persister, apply_ch) -> Raft:
    """Create a Raft peer and start its election and heartbeat threads."""
    rf = Raft(peers, me, persister, apply_ch)
    rf._start_background()
    return rf