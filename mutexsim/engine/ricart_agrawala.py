# mutexsim/engine/ricart_agrawala.py
#
# Ricart-Agrawala permission-based mutual exclusion over a FIFO message queue.
# A requester broadcasts REQUEST(ts) and enters once every other alive process
# has replied. A receiver grants at once unless it is in the critical section or
# its own pending request has priority, in which case the REPLY is deferred until
# it releases. Priority is (timestamp ascending, numeric process id ascending).

from .model import (
    ACCEPTED, ActionResult, Message, MessageKind, Model, Process, Reason,
    StepKind, StepResult, alive_pids, any_in_cs, compare_pids, get_proc,
    log_event, log_warning,
)


def has_priority(ts_a: int, pid_a: str, ts_b: int, pid_b: str) -> bool:
    """True if request (ts_a, pid_a) is ordered strictly before (ts_b, pid_b)."""
    if ts_a != ts_b:
        return ts_a < ts_b
    return compare_pids(pid_a, pid_b) < 0


def enqueue(model: Model, kind: MessageKind, sender: str, recipient: str, timestamp: int) -> int:
    """Send a message; an armed drop-next-send fault swallows it before it is queued."""
    network = model.network
    msg_id = network.next_message_id
    network.next_message_id += 1
    model.metrics.messages_sent += 1

    if network.drop_next_send:
        network.drop_next_send = False
        model.metrics.messages_dropped += 1
        log_warning(model, f"Fault injected: dropped outgoing {kind.value} #{msg_id} {sender} -> {recipient}.")
        return msg_id

    network.queue.append(Message(id=msg_id, kind=kind, sender=sender, recipient=recipient, timestamp=timestamp))
    return msg_id


def _enter(model: Model, p: Process, why: str) -> StepResult:
    p.in_cs = True
    p.requesting = False
    model.metrics.cs_entries += 1
    log_event(model, f"{p.id} enters the critical section ({why}).")
    return StepResult(kind=StepKind.CS_ENTRY, pid=p.id)


def request_cs(model: Model, pid: str) -> ActionResult:
    p = get_proc(model, pid)
    if p is None:
        return ActionResult.rejected(Reason.UNKNOWN_PROCESS)
    if p.crashed:
        return ActionResult.rejected(Reason.CRASHED)
    if p.in_cs:
        return ActionResult.rejected(Reason.ALREADY_IN_CS)
    if p.requesting:
        return ActionResult.rejected(Reason.ALREADY_REQUESTING)

    p.clock += 1
    p.req_ts = p.clock
    p.requesting = True
    p.awaiting = [other for other in alive_pids(model) if other != pid]
    p.deferred = []

    targets = list(p.awaiting)
    for to in targets:
        enqueue(model, MessageKind.REQUEST, pid, to, p.req_ts)
    log_event(model, f"{pid} broadcasts REQUEST(ts={p.req_ts}) to {len(targets)} processes.")

    if not targets:
        _enter(model, p, 'no other alive process to ask')
    return ACCEPTED


def release_cs(model: Model, pid: str) -> ActionResult:
    p = get_proc(model, pid)
    if p is None:
        return ActionResult.rejected(Reason.UNKNOWN_PROCESS)
    if p.crashed:
        return ActionResult.rejected(Reason.CRASHED)
    if not p.in_cs:
        return ActionResult.rejected(Reason.NOT_IN_CS)

    p.in_cs = False
    model.metrics.cs_releases += 1
    log_event(model, f"{pid} releases the critical section.")

    to_send = list(p.deferred)
    p.reset_request()
    p.requesting = False

    if to_send:
        log_event(model, f"{pid} sends deferred REPLY to {', '.join(to_send)}.")
        for to in to_send:
            target = get_proc(model, to)
            if target is not None and target.crashed:
                continue
            p.clock += 1
            enqueue(model, MessageKind.REPLY, pid, to, p.clock)
    return ACCEPTED


def deliver_next(model: Model) -> StepResult:
    """Deliver the queue head to its recipient (FIFO)."""
    queue = model.network.queue
    if not queue:
        log_warning(model, 'No progress: no messages in flight.')
        return StepResult.stalled(Reason.NO_MESSAGES)

    msg = queue.popleft()
    recv = get_proc(model, msg.recipient)
    if recv is None or recv.crashed:
        # Fail-stop: messages to a dead process vanish instead of being misdelivered
        model.metrics.messages_dropped += 1
        log_warning(model, f"Message dropped: {msg.describe()} (receiver crashed).")
        return StepResult(kind=StepKind.MESSAGE_DROPPED, message=msg, pid=msg.recipient)

    model.metrics.messages_delivered += 1
    recv.clock = max(recv.clock, msg.timestamp) + 1

    if msg.kind is MessageKind.REQUEST:
        should_defer = recv.in_cs or (
            recv.requesting and recv.req_ts is not None
            and has_priority(recv.req_ts, recv.id, msg.timestamp, msg.sender)
        )
        if should_defer:
            if msg.sender not in recv.deferred:
                recv.deferred.append(msg.sender)
            log_event(model, f"{recv.id} defers REPLY to {msg.sender}.")
            return StepResult(kind=StepKind.MESSAGE_DELIVERED, message=msg, pid=recv.id)

        recv.clock += 1
        enqueue(model, MessageKind.REPLY, recv.id, msg.sender, recv.clock)
        log_event(model, f"{recv.id} sends REPLY to {msg.sender}.")
        return StepResult(kind=StepKind.MESSAGE_DELIVERED, message=msg, pid=recv.id)

    # REPLY
    if msg.sender in recv.awaiting:
        recv.awaiting.remove(msg.sender)
    log_event(model, f"{recv.id} receives REPLY from {msg.sender} ({len(recv.awaiting)} remaining).")

    if recv.requesting and not recv.in_cs and not recv.awaiting:
        return _enter(model, recv, 'all REPLY received')
    return StepResult(kind=StepKind.MESSAGE_DELIVERED, message=msg, pid=recv.id)


def drop_next_message(model: Model) -> ActionResult:
    queue = model.network.queue
    if not queue:
        return ActionResult.rejected(Reason.NO_MESSAGES)
    msg = queue.popleft()
    model.metrics.messages_dropped += 1
    log_warning(model, f"Fault injected: dropped {msg.describe()}.")
    return ACCEPTED


def toggle_drop_next_send(model: Model) -> ActionResult:
    network = model.network
    network.drop_next_send = not network.drop_next_send
    if network.drop_next_send:
        log_warning(model, 'Fault armed: next outgoing message will be dropped.')
    else:
        log_warning(model, 'Fault disarmed: drop-next-send cancelled.')
    return ActionResult(ok=True, armed=network.drop_next_send)


def on_crash(model: Model, p: Process):
    if p.in_cs:
        log_warning(model, f"Progress blocked: {p.id} crashed in the critical section.")
    p.reset_request()


def on_recover(model: Model, p: Process):
    # A recovered process never resumes its pre-crash request
    p.reset_request()


def _earlier(a: Process, b: Process) -> bool:
    ta = a.req_ts if a.req_ts is not None else float('inf')
    tb = b.req_ts if b.req_ts is not None else float('inf')
    if ta != tb:
        return ta < tb
    return compare_pids(a.id, b.id) < 0


def step(model: Model) -> StepResult:
    if model.network.queue:
        return deliver_next(model)

    in_cs = any_in_cs(model)
    if in_cs is not None:
        if in_cs.crashed:
            log_warning(model, f"No progress: {in_cs.id} is crashed in the critical section.")
            return StepResult.stalled(Reason.CRASHED_IN_CS, pid=in_cs.id)
        log_event(model, f"No internal progress: {in_cs.id} is in the critical section (release required).")
        return StepResult.stalled(Reason.RELEASE_REQUIRED, pid=in_cs.id)

    # An empty queue can still hide a requester blocked on lost REPLYs
    waiters = [p for p in model.processes if p.requesting and not p.crashed and p.awaiting]
    if waiters:
        first = waiters[0]
        for p in waiters[1:]:
            if _earlier(p, first):
                first = p
        log_warning(model, f"Stalled: {first.id} is waiting for REPLY from {', '.join(first.awaiting)}.")
        return StepResult.stalled(Reason.WAITING_REPLIES, pid=first.id, awaiting=tuple(first.awaiting))

    log_warning(model, 'No progress: no messages in flight.')
    return StepResult.stalled(Reason.NO_MESSAGES)
