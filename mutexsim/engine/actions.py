# mutexsim/engine/actions.py
#
# User-facing action primitives. Each one is atomic: it is either fully applied
# or rejected with a Reason and leaves the Model untouched. While a script is
# loaded the interactive entry points are gated off; the script runner reaches
# the engines directly.

from functools import wraps

from . import ricart_agrawala, token_ring
from .faults import crash, engine_for, recover
from .model import ActionResult, Algorithm, Mode, Model, Reason, StepResult
from .script_runner import step_script


def interactive_only(func):
    """Reject the action with not_interactive unless the model is interactive or force=True."""
    @wraps(func)
    def wrapper(model: Model, *args, force: bool = False, **kwargs) -> ActionResult:
        if model.mode is not Mode.INTERACTIVE and not force:
            return ActionResult.rejected(Reason.NOT_INTERACTIVE)
        return func(model, *args, **kwargs)
    return wrapper


def _requires(algorithm: Algorithm):
    def decorator(func):
        @wraps(func)
        def wrapper(model: Model, *args, **kwargs) -> ActionResult:
            if model.algorithm is not algorithm:
                return ActionResult.rejected(Reason.UNSUPPORTED_ALGORITHM)
            return func(model, *args, **kwargs)
        return wrapper
    return decorator


@interactive_only
def request_cs(model: Model, pid: str) -> ActionResult:
    return engine_for(model).request_cs(model, pid)


@interactive_only
def release_cs(model: Model, pid: str) -> ActionResult:
    return engine_for(model).release_cs(model, pid)


@interactive_only
def crash_process(model: Model, pid: str) -> ActionResult:
    return crash(model, pid)


@interactive_only
def recover_process(model: Model, pid: str) -> ActionResult:
    return recover(model, pid)


@interactive_only
@_requires(Algorithm.TOKEN_RING)
def drop_token(model: Model) -> ActionResult:
    return token_ring.drop_token(model)


@interactive_only
@_requires(Algorithm.TOKEN_RING)
def regenerate_token(model: Model) -> ActionResult:
    return token_ring.regenerate_token(model)


@interactive_only
@_requires(Algorithm.RICART_AGRAWALA)
def drop_next_message(model: Model) -> ActionResult:
    return ricart_agrawala.drop_next_message(model)


@interactive_only
@_requires(Algorithm.RICART_AGRAWALA)
def toggle_drop_next_send(model: Model) -> ActionResult:
    return ricart_agrawala.toggle_drop_next_send(model)


def step_once(model: Model) -> StepResult:
    """Advance the model by exactly one logical step."""
    if model.mode is Mode.SCRIPT:
        return step_script(model)
    return engine_for(model).step(model)
