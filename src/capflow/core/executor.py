"""
Executor - the uniform invocation contract.

Binds one provider instance to ``execute(token, config, inputs)``. The
executor keeps no per-call state: config and inputs are copied for every
call so concurrent invocations never share mutable data.
"""

import asyncio
import copy
from typing import Any, Dict, Optional

from pydantic import BaseModel, ValidationError

from .abstractions import CancellationToken, ILogSink, IProvider, IProviderFactory, NullSink
from .errors import ExecutionError, FlowError, InvocationCancelledError
from .types import Capability


class Executor:
    """
    Invoke a provider with JSON-compatible config/input mappings.

    Example:
        executor = registry.get_executor("openai_chat")
        outputs = await executor.execute(token, {"temperature": 0.2}, {"messages": [...]})
    """

    def __init__(
        self,
        capability: Capability,
        factory: IProviderFactory,
        provider: IProvider,
        config: BaseModel,
        logger: Optional[ILogSink] = None,
    ):
        self.capability = capability
        self.factory = factory
        self.provider = provider
        self.config = config
        self.logger = logger or NullSink()

    async def execute(
        self,
        token: CancellationToken,
        config: Optional[Dict[str, Any]] = None,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Run the bound provider once.

        Args:
            token: Run cancellation token
            config: Per-call config overrides, validated by the factory
            inputs: Provider inputs

        Returns:
            Provider outputs

        Raises:
            InvocationCancelledError: Token was (or became) cancelled
            ConfigError: Overrides failed validation
            ExecutionError: Provider raised, returned a non-mapping, or returned
                outputs that fail the factory's output model
        """
        cap_id = self.capability.id
        if token.cancelled:
            raise InvocationCancelledError(cap_id)

        call_config = self._merge_config(copy.deepcopy(dict(config or {})))
        call_inputs = copy.deepcopy(dict(inputs or {}))

        work = asyncio.ensure_future(self.provider.execute(token, call_config, call_inputs))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            waiter.cancel()

        if work not in done:
            work.cancel()
            await asyncio.gather(work, return_exceptions=True)
            self.logger.info("Invocation cancelled", capability=cap_id)
            raise InvocationCancelledError(cap_id)

        try:
            outputs = work.result()
        except FlowError:
            raise
        except Exception as e:
            raise ExecutionError(cap_id, str(e) or type(e).__name__, cause=e) from e

        if not isinstance(outputs, dict):
            raise ExecutionError(
                cap_id, f"provider returned {type(outputs).__name__}, expected a mapping"
            )
        self._check_outputs(outputs)
        return outputs

    def _check_outputs(self, outputs: Dict[str, Any]) -> None:
        """Validate outputs against the factory's declared output model, if any."""
        output_model = self.factory.output_model
        if output_model is None:
            return
        try:
            output_model.model_validate(outputs)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(loc) for loc in err.get("loc", ())) or "__root__" for err in e.errors()
            )
            raise ExecutionError(
                self.capability.id, f"outputs do not match the declared schema: {fields}", cause=e
            ) from e

    def _merge_config(self, overrides: Dict[str, Any]) -> BaseModel:
        if not overrides:
            return self.config
        merged = self.config.model_dump()
        merged.update(overrides)
        return self.factory.validate_config(merged)

    def __repr__(self) -> str:
        return f"Executor(capability={self.capability.id!r}, provider={type(self.provider).__name__})"
