# vendbench/llm_wrapper.py
import json
import logging
from typing import Any, Dict

from .backend import AgentSession, AgentTurn, Backend, parse_turn, parse_params
from .models import ProductParams

logger = logging.getLogger(__name__)

PARAMS_PROMPT = """Estimate the vending machine economics of the product "{name}".
Respond with a JSON object:
{{
  "reference_price": float,  // typical vending price in USD
  "base_demand": float,      // units sold per day at the reference price
  "elasticity": float        // how strongly demand falls as price rises above reference
}}"""


class LLMWrapper(Backend):
    """
    Backend that drives workers and suppliers with a chat model.
    Subclass it and implement _call_llm for your provider.
    """

    def __init__(self, model_name: str = "gemini-pro"):
        self.model_name = model_name

    async def next_turn(self, session: AgentSession) -> AgentTurn:
        prompt = self._format_session(session)
        response_text = await self._call_llm(session.instructions, prompt)
        turn = parse_turn(response_text)
        logger.debug("%s -> %d tool call(s)", session.owner, len(turn.tool_calls))
        return turn

    async def product_params(self, product_name: str) -> ProductParams:
        response_text = await self._call_llm(
            "You are a retail analyst.", PARAMS_PROMPT.format(name=product_name)
        )
        return parse_params(response_text)

    def _format_session(self, session: AgentSession) -> str:
        """Flatten the session history into one readable transcript."""
        parts = []
        for entry in session.history:
            if entry['role'] == 'user':
                parts.append(f"Manager: {entry['content']}")
            elif entry['role'] == 'assistant':
                parts.append(f"You: {json.dumps(entry['content'])}")
            else:
                parts.append("Tool results:\n" + "\n".join(
                    f"- {self._format_result(r)}" for r in entry['content']
                ))
        remaining = session.max_steps - session.turns_taken
        parts.append(f"({remaining} step(s) left.) What is your next step?")
        return "\n\n".join(parts)

    def _format_result(self, result: Dict[str, Any]) -> str:
        if 'error' in result:
            return f"{result['tool']}: ERROR {result['error']}"
        return f"{result['tool']}: {json.dumps(result.get('output'), default=str)}"

    async def _call_llm(self, system_prompt: str, prompt: str) -> str:
        """
        Placeholder for the actual API call.
        Implement this with your preferred provider (OpenAI, Anthropic, Google).
        """
        raise NotImplementedError("LLM API call not implemented. User must provide API client.")
