from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from datapilot.contracts.plan import ColumnProfile  # noqa: E402
from datapilot.models.llm_client import LLMClient, LLMTransportError  # noqa: E402
from datapilot.models.retry import RetryPolicy  # noqa: E402
from datapilot.models.usage import LLMUsage  # noqa: E402
from datapilot.schema.dialects import SchemaDialect  # noqa: E402

Reply = Union[str, Dict[str, Any], List[Any], Exception, Callable[[Dict[str, Any]], Any]]


class ScriptedClient(LLMClient):
    """Provider stand-in answering from a queue of canned replies.

    Dict/list replies are JSON-encoded, exceptions are raised as-is and
    callables receive the rendered payload.
    """

    provider = "scripted"

    def __init__(
        self,
        replies: Sequence[Reply],
        *,
        dialect: SchemaDialect = SchemaDialect.JSON_SCHEMA,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        super().__init__("scripted-model", retry_policy=retry_policy or RetryPolicy(max_attempts=1, delay=0))
        self.dialect = dialect  # type: ignore[misc]
        self._replies = list(replies)
        self.payloads: List[Dict[str, Any]] = []

    @property
    def prompts(self) -> List[str]:
        return [payload["prompt"] for payload in self.payloads]

    @property
    def system_prompts(self) -> List[Optional[str]]:
        return [payload["system"] for payload in self.payloads]

    @property
    def operations(self) -> List[str]:
        return [payload["operation"] for payload in self.payloads]

    def build_payload(self, request) -> Dict[str, Any]:  # type: ignore[override]
        return {
            "prompt": request.prompt,
            "system": request.system_prompt,
            "operation": request.operation,
            "schema": self.response_schema(request),
        }

    def _raw_invoke(self, payload: Dict[str, Any]) -> Tuple[str, Optional[LLMUsage]]:
        self.payloads.append(payload)
        if not self._replies:
            raise LLMTransportError("no scripted reply left")
        reply = self._replies.pop(0)
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(payload)
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return reply, None


@dataclass(slots=True)
class RecordingTransport:
    """Injectable transport that records payloads and replays envelopes."""

    responses: List[Any]
    payloads: List[Dict[str, Any]] = field(default_factory=list)

    def __call__(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)


@pytest.fixture()
def scripted_client() -> Callable[..., ScriptedClient]:
    return ScriptedClient


@pytest.fixture()
def sales_columns() -> List[ColumnProfile]:
    return [
        ColumnProfile(name="Region", type="categorical", uniqueValues=4),
        ColumnProfile(name="Product", type="categorical", uniqueValues=9),
        ColumnProfile(name="Revenue", type="currency"),
        ColumnProfile(name="Units", type="numerical"),
        ColumnProfile(name="Order Date", type="date"),
    ]


@pytest.fixture()
def sales_rows() -> List[Dict[str, Any]]:
    regions = ["North", "South", "East", "West"]
    products = ["Widget", "Gadget", "Doohickey"]
    rows: List[Dict[str, Any]] = []
    for index in range(24):
        rows.append(
            {
                "Region": regions[index % 4],
                "Product": products[index % 3],
                "Revenue": f"${(index + 1) * 125:,}.00",
                "Units": index + 1,
                "Order Date": f"2024-{(index % 12) + 1:02d}-15",
            }
        )
    return rows
