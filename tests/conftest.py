"""
Shared fixtures: a fake QuickBase REST API served through httpx.MockTransport.
"""
import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from qbcore.codepages.manager import CodepageManager
from qbcore.config import QuickBaseConfig
from qbcore.quickbase.client import QuickBaseClient

Responder = Union[Dict[str, Any], List[Any], Callable[[httpx.Request], httpx.Response]]


def qb_record(values: Dict[int, Any]) -> Dict[str, Dict[str, Any]]:
    """{6: "x"} -> {"6": {"value": "x"}}"""
    return {str(fid): {"value": value} for fid, value in values.items()}


class FakeQuickBase:
    """Routes requests by (method, path); queued responses are served in order, the last one repeats."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], List[Tuple[int, Responder]]] = {}

    def add(self, method: str, path: str, body: Responder = None, status: int = 200) -> "FakeQuickBase":
        self.routes.setdefault((method.upper(), path), []).append((status, body if body is not None else {}))
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/v1"):
            path = path[len("/v1"):]
        queue = self.routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"message": "Not Found", "description": f"No route for {path}"})
        status, body = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(body):
            return body(request)
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == f"/v1{path}"]

    def bodies(self, method: str, path: str) -> List[Optional[Any]]:
        return [json.loads(r.content) if r.content else None for r in self.calls(method, path)]


@pytest.fixture
def config() -> QuickBaseConfig:
    return QuickBaseConfig(
        realm="acme",
        user_token="test-token",
        app_id="bapp123",
        max_retries=2,
        codepage_table_id="bcodepg",
        codepage_version_table_id="bcodever",
    )


@pytest.fixture
def fake_qb() -> FakeQuickBase:
    return FakeQuickBase()


@pytest.fixture
async def client(config, fake_qb):
    qb = QuickBaseClient(config, transport=httpx.MockTransport(fake_qb), retry_backoff=0)
    yield qb
    await qb.close()


@pytest.fixture
def manager(client) -> CodepageManager:
    return CodepageManager(client)
