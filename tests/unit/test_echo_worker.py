import importlib.util
from pathlib import Path
from typing import Any

from lambda_runtime_client.exceptions import HTTPStatusError, TransportError

_WORKER_PATH = Path(__file__).resolve().parents[2] / "examples" / "echo_worker.py"


def _load_worker() -> Any:
    spec = importlib.util.spec_from_file_location("echo_worker", _WORKER_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class _FailingClient:
    def __init__(self, errors: list[Exception]) -> None:
        self._errors = errors
        self.polls = 0

    def poll_next_event(self) -> Any:
        self.polls += 1
        raise self._errors.pop(0)


def test_worker_backs_off_between_recoverable_poll_errors(monkeypatch: Any) -> None:
    worker = _load_worker()
    client = _FailingClient(
        [
            TransportError("connection reset"),
            HTTPStatusError("fetching next event", 429),
            TransportError("connection reset"),
            TransportError("connection reset"),
            TransportError("connection reset"),
            TransportError("connection reset"),
            HTTPStatusError("fetching next event", 500, unrecoverable=True),
        ]
    )
    sleeps: list[float] = []
    monkeypatch.setattr(worker.RuntimeClient, "from_env", classmethod(lambda cls: client))
    monkeypatch.setattr(worker.time, "sleep", sleeps.append)

    code = worker.main()

    assert code == 1
    assert client.polls == 7
    assert sleeps == [0.5, 1.0, 2.0, 4.0, 5.0, 5.0]
