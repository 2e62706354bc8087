import json

import pytest
import typer

from fxchain.cli.main import _jsonable, _run, main
from fxchain.errors import EngineError
from fxchain.types.core import Event
from fxchain.version import __version__


def test_version_without_node(monkeypatch, capsys):
    monkeypatch.setenv("FXCHAIN_MAX_RETRIES", "0")
    monkeypatch.setenv("FXCHAIN_TIMEOUT", "1")

    rc = main(["--rpc", "http://127.0.0.1:9", "version"])

    out = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert out == {"fxchain": __version__, "node": None, "rpc": "http://127.0.0.1:9"}


def test_bad_token_pair_is_rejected(capsys):
    rc = main(["balances", "--token", "USD"])
    assert rc != 0
    assert "LABEL=0xADDRESS" in capsys.readouterr().err


def test_events_print_as_json():
    ev = Event(
        origin_tx_id="0xab",
        contract_address="0x" + "11" * 20,
        name="Transfer",
        args=(b"\x01\x02", 5),
        arg_names=("memo", "amount"),
        block_number=3,
    )
    assert _jsonable([ev]) == [
        {
            "contract": "0x" + "11" * 20,
            "event": "Transfer",
            "args": {"memo": "0x0102", "amount": 5},
            "tx": "0xab",
            "block": 3,
        }
    ]


def test_engine_errors_print_their_context(capsys):
    async def fails():
        raise EngineError("node returned no latest block", subject="feed launchedOn", transition="set")

    with pytest.raises(typer.Exit) as ei:
        _run(fails())

    assert ei.value.exit_code == 1
    err = json.loads(capsys.readouterr().err)
    assert err["subject"] == "feed launchedOn"
    assert err["transition"] == "set"
