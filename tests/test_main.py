from __future__ import annotations

import pytest

from lanchat import __main__ as cli
from lanchat.transport import BindFailed, SocketUnavailable


def test_defaults() -> None:
    args = cli._build_parser().parse_args([])

    assert args.port == 5777
    assert args.broadcast == "255.255.255.255"
    assert args.chunk_size == 1024
    assert not args.no_serve and not args.no_log


@pytest.mark.parametrize("size", ["0", "4096"])
def test_chunk_size_is_bounded(size: str) -> None:
    with pytest.raises(SystemExit) as info:
        cli.main(["--chunk-size", size])
    assert info.value.code == 2


@pytest.mark.parametrize("error, code", [
    (SocketUnavailable("no socket"), 10),
    (BindFailed("no bind"), 11),
])
def test_network_failure_exit_codes(monkeypatch, tmp_path, capsys, error, code) -> None:
    def fail(self) -> None:
        raise error

    monkeypatch.setattr(cli.Transport, "open", fail)
    args = cli._build_parser().parse_args(["--dir", str(tmp_path), "--no-log"])

    assert cli.cmd_chat(args) == code
    assert "unable to set up the network" in capsys.readouterr().err
