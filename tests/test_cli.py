from __future__ import annotations

import json

from support import wait_for

from cftp.bench import run_benchmark
from cftp.cli import main
from cftp.files import generate_files


def test_generate_command(tmp_path, capsys):
    assert main(["generate", "--folder", str(tmp_path / "g"), "--count", "2", "--max-kib", "1", "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["files"] == 2
    assert len(list((tmp_path / "g").iterdir())) == 2


def test_send_command(tmp_path, out_dir, receiver, send_config, capsys):
    src = tmp_path / "in"
    generate_files(src, 3, max_kib=2)
    code = main(
        [
            "send",
            "--dest-host",
            send_config.host,
            "--dest-port",
            str(send_config.port),
            "--input-dir",
            str(src),
            "--json",
        ]
    )
    assert code == 0
    out = json.loads(capsys.readouterr().out)
    assert out["files"] == 3
    assert out["failed"] == 0
    assert wait_for(lambda: receiver.metrics.files_received == 3)


def test_send_command_reports_failure(tmp_path, capsys):
    code = main(["send", "--dest-port", "1", str(tmp_path / "missing.bin"), "--json"])
    assert code == 1
    assert json.loads(capsys.readouterr().out)["failed"] == 1


def test_benchmark(tmp_path):
    files = generate_files(tmp_path / "in", 4, max_kib=8)
    r = run_benchmark(files)
    assert r.files == 4
    assert r.files_saved == 4
    assert r.send_failures == 0
    assert r.bytes_transferred == sum(f.stat().st_size for f in files)
